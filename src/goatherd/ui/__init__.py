"""User interface for goatherd.

The CLI can be run directly:
    python -m goatherd.ui.cli route "Your message here"

Note: CLI components are not exported from __init__.py to avoid module
loading issues when running as a script.
"""

__all__ = []  # CLI is run directly, no exports needed
