"""Configuration read before ``AppConfig`` can be built.

Logging is configured on first import of any module, which happens before
settings load. These helpers read the few values logging needs straight from
the environment and must not import telemetry.
"""

import os
from pathlib import Path

from goatherd.config.validators import resolve_path, validate_log_level

DEFAULT_HOME_DIR = "~/.goatherd"


def get_bootstrap_log_level(default: str = "INFO") -> str:
    """``GOATHERD_LOG_LEVEL`` if it is a valid level, else ``default``."""
    try:
        return validate_log_level(os.getenv("GOATHERD_LOG_LEVEL", default))
    except ValueError:
        return validate_log_level(default)


def get_bootstrap_log_dir() -> Path:
    """``GOATHERD_LOG_DIR``, else ``<GOATHERD_HOME_DIR>/logs``."""
    explicit = os.getenv("GOATHERD_LOG_DIR")
    if explicit:
        return resolve_path(explicit)
    return resolve_path(os.getenv("GOATHERD_HOME_DIR", DEFAULT_HOME_DIR)) / "logs"
