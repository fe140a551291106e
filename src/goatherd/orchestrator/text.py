"""Text shaping helpers for planner prompts, notes and handoff documents."""

import re

TRUNCATION_MARKER = "\n...[truncated]...\n"
SUMMARY_MAX_CHARS = 180

_WHITESPACE = re.compile(r"\s+")


def clamp_text(value: str, max_chars: int) -> str:
    """Keep the head (70%) and tail of ``value`` so it fits in ``max_chars``."""
    if len(value) <= max_chars:
        return value
    head = value[: int(max_chars * 0.7)]
    tail_chars = max(0, max_chars - len(head) - len(TRUNCATION_MARKER))
    tail = value[-tail_chars:] if tail_chars else ""
    return f"{head}{TRUNCATION_MARKER}{tail}"


def summarize_text(value: str, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    """Collapse whitespace and cut to one line of at most ``max_chars``."""
    normalized = _WHITESPACE.sub(" ", value).strip()
    if len(normalized) <= max_chars:
        return normalized
    return f"{normalized[: max_chars - 3]}..."


def ensure_trailing_newline(value: str) -> str:
    return value if value.endswith("\n") else f"{value}\n"
