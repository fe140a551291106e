"""Field validators shared by ``AppConfig`` and the bootstrap helpers."""

from pathlib import Path

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("console", "json")


def validate_log_level(value: str) -> str:
    """Uppercase ``value`` and check it names a stdlib logging level.

    Raises:
        ValueError: For unknown level names.
    """
    level = value.strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level {value!r}; expected one of {', '.join(LOG_LEVELS)}")
    return level


def validate_log_format(value: str) -> str:
    """Lowercase ``value`` and check it is ``console`` or ``json``."""
    log_format = value.strip().lower()
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format {value!r}; expected one of {', '.join(LOG_FORMATS)}")
    return log_format


def validate_unit_interval(value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"Expected a value within [0, 1], got {value}")
    return value


def resolve_path(value: Path | str) -> Path:
    """Expand ``~`` and make the path absolute."""
    return Path(value).expanduser().resolve()
