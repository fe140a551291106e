"""structlog setup for goatherd.

Every record goes through the stdlib ``logging`` tree so that structlog events
and third-party log lines share handlers:

- ``<log_dir>/current.jsonl``: rotating JSON lines, INFO and above
- stderr: console renderer (or JSON) at the configured level

Each event carries ``timestamp``, ``level``, ``logger`` and ``component`` (the
last dotted segment of the logger name unless passed explicitly).
"""

import logging
import logging.handlers
import pathlib
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_FILE_NAME = "current.jsonl"
LOG_FILE_MAX_BYTES = 20 * 1024 * 1024
LOG_FILE_BACKUPS = 3

_QUIET_LIBRARIES = ("httpx", "httpcore", "asyncio")


def _bootstrap_level() -> str:
    # Settings import telemetry, so read the level straight from the environment.
    from goatherd.config.bootstrap import get_bootstrap_log_level  # noqa: PLC0415

    return get_bootstrap_log_level()


def _bootstrap_log_dir() -> pathlib.Path:
    from goatherd.config.bootstrap import get_bootstrap_log_dir  # noqa: PLC0415

    return get_bootstrap_log_dir()


def component_name(logger_name: str | None) -> str:
    """``goatherd.orchestrator.service`` -> ``service``."""
    if not logger_name:
        return "unknown"
    return logger_name.rsplit(".", 1)[-1]


def _stamp_foreign_record(
    logger: logging.Logger | None, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add timestamp and component to records logged through plain ``logging``."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    event_dict["component"] = component_name(getattr(logger, "name", None))
    return event_dict


def _stamp_component(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("component", component_name(event_dict.get("logger")))
    return event_dict


def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _stamp_foreign_record,
        ],
    )


def _file_handler(log_dir: pathlib.Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=str(log_dir / LOG_FILE_NAME),
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    handler.setLevel(logging.INFO)
    return handler


def _console_handler(log_format: str, level: int) -> logging.Handler:
    renderer: Any
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(renderer))
    handler.setLevel(level)
    return handler


def configure_logging(
    log_level: str | None = None,
    log_dir: pathlib.Path | None = None,
    log_format: str = "console",
    file_logging: bool = True,
) -> None:
    """Install handlers on the root logger and configure structlog.

    Safe to call again; previous root handlers are replaced. ``get_logger``
    calls it with bootstrap values if nothing configured logging yet.

    Args:
        log_level: Console level; defaults to ``GOATHERD_LOG_LEVEL``.
        log_dir: Directory for the JSON file; defaults to ``<home>/logs``.
        log_format: "console" or "json" for stderr output.
        file_logging: Attach the rotating JSON file handler.
    """
    level = getattr(logging, log_level or _bootstrap_level(), logging.INFO)

    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    if file_logging:
        try:
            root.addHandler(_file_handler(log_dir or _bootstrap_log_dir()))
        except OSError as e:
            print(f"goatherd: file logging disabled: {e}", file=sys.stderr)
    root.addHandler(_console_handler(log_format, level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            _stamp_component,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger bound to ``name``.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("run_started", run_id="run-1")
    """
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)
