"""``.env`` discovery for goatherd.

Values already present in the process environment always win; among the
files, the most specific one wins.
"""

import os
from enum import Enum
from pathlib import Path

import structlog
from dotenv import load_dotenv

log = structlog.get_logger(__name__)

_ENV_ALIASES = {
    "production": "production",
    "prod": "production",
    "staging": "staging",
    "stage": "staging",
    "test": "test",
}


class Environment(str, Enum):
    """Deployment environment selected by ``APP_ENV``."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


def get_environment() -> Environment:
    """Read ``APP_ENV`` (``prod``/``stage`` aliases allowed); anything else is development.

    Reads ``os.environ`` directly since it runs before settings exist.
    """
    value = os.getenv("APP_ENV", "").strip().lower()
    return Environment(_ENV_ALIASES.get(value, Environment.DEVELOPMENT.value))


def candidate_env_files(project_root: Path, environment: Environment) -> list[Path]:
    """``.env`` files for ``environment``, most specific first."""
    name = environment.value
    return [
        project_root / f".env.{name}.local",
        project_root / f".env.{name}",
        project_root / ".env.local",
        project_root / ".env",
    ]


def load_env_files(project_root: Path | None = None) -> list[Path]:
    """Load the existing ``.env`` files under ``project_root`` (default: cwd).

    Files are loaded with ``override=False`` in the order returned by
    ``candidate_env_files``, so a key keeps the first value it receives.

    Returns:
        The files that were loaded.
    """
    root = project_root or Path.cwd()
    environment = get_environment()

    loaded = [path for path in candidate_env_files(root, environment) if path.is_file()]
    for path in loaded:
        load_dotenv(path, override=False)

    log.debug(
        "env_files_loaded" if loaded else "no_env_files_found",
        environment=environment.value,
        root=str(root),
        files=[path.name for path in loaded],
    )
    return loaded
