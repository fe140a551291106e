"""YAML file reading shared by the configuration loaders."""

from pathlib import Path
from typing import Any

import structlog
import yaml

log = structlog.get_logger(__name__)


class ConfigLoadError(Exception):
    """A configuration file is missing, unreadable or malformed."""


def load_yaml_file(
    file_path: Path, error_class: type[ConfigLoadError] = ConfigLoadError
) -> dict[str, Any]:
    """Parse a YAML file whose top level is a mapping.

    An empty file yields ``{}``.

    Raises:
        error_class: If the file is missing, unreadable, not valid YAML, or
            its top level is not a mapping.
    """
    try:
        content: Any = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise error_class(f"Configuration file not found: {file_path}") from None
    except yaml.YAMLError as e:
        raise error_class(f"Failed to parse {file_path}: {e}") from None
    except OSError as e:
        raise error_class(f"Cannot read {file_path}: {e}") from None

    if content is None:
        log.debug("config_file_empty", file_path=str(file_path))
        return {}
    if not isinstance(content, dict):
        raise error_class(f"Expected a mapping at the top of {file_path}")
    return content
