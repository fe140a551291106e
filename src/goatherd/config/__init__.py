"""Unified configuration management for goatherd.

This module provides a single source of truth for all configuration,
integrating environment variables, .env files, YAML roster files, and defaults.
"""

from goatherd.config.env_loader import Environment, get_environment, load_env_files
from goatherd.config.loader import ConfigLoadError, load_yaml_file
from goatherd.config.roster_loader import RosterConfig, RosterConfigError, load_roster
from goatherd.config.settings import (
    AppConfig,
    GoatherdPaths,
    get_settings,
    load_app_config,
    reset_settings,
)

__all__ = [
    # App-level settings
    "AppConfig",
    "GoatherdPaths",
    "get_settings",
    "load_app_config",
    "reset_settings",
    "Environment",
    "get_environment",
    "load_env_files",
    # Configuration loaders
    "load_yaml_file",
    "load_roster",
    "RosterConfig",
    # Exception classes
    "ConfigLoadError",
    "RosterConfigError",
]
