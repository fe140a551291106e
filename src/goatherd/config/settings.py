"""goatherd settings: ``AppConfig``, the on-disk layout and the settings singleton."""

from dataclasses import dataclass
from pathlib import Path

import structlog
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from goatherd.config.bootstrap import DEFAULT_HOME_DIR
from goatherd.config.env_loader import Environment, get_environment, load_env_files
from goatherd.config.validators import (
    resolve_path,
    validate_log_format,
    validate_log_level,
    validate_unit_interval,
)

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GoatherdPaths:
    """On-disk layout rooted at ``home_dir``.

    Attributes:
        home_dir: Root directory for all persisted state.
        agents_dir: Per-agent state (session stores and transcripts).
        workspaces_dir: Per-agent workspaces (coordination artifacts, skills).
        runs_dir: Run ledgers, one JSON file per run.
    """

    home_dir: Path

    @property
    def agents_dir(self) -> Path:
        return self.home_dir / "agents"

    @property
    def workspaces_dir(self) -> Path:
        return self.home_dir / "workspaces"

    @property
    def runs_dir(self) -> Path:
        return self.home_dir / "runs"

    @classmethod
    def from_home(cls, home_dir: Path | str) -> "GoatherdPaths":
        return cls(home_dir=resolve_path(home_dir))


class AppConfig(BaseSettings):
    """Unified application configuration.

    Loads configuration from environment variables (``GOATHERD_`` prefix),
    .env files, and defaults. Validates all values using Pydantic.
    """

    model_config = SettingsConfigDict(
        env_prefix="GOATHERD_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    environment: Environment = Field(
        default_factory=get_environment, description="Current environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")

    # Storage
    home_dir: Path = Field(
        default=Path(DEFAULT_HOME_DIR),
        description="Root directory for agents, sessions, workspaces and run ledgers",
    )
    roster_path: Path | None = Field(
        default=None, description="Agent roster YAML file (defaults to <home_dir>/agents.yaml)"
    )

    # Telemetry
    log_dir: Path | None = Field(default=None, description="Log directory (defaults to <home_dir>/logs)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Console log format (json or console)")

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        return validate_log_level(v)

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        return validate_log_format(v)

    @field_validator("home_dir", mode="before")
    @classmethod
    def resolve_home(cls, v: Path | str) -> Path:
        """Expand and resolve the home directory."""
        return resolve_path(v)

    # Agents
    default_agent_id: str = Field(default="goat", description="Default entry (manager) agent id")

    # Orchestrator
    orchestrator_max_steps: int = Field(
        default=12, ge=1, description="Step budget per orchestration run"
    )
    orchestrator_max_delegations: int = Field(
        default=8, ge=1, description="Delegation safety limit per orchestration run"
    )
    orchestrator_shared_notes_max_chars: int = Field(
        default=12_000, ge=500, description="Maximum characters of shared notes fed to the planner"
    )
    orchestrator_recent_events_window: int = Field(
        default=10, ge=1, description="Number of recent events kept for the planner"
    )

    # Routing (tunable weights)
    routing_min_score: float = Field(
        default=0.2, description="Minimum normalized score for a routed target"
    )
    routing_lexical_weight: float = Field(default=0.6, ge=0, description="Weight of lexical overlap")
    routing_role_weight: float = Field(default=0.3, ge=0, description="Weight of organizational fit")
    routing_default_bonus: float = Field(
        default=0.1, ge=0, description="Bonus for the previously active/default agent"
    )

    @field_validator("routing_min_score")
    @classmethod
    def validate_min_score(cls, v: float) -> float:
        """Validate routing threshold."""
        return validate_unit_interval(v)

    # Sessions
    sessions_enabled: bool = Field(default=True, description="Enable session tracking")
    session_main_key: str = Field(default="main", description="Main session key segment")
    session_compaction_trigger_messages: int = Field(
        default=80, ge=2, description="Transcript message count that triggers compaction"
    )
    session_compaction_trigger_chars: int = Field(
        default=32_000, ge=100, description="Transcript size in chars that triggers compaction"
    )
    session_compaction_keep_recent: int = Field(
        default=20, ge=1, description="Messages kept verbatim after compaction"
    )

    # Providers
    provider_timeout_seconds: float = Field(
        default=600.0, gt=0, description="Timeout for a single provider invocation"
    )
    http_provider_base_url: str = Field(
        default="http://localhost:8000/v1", description="Base URL for the OpenAI-compatible provider"
    )
    http_provider_api_key: str | None = Field(default=None, description="API key for the HTTP provider")
    http_provider_model: str = Field(default="gpt-4o-mini", description="Default HTTP provider model")

    @property
    def paths(self) -> GoatherdPaths:
        return GoatherdPaths(home_dir=self.home_dir)

    @property
    def resolved_roster_path(self) -> Path:
        if self.roster_path is not None:
            return resolve_path(self.roster_path)
        return self.home_dir / "agents.yaml"

    @property
    def resolved_log_dir(self) -> Path:
        if self.log_dir is not None:
            return resolve_path(self.log_dir)
        return self.home_dir / "logs"


_settings: AppConfig | None = None


def load_app_config() -> AppConfig:
    """Build ``AppConfig`` after loading ``.env`` files from the working directory.

    Raises:
        ValidationError: If an environment value is invalid.
    """
    loaded = load_env_files()
    try:
        config = AppConfig()
    except ValidationError as e:
        log.error("app_config_invalid", errors=e.error_count(), detail=str(e))
        raise
    log.debug(
        "app_config_loaded",
        environment=config.environment.value,
        home_dir=str(config.home_dir),
        env_files=[path.name for path in loaded],
    )
    return config


def get_settings() -> AppConfig:
    """Process-wide ``AppConfig``, built on first call."""
    global _settings
    if _settings is None:
        _settings = load_app_config()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next ``get_settings`` rebuilds them."""
    global _settings
    _settings = None
