"""Load and validate the agent roster from a YAML file.

Example ``agents.yaml``::

    agents:
      - id: goat
        name: Goat
        description: Routes tasks to specialists
        provider: codex
        type: manager
        can_delegate: true
      - id: writer
        name: Writer
        description: Writes blog posts and release notes
        provider: codex
        skills: [blog, copywriting]
    providers:
      codex:
        kind: command
        command: ["codex", "exec"]
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from goatherd.config.loader import ConfigLoadError, load_yaml_file
from goatherd.domain import AgentDescriptor, AgentRole, AgentRoster

log = structlog.get_logger(__name__)


class RosterConfigError(ConfigLoadError):
    """Raised when the roster file cannot be loaded or is invalid."""

    pass


class _AgentEntry(BaseModel):
    id: str
    name: str | None = None
    description: str = ""
    provider: str
    type: AgentRole = AgentRole.INDIVIDUAL
    reports_to: str | None = None
    skills: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    can_receive: bool = True
    can_delegate: bool | None = None
    priority: int = Field(default=50, ge=0, le=100)
    sessions_enabled: bool = True

    def to_descriptor(self) -> AgentDescriptor:
        can_delegate = self.can_delegate if self.can_delegate is not None else self.type == AgentRole.MANAGER
        return AgentDescriptor(
            agent_id=self.id,
            name=self.name or self.id,
            description=self.description,
            provider_id=self.provider,
            can_receive=self.can_receive,
            can_delegate=can_delegate,
            role=self.type,
            skills=tuple(self.skills),
            tags=tuple(self.tags),
            priority=self.priority,
            reports_to=self.reports_to,
            sessions_enabled=self.sessions_enabled,
        )


class _RosterFile(BaseModel):
    agents: list[_AgentEntry] = Field(default_factory=list)
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)


@dataclass(frozen=True)
class RosterConfig:
    """Parsed roster file: agents plus per-provider settings."""

    roster: AgentRoster
    providers: dict[str, dict[str, Any]] = field(default_factory=dict)


def load_roster(config_path: Path) -> RosterConfig:
    """Load and validate the agent roster.

    Args:
        config_path: Path to the roster YAML file.

    Returns:
        RosterConfig with an AgentRoster and raw provider settings.

    Raises:
        RosterConfigError: If the file is missing, unparsable, or invalid.
    """
    config_path = Path(config_path)
    log.info("loading_roster", config_path=str(config_path))

    content = load_yaml_file(config_path, error_class=RosterConfigError)

    try:
        parsed = _RosterFile.model_validate(content)
        roster = AgentRoster(entry.to_descriptor() for entry in parsed.agents)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            error_messages.append(f"{field_path}: {error['msg']}")
        error_summary = "\n".join(error_messages)
        raise RosterConfigError(f"Roster validation failed:\n{error_summary}") from None
    except ValueError as e:
        raise RosterConfigError(f"Roster validation failed: {e}") from None

    log.info("roster_loaded", agents_count=len(roster), agent_ids=roster.agent_ids)
    return RosterConfig(roster=roster, providers=parsed.providers)
