"""Agent identity and roster types.

An ``AgentDescriptor`` is an immutable snapshot of one agent used for a single
routing or planning pass. The ``AgentRoster`` is the ordered set of descriptors
supplied for a run; every agent id the core references must be in it.
"""

import re
from collections.abc import Iterable, Iterator
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_AGENT_ID = "goat"

_NON_ID_CHARS = re.compile(r"[^a-z0-9]+")


def normalize_agent_id(value: str) -> str:
    """Lowercase and slugify an agent id ("QA Agent" -> "qa-agent")."""
    return _NON_ID_CHARS.sub("-", value.strip().lower()).strip("-")


def is_default_agent_id(agent_id: str, default_agent_id: str = DEFAULT_AGENT_ID) -> bool:
    return normalize_agent_id(agent_id) == normalize_agent_id(default_agent_id)


class AgentRole(str, Enum):
    """Organizational role used by routing for intent fit."""

    MANAGER = "manager"
    INDIVIDUAL = "individual"


class CamelModel(BaseModel):
    """Base model serializing to the camelCase JSON records callers consume."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentDescriptor(CamelModel):
    """Read-only description of one agent.

    Attributes:
        agent_id: Normalized agent id.
        name: Display name.
        description: Free-text description used for lexical routing.
        provider_id: Id of the provider this agent is bound to.
        can_receive: Whether other agents may delegate to it.
        can_delegate: Whether it may delegate to others (managers).
        role: Manager or individual contributor.
        skills: Declared skill names.
        tags: Free-form tags, also used for lexical routing.
        priority: 0-100, small routing boost when a candidate matches.
        reports_to: Manager agent id, if any.
        sessions_enabled: Whether session tracking applies to this agent.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    agent_id: str
    name: str
    description: str = ""
    provider_id: str
    can_receive: bool = True
    can_delegate: bool = False
    role: AgentRole = AgentRole.INDIVIDUAL
    skills: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    priority: int = Field(default=50, ge=0, le=100)
    reports_to: str | None = None
    sessions_enabled: bool = True

    @field_validator("agent_id")
    @classmethod
    def normalize_id(cls, v: str) -> str:
        normalized = normalize_agent_id(v)
        if not normalized:
            raise ValueError("agent_id cannot be empty")
        return normalized

    @property
    def is_manager(self) -> bool:
        return self.role == AgentRole.MANAGER or self.can_delegate


class AgentRoster:
    """Immutable, ordered collection of agent descriptors keyed by id."""

    def __init__(self, agents: Iterable[AgentDescriptor]) -> None:
        self._agents: dict[str, AgentDescriptor] = {}
        for agent in agents:
            if agent.agent_id in self._agents:
                raise ValueError(f"Duplicate agent id in roster: {agent.agent_id}")
            self._agents[agent.agent_id] = agent

    def __contains__(self, agent_id: object) -> bool:
        return isinstance(agent_id, str) and normalize_agent_id(agent_id) in self._agents

    def __iter__(self) -> Iterator[AgentDescriptor]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def get(self, agent_id: str) -> AgentDescriptor | None:
        return self._agents.get(normalize_agent_id(agent_id))

    def require(self, agent_id: str) -> AgentDescriptor:
        agent = self.get(agent_id)
        if agent is None:
            raise KeyError(f"Unknown agent: {agent_id}")
        return agent

    @property
    def agent_ids(self) -> list[str]:
        return list(self._agents)

    def receivers(self, exclude: str | None = None) -> list[AgentDescriptor]:
        """Agents that accept delegated work, optionally excluding one id."""
        excluded = normalize_agent_id(exclude) if exclude else None
        return [a for a in self._agents.values() if a.can_receive and a.agent_id != excluded]

    def resolve_entry_agent_id(self, requested: str | None, default_agent_id: str) -> str:
        """Pick the entry agent for a run.

        The requested id if it is in the roster, else the default agent if it
        is in the roster, else the first roster agent.
        """
        normalized = normalize_agent_id(requested or "") or normalize_agent_id(default_agent_id)
        if normalized in self._agents:
            return normalized
        default_id = normalize_agent_id(default_agent_id)
        if default_id in self._agents:
            return default_id
        if self._agents:
            return next(iter(self._agents))
        return normalized
