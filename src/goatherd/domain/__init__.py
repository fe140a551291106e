"""Domain types shared by routing, planning, sessions and providers."""

from goatherd.domain.agents import (
    DEFAULT_AGENT_ID,
    AgentDescriptor,
    AgentRole,
    AgentRoster,
    CamelModel,
    is_default_agent_id,
    normalize_agent_id,
)
from goatherd.domain.errors import (
    GoatherdError,
    PlanningError,
    ProviderCapabilityError,
    ProviderError,
    ProviderNotFoundError,
    RunCancelledError,
    SessionNotFoundError,
    SessionStoreError,
    SessionStoreParseError,
    SessionTranscriptParseError,
)

__all__ = [
    "DEFAULT_AGENT_ID",
    "AgentDescriptor",
    "AgentRole",
    "AgentRoster",
    "CamelModel",
    "is_default_agent_id",
    "normalize_agent_id",
    # Errors
    "GoatherdError",
    "PlanningError",
    "ProviderError",
    "ProviderNotFoundError",
    "ProviderCapabilityError",
    "RunCancelledError",
    "SessionStoreError",
    "SessionStoreParseError",
    "SessionTranscriptParseError",
    "SessionNotFoundError",
]
