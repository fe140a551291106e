"""Session lifecycle: durable per-(agent, session key) identity and transcripts."""

from goatherd.sessions.models import (
    AgentLastAction,
    SessionCompactionConfig,
    SessionCompactionResult,
    SessionConfig,
    SessionDisabled,
    SessionEnabled,
    SessionEntry,
    SessionHistory,
    SessionHistoryItem,
    SessionInfo,
    SessionRemoveResult,
    SessionResetMode,
    SessionResetPolicy,
    SessionResolution,
    SessionSummary,
)
from goatherd.sessions.service import SessionService, is_session_fresh, resolve_session_key

__all__ = [
    "SessionService",
    "resolve_session_key",
    "is_session_fresh",
    # Models
    "AgentLastAction",
    "SessionCompactionConfig",
    "SessionCompactionResult",
    "SessionConfig",
    "SessionDisabled",
    "SessionEnabled",
    "SessionEntry",
    "SessionHistory",
    "SessionHistoryItem",
    "SessionInfo",
    "SessionRemoveResult",
    "SessionResetMode",
    "SessionResetPolicy",
    "SessionResolution",
    "SessionSummary",
]
