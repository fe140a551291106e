"""Session data models.

Persisted records (store entries and transcript lines) serialize with camelCase
keys via ``CamelModel``. Results returned to callers are plain models or
frozen dataclasses.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from goatherd.domain import CamelModel

SESSION_STORE_SCHEMA_VERSION = 1
SESSION_TRANSCRIPT_SCHEMA_VERSION = 1


class SessionResetMode(str, Enum):
    """When an idle session is replaced by a fresh one."""

    DAILY = "daily"
    IDLE = "idle"


class SessionResetPolicy(BaseModel):
    mode: SessionResetMode = SessionResetMode.DAILY
    at_hour: int = Field(default=4, ge=0, le=23)
    idle_minutes: int | None = Field(default=None, gt=0)


class SessionCompactionConfig(BaseModel):
    enabled: bool = True
    trigger_message_count: int = Field(default=80, gt=0)
    trigger_chars: int = Field(default=32_000, gt=0)
    keep_recent_messages: int = Field(default=20, gt=0)
    summary_max_chars: int = Field(default=4_000, gt=0)


class SessionConfig(BaseModel):
    """Session behavior shared by all agents of one ``SessionService``."""

    main_key: str = "main"
    reset: SessionResetPolicy = Field(default_factory=SessionResetPolicy)
    compaction: SessionCompactionConfig = Field(default_factory=SessionCompactionConfig)


class SessionEntry(CamelModel):
    """One persisted record per (agent, session key)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    session_id: str
    updated_at: int
    title: str | None = None
    transcript_file: str | None = None
    workspace_path: str | None = None
    project_path: str | None = None
    input_chars: int = 0
    output_chars: int = 0
    total_chars: int = 0
    compaction_count: int = 0


class SessionStoreFile(CamelModel):
    """Shape of ``agents/<agent_id>/sessions/sessions.json``."""

    schema_version: Literal[1] = SESSION_STORE_SCHEMA_VERSION
    sessions: dict[str, SessionEntry] = Field(default_factory=dict)


class TranscriptHeader(CamelModel):
    type: Literal["session"] = "session"
    schema_version: Literal[1] = SESSION_TRANSCRIPT_SCHEMA_VERSION
    session_id: str
    session_key: str
    agent_id: str
    created_at: str
    workspace_path: str | None = None
    project_path: str | None = None


class TranscriptMessage(CamelModel):
    type: Literal["message"] = "message"
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: int


class TranscriptCompaction(CamelModel):
    type: Literal["compaction"] = "compaction"
    summary: str
    compacted_messages: int
    kept_messages: int
    timestamp: int


TranscriptRecord = Annotated[
    TranscriptHeader | TranscriptMessage | TranscriptCompaction,
    Field(discriminator="type"),
]

transcript_record_adapter: TypeAdapter[TranscriptRecord] = TypeAdapter(TranscriptRecord)


class SessionInfo(CamelModel):
    """Resolved session identity for one run of one agent."""

    agent_id: str
    session_key: str
    session_id: str
    project_path: str | None = None
    updated_at: int
    compaction_count: int = 0
    transcript_path: Path
    workspace_path: Path
    is_new_session: bool = False


@dataclass(frozen=True)
class SessionEnabled:
    info: SessionInfo
    compaction_applied: bool = False
    enabled: Literal[True] = True


@dataclass(frozen=True)
class SessionDisabled:
    enabled: Literal[False] = False


SessionResolution = SessionEnabled | SessionDisabled


class SessionSummary(CamelModel):
    session_key: str
    session_id: str
    title: str
    updated_at: int
    transcript_path: Path
    workspace_path: Path
    project_path: str | None = None
    input_chars: int = 0
    output_chars: int = 0
    total_chars: int = 0
    compaction_count: int = 0


class SessionHistoryItem(CamelModel):
    type: Literal["message", "compaction"]
    role: Literal["user", "assistant", "system"] | None = None
    content: str
    timestamp: int


class SessionHistory(CamelModel):
    session_key: str
    session_id: str | None = None
    transcript_path: Path | None = None
    messages: list[SessionHistoryItem] = Field(default_factory=list)


class SessionCompactionResult(CamelModel):
    session_key: str
    session_id: str
    transcript_path: Path
    applied: bool
    summary: str | None = None
    compacted_messages: int = 0


class SessionRemoveResult(CamelModel):
    session_key: str
    session_id: str
    title: str
    transcript_path: Path


class AgentLastAction(CamelModel):
    agent_id: str
    session_key: str
    session_id: str
    transcript_path: Path
    timestamp: int
