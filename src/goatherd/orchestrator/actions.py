"""Closed action vocabulary for the orchestration loop.

``OrchestrationAction`` is a tagged union discriminated on ``type``. Every
consumer matches on the concrete class and ends with ``assert_never`` so a new
variant cannot be added without handling it everywhere.

Validators normalize what planners produce: agent ids are lowercased, task
keys slugified, and ``mode`` defaults by action kind.
"""

import re
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from goatherd.domain import CamelModel

MAX_TASK_KEY_CHARS = 80

_NON_TASK_KEY_CHARS = re.compile(r"[^a-z0-9._:-]+")
_REPEATED_DASHES = re.compile(r"-+")


class CommunicationMode(str, Enum):
    """How a step exchanges information with other agents."""

    DIRECT = "direct"
    ARTIFACTS = "artifacts"
    HYBRID = "hybrid"


class SessionPolicy(str, Enum):
    """Task-thread behavior for a delegation."""

    AUTO = "auto"
    NEW = "new"
    REUSE = "reuse"


def normalize_task_key(value: str | None) -> str | None:
    """Slugify a task key ("Task Auth Fix!" -> "task-auth-fix"), max 80 chars."""
    raw = (value or "").strip().lower()
    if not raw:
        return None
    normalized = _REPEATED_DASHES.sub("-", _NON_TASK_KEY_CHARS.sub("-", raw)).strip("-")
    return normalized[:MAX_TASK_KEY_CHARS] or None


def _strip(value: str | None) -> str | None:
    return value.strip() if value is not None else None


def _lower_id(value: str | None) -> str | None:
    return value.strip().lower() if value is not None else None


class _BaseAction(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore"
    )

    default_mode: ClassVar[CommunicationMode] = CommunicationMode.DIRECT

    mode: CommunicationMode
    reason: str | None = None

    @model_validator(mode="before")
    @classmethod
    def fill_default_mode(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("mode") is None:
            return {**data, "mode": cls.default_mode}
        return data


class DelegateToAgent(_BaseAction):
    default_mode: ClassVar[CommunicationMode] = CommunicationMode.HYBRID

    type: Literal["delegate_to_agent"] = "delegate_to_agent"
    target_agent_id: str
    message: str
    expected_output: str | None = None
    task_key: str | None = None
    session_policy: SessionPolicy = SessionPolicy.AUTO

    @field_validator("target_agent_id")
    @classmethod
    def normalize_target(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        return v.strip()

    @field_validator("task_key")
    @classmethod
    def normalize_key(cls, v: str | None) -> str | None:
        return normalize_task_key(v)

    @field_validator("session_policy", mode="before")
    @classmethod
    def default_policy(cls, v: Any) -> Any:
        return SessionPolicy.AUTO if v is None else v


class ReadWorkspaceFile(_BaseAction):
    default_mode: ClassVar[CommunicationMode] = CommunicationMode.ARTIFACTS

    type: Literal["read_workspace_file"] = "read_workspace_file"
    path: str

    @field_validator("path")
    @classmethod
    def strip_path(cls, v: str) -> str:
        return v.strip()


class WriteWorkspaceFile(_BaseAction):
    default_mode: ClassVar[CommunicationMode] = CommunicationMode.ARTIFACTS

    type: Literal["write_workspace_file"] = "write_workspace_file"
    path: str
    content: str

    @field_validator("path")
    @classmethod
    def strip_path(cls, v: str) -> str:
        return v.strip()


class InstallSkill(_BaseAction):
    default_mode: ClassVar[CommunicationMode] = CommunicationMode.ARTIFACTS

    type: Literal["install_skill"] = "install_skill"
    skill_name: str
    target_agent_id: str | None = None
    source_path: str | None = None
    description: str | None = None
    content: str | None = None

    @field_validator("skill_name", "source_path", "description")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        return _strip(v)

    @field_validator("target_agent_id")
    @classmethod
    def normalize_target(cls, v: str | None) -> str | None:
        return _lower_id(v)


class RespondUser(_BaseAction):
    type: Literal["respond_user"] = "respond_user"
    message: str

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        return v.strip()


class Finish(_BaseAction):
    type: Literal["finish"] = "finish"
    message: str

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        return v.strip()


OrchestrationAction = Annotated[
    DelegateToAgent | ReadWorkspaceFile | WriteWorkspaceFile | InstallSkill | RespondUser | Finish,
    Field(discriminator="type"),
]

_DEFAULT_RATIONALES = {
    "delegate_to_agent": "Delegating to specialized agent.",
    "read_workspace_file": "Reading workspace file.",
    "write_workspace_file": "Writing workspace file.",
    "install_skill": "Installing skill.",
    "respond_user": "Responding directly to user.",
    "finish": "Responding directly to user.",
}


class OrchestrationPlannerDecision(CamelModel):
    """One planner output: a rationale and exactly one action."""

    rationale: str = ""
    action: OrchestrationAction

    @model_validator(mode="after")
    def default_rationale(self) -> "OrchestrationPlannerDecision":
        self.rationale = self.rationale.strip() or _DEFAULT_RATIONALES[self.action.type]
        return self


action_adapter: TypeAdapter[OrchestrationAction] = TypeAdapter(OrchestrationAction)
