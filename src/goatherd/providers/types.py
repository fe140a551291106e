"""Type definitions for the provider layer.

A provider is the execution backend an agent is bound to: a local command-line
tool or an HTTP model API. The orchestration core only sees the ``Provider``
protocol defined here; argument building and transport live in the concrete
shims.
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from goatherd.domain import ProviderCapabilityError


class ProviderKind(str, Enum):
    """How a provider executes requests."""

    CLI = "cli"
    HTTP = "http"


class ProviderCapabilities(BaseModel):
    """Capability flags gating which invoke options and operations are legal."""

    model_config = ConfigDict(frozen=True)

    agent: bool = False
    model: bool = False
    auth: bool = False
    passthrough: bool = False
    reportees: bool = False
    agent_create: bool = False
    agent_delete: bool = False


class InvokeOptions(BaseModel):
    """Options for a single provider invocation."""

    message: str = Field(..., description="Message sent to the backend")
    agent: str | None = Field(None, description="Backend-side agent name")
    model: str | None = Field(None, description="Model override")
    system_prompt: str | None = Field(None, description="System prompt")
    provider_session_id: str | None = Field(
        None, description="Backend session to continue, if any"
    )
    force_new_provider_session: bool = Field(
        False, description="Start a fresh backend session even if one is known"
    )
    session_context: str | None = Field(None, description="Extra session context text")
    passthrough_args: list[str] = Field(default_factory=list, description="Raw backend args")
    cwd: Path | None = Field(None, description="Working directory for CLI backends")
    env: dict[str, str] | None = Field(None, description="Extra environment variables")


class ExecutionResult(BaseModel):
    """Outcome of a provider call. Non-zero ``code`` means failure."""

    code: int = Field(..., description="Exit code (0 on success)")
    stdout: str = Field("", description="Backend response text")
    stderr: str = Field("", description="Backend error text")
    provider_session_id: str | None = Field(None, description="Backend session id, if known")

    @property
    def ok(self) -> bool:
        return self.code == 0


class CreateAgentOptions(BaseModel):
    """Options for creating a backend-side agent."""

    agent_id: str
    display_name: str
    workspace_dir: Path
    env: dict[str, str] | None = None


class DeleteAgentOptions(BaseModel):
    """Options for deleting a backend-side agent."""

    agent_id: str
    env: dict[str, str] | None = None


@runtime_checkable
class Provider(Protocol):
    """Capability-typed execution unit."""

    id: str
    kind: ProviderKind
    capabilities: ProviderCapabilities

    async def invoke(self, options: InvokeOptions) -> ExecutionResult: ...

    async def create_agent(self, options: CreateAgentOptions) -> ExecutionResult: ...

    async def delete_agent(self, options: DeleteAgentOptions) -> ExecutionResult: ...


class BaseProvider(ABC):
    """Base class for concrete providers.

    Subclasses implement ``invoke`` and call ``validate_invoke_options`` first.
    Optional operations raise ``ProviderCapabilityError`` unless the matching
    capability flag is set and the subclass overrides them.
    """

    def __init__(
        self,
        provider_id: str,
        kind: ProviderKind,
        capabilities: ProviderCapabilities,
        display_name: str | None = None,
    ) -> None:
        self.id = provider_id
        self.kind = kind
        self.capabilities = capabilities
        self.display_name = display_name or provider_id

    def validate_invoke_options(self, options: InvokeOptions) -> None:
        """Reject options the provider cannot honor.

        Raises:
            ProviderCapabilityError: If an option needs a missing capability.
        """
        if options.agent and not self.capabilities.agent:
            raise ProviderCapabilityError(self.id, "agent selection")
        if options.model and not self.capabilities.model:
            raise ProviderCapabilityError(self.id, "model selection")
        if options.passthrough_args and not self.capabilities.passthrough:
            raise ProviderCapabilityError(self.id, "passthrough arguments")

    @abstractmethod
    async def invoke(self, options: InvokeOptions) -> ExecutionResult:
        """Send one message to the backend."""
        ...

    async def create_agent(self, options: CreateAgentOptions) -> ExecutionResult:
        raise ProviderCapabilityError(self.id, "agent creation")

    async def delete_agent(self, options: DeleteAgentOptions) -> ExecutionResult:
        raise ProviderCapabilityError(self.id, "agent deletion")
