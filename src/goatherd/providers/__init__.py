"""Provider layer: backend protocol, capability flags and registry."""

from goatherd.providers.command import CommandProvider
from goatherd.providers.http import HttpProvider
from goatherd.providers.registry import ProviderFactory, ProviderRegistry, default_registry
from goatherd.providers.session_hint import attach_provider_session_id, extract_session_hint
from goatherd.providers.types import (
    BaseProvider,
    CreateAgentOptions,
    DeleteAgentOptions,
    ExecutionResult,
    InvokeOptions,
    Provider,
    ProviderCapabilities,
    ProviderKind,
)

__all__ = [
    # Types
    "BaseProvider",
    "CreateAgentOptions",
    "DeleteAgentOptions",
    "ExecutionResult",
    "InvokeOptions",
    "Provider",
    "ProviderCapabilities",
    "ProviderKind",
    # Registry
    "ProviderFactory",
    "ProviderRegistry",
    "default_registry",
    # Session hints
    "attach_provider_session_id",
    "extract_session_hint",
    # Shims
    "CommandProvider",
    "HttpProvider",
]
