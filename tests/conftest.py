"""Shared fixtures: on-disk layout, a small roster and scripted providers."""

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from goatherd.config import GoatherdPaths, reset_settings
from goatherd.domain import AgentDescriptor, AgentRole, AgentRoster
from goatherd.providers import (
    BaseProvider,
    ExecutionResult,
    InvokeOptions,
    ProviderCapabilities,
    ProviderKind,
    ProviderRegistry,
)
from goatherd.telemetry.logger import configure_logging

configure_logging(log_level="WARNING", file_logging=False)


ScriptStep = str | ExecutionResult | Callable[[InvokeOptions], ExecutionResult] | Exception


class ScriptedProvider(BaseProvider):
    """Provider that replays a fixed script of replies and records every call.

    Each script entry is a reply text, a full ``ExecutionResult``, a callable
    taking the invoke options, or an exception to raise. The last entry is
    repeated once the script runs out.
    """

    def __init__(self, provider_id: str, script: list[ScriptStep] | None = None) -> None:
        super().__init__(
            provider_id,
            ProviderKind.CLI,
            ProviderCapabilities(model=True, passthrough=True),
        )
        self.script = list(script or ["ok"])
        self.calls: list[InvokeOptions] = []

    async def invoke(self, options: InvokeOptions) -> ExecutionResult:
        self.validate_invoke_options(options)
        self.calls.append(options)
        index = min(len(self.calls) - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, ExecutionResult):
            return step
        if callable(step):
            return step(options)
        return ExecutionResult(code=0, stdout=step)


def make_agent(
    agent_id: str,
    description: str = "",
    provider_id: str | None = None,
    manager: bool = False,
    **kwargs: object,
) -> AgentDescriptor:
    return AgentDescriptor(
        agent_id=agent_id,
        name=kwargs.pop("name", agent_id.title()),  # type: ignore[arg-type]
        description=description,
        provider_id=provider_id or agent_id,
        role=AgentRole.MANAGER if manager else AgentRole.INDIVIDUAL,
        can_delegate=manager,
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture
def scripted() -> type[ScriptedProvider]:
    return ScriptedProvider


@pytest.fixture
def agent_factory() -> Callable[..., AgentDescriptor]:
    return make_agent


@pytest.fixture
def paths(tmp_path: Path) -> GoatherdPaths:
    return GoatherdPaths(home_dir=tmp_path / "home")


@pytest.fixture
def roster() -> AgentRoster:
    """goat (manager) with writer and coder specialists."""
    return AgentRoster(
        [
            make_agent("goat", "Routes tasks to the right specialist", manager=True),
            make_agent(
                "writer",
                "Writes blog posts, articles and release notes",
                skills=("blog", "copywriting"),
                tags=("writing",),
            ),
            make_agent(
                "coder",
                "Fixes bugs and implements features in Python code",
                skills=("python", "debugging"),
                tags=("engineering",),
            ),
        ]
    )


@pytest.fixture
def registry_factory() -> Callable[..., ProviderRegistry]:
    """Build a registry from ``{provider_id: ScriptedProvider}``."""

    def build(**providers: ScriptedProvider) -> ProviderRegistry:
        registry = ProviderRegistry()
        for provider_id, provider in providers.items():
            registry.register(provider_id, lambda p=provider: p)
        return registry

    return build


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point settings at a temporary home and drop the cached singleton."""
    monkeypatch.setenv("GOATHERD_HOME_DIR", str(tmp_path / "home"))
    monkeypatch.delenv("GOATHERD_ROSTER_PATH", raising=False)
    reset_settings()
    yield
    reset_settings()
