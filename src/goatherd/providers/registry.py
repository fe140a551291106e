"""Static provider registry.

Providers are registered explicitly by id with a factory; there is no
directory scanning. ``default_registry`` builds the registry for a roster's
``providers:`` settings.
"""

from collections.abc import Callable
from typing import Any

from goatherd.domain import ProviderNotFoundError
from goatherd.providers.types import Provider
from goatherd.telemetry import PROVIDER_REGISTERED, get_logger

log = get_logger(__name__)

ProviderFactory = Callable[[], Provider]


def _normalize_provider_id(provider_id: str) -> str:
    return provider_id.strip().lower()


class ProviderRegistry:
    """Maps provider id to a factory and caches created instances."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, Provider] = {}

    def register(self, provider_id: str, factory: ProviderFactory) -> None:
        """Register (or replace) a provider factory.

        Raises:
            ValueError: If the provider id is empty.
        """
        normalized = _normalize_provider_id(provider_id)
        if not normalized:
            raise ValueError("Provider id cannot be empty")
        self._factories[normalized] = factory
        self._instances.pop(normalized, None)
        log.debug(PROVIDER_REGISTERED, provider_id=normalized)

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and _normalize_provider_id(provider_id) in self._factories

    def list_provider_ids(self) -> list[str]:
        return sorted(self._factories)

    def get(self, provider_id: str) -> Provider:
        """Return the provider instance for an id, creating it on first use.

        Raises:
            ProviderNotFoundError: If the id is not registered.
        """
        normalized = _normalize_provider_id(provider_id)
        instance = self._instances.get(normalized)
        if instance is not None:
            return instance

        factory = self._factories.get(normalized)
        if factory is None:
            raise ProviderNotFoundError(normalized or "(empty)")
        instance = factory()
        self._instances[normalized] = instance
        return instance


def default_registry(
    provider_settings: dict[str, dict[str, Any]] | None = None,
    timeout_seconds: float | None = None,
    http_defaults: dict[str, Any] | None = None,
) -> ProviderRegistry:
    """Build a registry from roster provider settings.

    Each entry's ``kind`` selects the shim: ``command`` (default) or ``http``.
    ``http_defaults`` (``base_url``, ``model``, ``api_key``) fill keys an
    ``http`` entry leaves out.

    Example::

        providers:
          codex:
            kind: command
            command: ["codex", "exec"]
          local:
            kind: http
            base_url: http://localhost:1234/v1
            model: qwen3
    """
    # Imported here so the shims can import this module's types freely.
    from goatherd.providers.command import CommandProvider
    from goatherd.providers.http import HttpProvider

    registry = ProviderRegistry()
    for provider_id, raw in (provider_settings or {}).items():
        options = dict(raw or {})
        kind = str(options.pop("kind", "command")).lower()
        if timeout_seconds is not None:
            options.setdefault("timeout_seconds", timeout_seconds)

        match kind:
            case "http":
                for key, value in (http_defaults or {}).items():
                    if value is not None:
                        options.setdefault(key, value)
                registry.register(
                    provider_id,
                    lambda pid=provider_id, opts=options: HttpProvider(provider_id=pid, **opts),
                )
            case "command" | "cli":
                registry.register(
                    provider_id,
                    lambda pid=provider_id, opts=options: CommandProvider(provider_id=pid, **opts),
                )
            case _:
                raise ValueError(f"Unknown provider kind for {provider_id}: {kind}")
    return registry
