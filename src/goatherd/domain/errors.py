"""Error hierarchy.

Recoverable conditions (a single failed provider call) never raise into the
orchestration loop; they are recorded in the run ledger. Everything here is
either fatal to a run or a misuse of an API.
"""

from pathlib import Path


class GoatherdError(Exception):
    """Base exception for all goatherd errors."""

    pass


class PlanningError(GoatherdError):
    """Raised when the planner produces a malformed or unauthorized action.

    Attributes:
        raw_output: The planner output that could not be accepted, if any.
    """

    def __init__(self, message: str, raw_output: str | None = None) -> None:
        super().__init__(message)
        self.raw_output = raw_output


class ProviderError(GoatherdError):
    """Base exception for provider registry and capability misuse."""

    pass


class ProviderNotFoundError(ProviderError):
    """Raised when a provider id is not registered."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(f"Provider not registered: {provider_id}")
        self.provider_id = provider_id


class ProviderCapabilityError(ProviderError):
    """Raised when an optional provider operation is not supported."""

    def __init__(self, provider_id: str, capability: str) -> None:
        super().__init__(f"Provider {provider_id} does not support {capability}")
        self.provider_id = provider_id
        self.capability = capability


class RunCancelledError(GoatherdError):
    """Raised inside a run when its cancellation token fires."""

    pass


class SessionStoreError(GoatherdError):
    """Raised when the session store cannot be read or written."""

    pass


class SessionStoreParseError(SessionStoreError):
    """Raised when a session store file is not valid."""

    def __init__(self, store_path: Path) -> None:
        super().__init__(f"Session store is corrupt: {store_path}")
        self.store_path = store_path


class SessionTranscriptParseError(SessionStoreError):
    """Raised when a transcript line is not valid JSON."""

    def __init__(self, transcript_path: Path) -> None:
        super().__init__(f"Session transcript is corrupt: {transcript_path}")
        self.transcript_path = transcript_path


class SessionNotFoundError(GoatherdError):
    """Raised when renaming or removing a session that does not exist."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"Session not found: {reference}")
        self.reference = reference
