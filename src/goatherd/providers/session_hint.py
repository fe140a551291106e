"""Best-effort extraction of backend session ids from free-form output.

Backends that do not return a structured session id often print one. These
patterns are heuristic and may misfire on unrelated text; providers with a
structured format should set ``ExecutionResult.provider_session_id`` directly.
"""

import re

from goatherd.providers.types import ExecutionResult

_SESSION_ID_PATTERNS = (
    re.compile(r'"sessionID"\s*:\s*"([^"\s]+)"', re.IGNORECASE),
    re.compile(r'"sessionId"\s*:\s*"([^"\s]+)"', re.IGNORECASE),
    re.compile(r'"chatId"\s*:\s*"([^"\s]+)"', re.IGNORECASE),
    re.compile(r"\bsession(?:\s+id)?\s*[:=]\s*([a-z0-9][a-z0-9._-]{5,})\b", re.IGNORECASE),
    re.compile(r"\bchat(?:\s+id)?\s*[:=]\s*([a-z0-9][a-z0-9._-]{5,})\b", re.IGNORECASE),
)

_UUID_PATTERN = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[1-8][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)


def extract_session_hint(text: str) -> str | None:
    """Return the first session id found in ``text``, or None.

    Keyed patterns are tried in order before falling back to any UUID.
    """
    text = text.strip()
    if not text:
        return None

    for pattern in _SESSION_ID_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()

    match = _UUID_PATTERN.search(text)
    if match:
        return match.group(0)
    return None


def attach_provider_session_id(
    result: ExecutionResult, explicit_session_id: str | None = None
) -> ExecutionResult:
    """Fill ``provider_session_id`` from an explicit value or the output text."""
    explicit = (explicit_session_id or "").strip()
    if explicit:
        return result.model_copy(update={"provider_session_id": explicit})

    discovered = extract_session_hint(f"{result.stdout}\n{result.stderr}")
    if discovered is None:
        return result
    return result.model_copy(update={"provider_session_id": discovered})
