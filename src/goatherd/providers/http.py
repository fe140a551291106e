"""OpenAI-compatible HTTP provider.

Sends one chat/completions request per invocation. Transport and HTTP errors
are converted into a non-zero ``ExecutionResult`` so the orchestration loop
can record them and continue.
"""

import asyncio
import time
from typing import Any

import httpx
from typing_extensions import TypedDict

from goatherd.providers.types import (
    BaseProvider,
    ExecutionResult,
    InvokeOptions,
    ProviderCapabilities,
    ProviderKind,
)
from goatherd.telemetry import get_logger

log = get_logger(__name__)


class ChatMessage(TypedDict):
    """One chat/completions message."""

    role: str
    content: str


def build_chat_completions_request(
    message: str,
    model: str,
    system_prompt: str | None = None,
    session_context: str | None = None,
) -> dict[str, Any]:
    """Build a chat/completions payload for a single user turn."""
    messages: list[ChatMessage] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    if session_context:
        messages.append({"role": "system", "content": session_context})
    messages.append({"role": "user", "content": message})
    return {"model": model, "messages": messages}


def extract_chat_completions_text(response_data: dict[str, Any]) -> str:
    """Pull the assistant text out of a chat/completions response.

    Raises:
        ValueError: If the response has no usable choice.
    """
    choices = response_data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ValueError("Response has no choices")
    message = choices[0].get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        # Some servers return content parts instead of a string
        return "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        ).strip()
    if not isinstance(content, str):
        raise ValueError("Response message has no text content")
    return content.strip()


class HttpProvider(BaseProvider):
    """Provider backed by an OpenAI-compatible HTTP API.

    Attributes:
        base_url: API base URL (e.g. ``http://localhost:1234/v1``).
        api_key: Bearer token, if the server requires one.
        model: Default model id.
        timeout_seconds: Read timeout for model generation.
        max_retries: Retries for timeouts, 429 and 5xx responses.
    """

    def __init__(
        self,
        provider_id: str,
        base_url: str,
        model: str,
        api_key: str | None = None,
        timeout_seconds: float = 600.0,
        max_retries: int = 2,
        display_name: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            provider_id=provider_id,
            kind=ProviderKind.HTTP,
            capabilities=ProviderCapabilities(model=True),
            display_name=display_name,
        )
        self.base_url = base_url
        self.model = model
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self._transport = transport

    @property
    def endpoint(self) -> str:
        base = self.base_url.rstrip("/")
        if base.endswith("/v1"):
            return f"{base}/chat/completions"
        return f"{base}/v1/chat/completions"

    def _headers(self, options: InvokeOptions) -> dict[str, str]:
        api_key = self.api_key or (options.env or {}).get("OPENAI_API_KEY")
        if not api_key:
            return {}
        return {"Authorization": f"Bearer {api_key}"}

    async def invoke(self, options: InvokeOptions) -> ExecutionResult:
        self.validate_invoke_options(options)
        model = options.model or self.model
        payload = build_chat_completions_request(
            message=options.message,
            model=model,
            system_prompt=options.system_prompt,
            session_context=options.session_context,
        )
        timeout_config = httpx.Timeout(
            connect=10.0,
            read=self.timeout_seconds,
            write=10.0,
            pool=10.0,
        )

        start_time = time.time()
        error_text = "Request failed with unknown error"
        attempt = 0
        async with httpx.AsyncClient(
            timeout=timeout_config, headers=self._headers(options), transport=self._transport
        ) as client:
            while attempt <= self.max_retries:
                try:
                    response = await client.post(self.endpoint, json=payload)
                    response.raise_for_status()
                    text = extract_chat_completions_text(response.json())
                    log.debug(
                        "http_provider_response",
                        provider_id=self.id,
                        model=model,
                        latency_ms=int((time.time() - start_time) * 1000),
                    )
                    return ExecutionResult(code=0, stdout=text)

                except httpx.TimeoutException:
                    error_text = f"Request to {self.endpoint} timed out after {self.timeout_seconds}s"
                    if attempt < self.max_retries:
                        await asyncio.sleep(2**attempt)
                        attempt += 1
                        continue
                    break

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    error_text = f"HTTP error {status}: {e.response.text[:500]}"
                    if (status == 429 or status >= 500) and attempt < self.max_retries:
                        await asyncio.sleep(2**attempt)
                        attempt += 1
                        continue
                    break

                except httpx.RequestError as e:
                    # Connection failures are not retried; the server is likely down
                    error_text = f"Failed to connect to {self.endpoint}: {e}"
                    break

                except ValueError as e:
                    error_text = f"Invalid response format: {e}"
                    break

        log.warning(
            "http_provider_error",
            provider_id=self.id,
            endpoint=self.endpoint,
            error=error_text,
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return ExecutionResult(code=1, stderr=error_text)
