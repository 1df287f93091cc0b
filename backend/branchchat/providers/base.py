from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol

import httpx

RETRYABLE_STATUS_CODES = {408: "PROVIDER_TIMEOUT", 429: "PROVIDER_RATE_LIMIT"}
UNKNOWN_PROVIDER_ERROR = "Unknown error from provider."


@dataclass
class ProviderRuntimeConfig:
    """Provider, model and endpoint a single stream talks to."""

    provider: str
    model_name: str
    base_url: str | None = None
    api_key: str | None = None


class StreamingAdapter(Protocol):
    """Transport interface for chat providers.

    ``stream_chat`` yields text deltas. Exhausting the iterator means the
    provider finished; raising ``ProviderError`` means it failed. Implementations
    stop yielding once ``abort`` is set.
    """

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        """List model names the provider offers."""

    def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        abort: asyncio.Event,
    ) -> AsyncIterator[str]:
        """Stream a chat completion as text deltas."""


class ProviderError(RuntimeError):
    """Normalized failure from a provider call or stream."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


def build_status_error(response: httpx.Response) -> ProviderError:
    """Map an error response to a ProviderError; 408, 429 and 5xx are retryable."""

    status = response.status_code
    detail = f"Provider returned {status}: {_response_detail(response)}"
    if status in RETRYABLE_STATUS_CODES:
        return ProviderError(
            RETRYABLE_STATUS_CODES[status], detail, retryable=True, status_code=status
        )
    if status >= 500:
        return ProviderError("PROVIDER_UPSTREAM", detail, retryable=True, status_code=status)
    return ProviderError("PROVIDER_BAD_STATUS", detail, status_code=status)


def require_api_key(api_key: Optional[str], provider_name: str) -> str:
    if not api_key:
        raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider_name}.")
    return api_key


def join_url(base_url: Optional[str], path: str, provider_name: str, prefix: str) -> str:
    """Join a base URL and an API path without doubling the version prefix."""

    if not base_url:
        raise ProviderError(
            "PROVIDER_BASE_URL_MISSING", f"Base URL is required for {provider_name}."
        )
    base = base_url.rstrip("/")
    if base.endswith(prefix) and path.startswith(prefix + "/"):
        return base + path[len(prefix):]
    return base + path


def _response_detail(response: httpx.Response) -> str:
    try:
        payload: Any = response.json()
    except ValueError:
        payload = None

    candidates: list[Any] = []
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            candidates.extend([error.get("message"), error.get("code")])
        candidates.extend([error, payload.get("message")])
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return (response.text or UNKNOWN_PROVIDER_ERROR).strip()


@asynccontextmanager
async def translate_transport_errors() -> AsyncIterator[None]:
    """Re-raise httpx timeouts and connection failures as retryable ProviderErrors."""

    try:
        yield
    except httpx.TimeoutException as exc:
        raise ProviderError(
            "PROVIDER_TIMEOUT", "Provider request timed out.", retryable=True
        ) from exc
    except httpx.RequestError as exc:
        raise ProviderError(
            "PROVIDER_CONNECTION_ERROR", "Provider connection failed.", retryable=True
        ) from exc


class HTTPProviderAdapter:
    """Shared HTTP plumbing for adapters: one-shot JSON calls and line streams."""

    def __init__(
        self, timeout_sec: float = 90, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._client = http_client

    async def _request_json(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        async with translate_transport_errors():
            async with self._http() as client:
                response = await client.request(method, url, headers=headers, json=json)
        if response.status_code >= 400:
            raise build_status_error(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid JSON from provider.") from exc
        if not isinstance(payload, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned invalid JSON payload.")
        return payload

    async def _stream_lines(
        self,
        method: str,
        url: str,
        abort: asyncio.Event,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        """Yield response body lines until the body ends or ``abort`` is set."""

        async with translate_transport_errors():
            async with self._http() as client:
                async with client.stream(method, url, headers=headers, json=json) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise build_status_error(response)
                    async for line in response.aiter_lines():
                        if abort.is_set():
                            return
                        yield line

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client


class MockAdapter:
    """Offline adapter that echoes the last user message in small chunks."""

    def __init__(self, chunk_size: int = 4, delay_sec: float = 0.0) -> None:
        self._chunk_size = max(1, chunk_size)
        self._delay_sec = delay_sec

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        return [cfg.model_name or "mock-1"]

    async def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        abort: asyncio.Event,
    ) -> AsyncIterator[str]:
        prompt = next(
            (item.get("content", "") for item in reversed(messages) if item.get("role") == "user"),
            "",
        )
        reply = f"Echo: {prompt}" if prompt else "Hello!"
        for start in range(0, len(reply), self._chunk_size):
            if abort.is_set():
                return
            await asyncio.sleep(self._delay_sec)
            yield reply[start : start + self._chunk_size]
