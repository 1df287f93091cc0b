from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from branchchat.providers.base import (
    HTTPProviderAdapter,
    ProviderError,
    ProviderRuntimeConfig,
    join_url,
    require_api_key,
)

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class OpenAIAdapter(HTTPProviderAdapter):
    """Adapter for OpenAI-compatible chat completion APIs (SSE streaming)."""

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        url = join_url(cfg.base_url, "/v1/models", "OpenAI", "/v1")
        data = await self._request_json("GET", url, headers=self._auth_headers(cfg.api_key))
        models = [item.get("id") for item in data.get("data", []) if item.get("id")]
        if not models:
            raise ProviderError("PROVIDER_NO_MODELS", "No models returned by provider.")
        return models

    async def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        abort: asyncio.Event,
    ) -> AsyncIterator[str]:
        url = join_url(cfg.base_url, "/v1/chat/completions", "OpenAI", "/v1")
        payload = {"model": cfg.model_name, "messages": messages, "stream": True}
        lines = self._stream_lines(
            "POST", url, abort, headers=self._auth_headers(cfg.api_key), json=payload
        )
        async with aclosing(lines):
            async for line in lines:
                data = parse_sse_line(line)
                if data is None:
                    continue
                if data == SSE_DONE:
                    return
                delta = self._parse_chunk(data)
                if delta:
                    yield delta

    def _auth_headers(self, api_key: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {require_api_key(api_key, 'OpenAI')}"}

    @staticmethod
    def _parse_chunk(data: str) -> Optional[str]:
        try:
            chunk: Any = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping unparsable SSE chunk: %s", data[:100])
            return None
        if not isinstance(chunk, dict):
            return None
        error = chunk.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError("PROVIDER_STREAM_ERROR", message or "Provider stream failed.")
        choices = chunk.get("choices") or []
        if not choices:
            return None
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
        return content if isinstance(content, str) else None


def parse_sse_line(line: str) -> Optional[str]:
    """Return the payload of an SSE ``data:`` line, or None for anything else."""

    stripped = line.strip()
    if not stripped.startswith(SSE_DATA_PREFIX):
        return None
    payload = stripped[len(SSE_DATA_PREFIX):].strip()
    return payload or None
