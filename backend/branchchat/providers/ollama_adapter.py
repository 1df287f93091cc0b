from __future__ import annotations

import asyncio
import json
from contextlib import aclosing
from typing import Any, AsyncIterator

from branchchat.providers.base import (
    HTTPProviderAdapter,
    ProviderError,
    ProviderRuntimeConfig,
    join_url,
)


class OllamaAdapter(HTTPProviderAdapter):
    """Adapter for the Ollama local API (NDJSON streaming)."""

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        url = join_url(cfg.base_url, "/api/tags", "Ollama", "/api")
        data = await self._request_json("GET", url)
        models = [item.get("name") for item in data.get("models", []) if item.get("name")]
        if not models:
            raise ProviderError("PROVIDER_NO_MODELS", "No models returned by provider.")
        return models

    async def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        abort: asyncio.Event,
    ) -> AsyncIterator[str]:
        url = join_url(cfg.base_url, "/api/chat", "Ollama", "/api")
        payload = {"model": cfg.model_name, "messages": messages, "stream": True}
        lines = self._stream_lines("POST", url, abort, json=payload)
        async with aclosing(lines):
            async for line in lines:
                if not line.strip():
                    continue
                try:
                    chunk: Any = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ProviderError(
                        "PROVIDER_PARSE_ERROR", "Invalid JSON line from provider."
                    ) from exc
                if not isinstance(chunk, dict):
                    continue
                if chunk.get("error"):
                    raise ProviderError("PROVIDER_STREAM_ERROR", str(chunk["error"]))
                content = (chunk.get("message") or {}).get("content")
                if isinstance(content, str) and content:
                    yield content
                if chunk.get("done"):
                    return
