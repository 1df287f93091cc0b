from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from fastapi import Request

from branchchat.core.config import Settings, get_settings
from branchchat.providers.base import (
    MockAdapter,
    ProviderError,
    ProviderRuntimeConfig,
    StreamingAdapter,
)
from branchchat.providers.ollama_adapter import OllamaAdapter
from branchchat.providers.openai_adapter import OpenAIAdapter
from branchchat.services.streaming import TextStreamFactory

SUPPORTED_PROVIDERS = ("openai", "ollama", "mock")


class ProviderService:
    """Resolve provider adapters and runtime configuration from settings."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        adapters: Optional[dict[str, StreamingAdapter]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        timeout = self._settings.provider_timeout_sec
        self._adapters = adapters or {
            "openai": OpenAIAdapter(timeout_sec=timeout),
            "ollama": OllamaAdapter(timeout_sec=timeout),
            "mock": MockAdapter(
                chunk_size=self._settings.mock_chunk_size,
                delay_sec=self._settings.mock_chunk_delay_sec,
            ),
        }

    @property
    def default_provider(self) -> str:
        return self._settings.default_provider.strip().lower()

    @property
    def default_model(self) -> str:
        return self._settings.default_model

    def list_providers(self) -> list[str]:
        """Return the names of the registered adapters."""

        return list(self._adapters)

    def set_adapters(self, adapters: dict[str, StreamingAdapter]) -> None:
        """Replace the adapter registry."""

        self._adapters = adapters

    def resolve(
        self, provider: Optional[str], model_name: Optional[str]
    ) -> tuple[StreamingAdapter, ProviderRuntimeConfig]:
        """Return the adapter and runtime configuration for a provider/model pair."""

        provider = self._normalize_provider(provider or self._settings.default_provider)
        model_name = (model_name or "").strip() or self._settings.default_model
        if not model_name:
            raise ProviderError("PROVIDER_MODEL_INVALID", "Model name must not be empty.")
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"No adapter registered for {provider}.")
        base_url, api_key = self._endpoint(provider)
        return adapter, ProviderRuntimeConfig(provider, model_name, base_url, api_key)

    def stream_factory(
        self,
        adapter: StreamingAdapter,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
    ) -> TextStreamFactory:
        """Bind a prompt to an adapter, leaving the abort signal to the caller."""

        def factory(abort: asyncio.Event) -> AsyncIterator[str]:
            return adapter.stream_chat(cfg, messages, abort)

        return factory

    async def list_models(self, provider: str) -> list[str]:
        """Fetch available models from a provider."""

        adapter, runtime_cfg = self.resolve(provider, None)
        return self._normalize_models(await adapter.list_models(runtime_cfg))

    def _endpoint(self, provider: str) -> tuple[Optional[str], Optional[str]]:
        settings = self._settings
        endpoints = {
            "openai": (settings.openai_base_url, settings.openai_api_key or None),
            "ollama": (settings.ollama_base_url, None),
        }
        return endpoints.get(provider, (None, None))

    def _normalize_provider(self, provider: str) -> str:
        normalized = provider.strip().lower()
        if normalized not in SUPPORTED_PROVIDERS and normalized not in self._adapters:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        return normalized

    @staticmethod
    def _normalize_models(models: list[str]) -> list[str]:
        names = (model.strip() for model in models)
        return list(dict.fromkeys(name for name in names if name))


def get_provider_service(request: Request) -> ProviderService:
    """Dependency to access the provider service from app state."""

    return request.app.state.provider_service
