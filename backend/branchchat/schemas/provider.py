from __future__ import annotations

from typing import List

from branchchat.schemas.common import APIModel


class ProviderModelsResponse(APIModel):
    """Response containing available models for a provider."""

    provider: str
    models: List[str]


class ProviderInfo(APIModel):
    """A provider the server can stream from, with its default model."""

    provider: str
    default: bool


class ProviderListResponse(APIModel):
    """Configured providers and the default model."""

    providers: List[ProviderInfo]
    default_model: str
