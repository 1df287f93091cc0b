from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from branchchat.providers.base import ProviderError
from branchchat.schemas.provider import (
    ProviderInfo,
    ProviderListResponse,
    ProviderModelsResponse,
)
from branchchat.services.provider_service import ProviderService, get_provider_service

router = APIRouter(prefix="/api/providers", tags=["providers"])


@router.get("", response_model=ProviderListResponse)
async def list_providers(
    provider_service: ProviderService = Depends(get_provider_service),
) -> ProviderListResponse:
    """List the providers this server can stream from."""

    default = provider_service.default_provider
    return ProviderListResponse(
        providers=[
            ProviderInfo(provider=name, default=name == default)
            for name in provider_service.list_providers()
        ],
        default_model=provider_service.default_model,
    )


@router.get("/{provider}/models", response_model=ProviderModelsResponse)
async def list_models(
    provider: str,
    provider_service: ProviderService = Depends(get_provider_service),
) -> ProviderModelsResponse:
    """List available models for the provider."""

    try:
        models = await provider_service.list_models(provider)
    except ProviderError as exc:
        raise HTTPException(
            status_code=provider_status(exc.code),
            detail=exc.message,
        ) from exc
    return ProviderModelsResponse(provider=provider, models=models)


def provider_status(code: str) -> int:
    if code in {
        "API_KEY_REQUIRED",
        "PROVIDER_MODEL_INVALID",
        "PROVIDER_BASE_URL_MISSING",
        "PROVIDER_UNSUPPORTED",
    }:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_502_BAD_GATEWAY
