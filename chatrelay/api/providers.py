"""Provider registry read-only endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from chatrelay.auth.dependencies import request_settings
from chatrelay.providers import ProviderRegistry

router = APIRouter(tags=["providers"])


def get_registry(request: Request) -> ProviderRegistry:
    """Resolve provider registry from app state (initialize if missing)."""
    registry = getattr(request.app.state, "provider_registry", None)
    if registry is None:
        registry = ProviderRegistry(request_settings(request))
        request.app.state.provider_registry = registry
    return registry


@router.get("/providers")
async def list_providers(registry: ProviderRegistry = Depends(get_registry)) -> list[dict[str, Any]]:
    """List enabled providers with their models."""
    return [
        {
            "id": descriptor.id,
            "name": descriptor.display_name,
            "models": list(descriptor.models),
        }
        for descriptor in registry.descriptors()
    ]


@router.get("/providers/{provider_id}/models")
async def list_provider_models(
    provider_id: str, registry: ProviderRegistry = Depends(get_registry)
) -> list[str]:
    """List model identifiers for a specific provider."""
    return list(registry.resolve(provider_id).descriptor.models)
