"""
Health check endpoints.

Provides liveness, readiness, and metrics snapshots for monitoring.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from chatrelay import __version__
from chatrelay.auth.dependencies import request_settings
from chatrelay.core import metrics
from chatrelay.providers import ProviderRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
@router.get("/healthz")
async def healthcheck(request: Request) -> dict[str, Any]:
    """
    Health check endpoint.

    Returns basic service health status. Used by load balancers,
    orchestrators, and monitoring systems.
    """
    settings = request_settings(request)

    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "debug": settings.debug,
    }


@router.get("/readyz")
async def readiness(request: Request) -> JSONResponse:
    """
    Readiness check endpoint.

    Ready when at least one enabled provider has its API key configured.
    Makes no upstream calls.
    """
    registry: ProviderRegistry | None = getattr(request.app.state, "provider_registry", None)
    provider_checks: dict[str, bool] = {}
    if registry is not None:
        for descriptor in registry.descriptors():
            provider_checks[descriptor.id] = registry.resolve(descriptor.id).adapter.has_credentials

    ready = any(provider_checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": {"providers": provider_checks},
        },
    )


@router.get("/health/metrics")
async def metrics_snapshot() -> dict[str, Any]:
    """In-process counters, gauges and duration summaries."""
    return metrics.snapshot()
