"""System endpoints for operational visibility."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from pack_vault.api.v1.dependencies import DeliveryServiceDep

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/renderer")
async def get_renderer_status(service: DeliveryServiceDep) -> dict[str, Any]:
    """Return the renderer circuit breaker state and call metrics.

    Excludes the renderer URL and any key material.
    """
    renderer = service.renderer
    return {
        "enabled": renderer.enabled,
        "circuit_breaker": renderer.get_circuit_breaker_status(),
        "metrics": renderer.get_metrics(),
    }
