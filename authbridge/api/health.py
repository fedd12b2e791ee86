"""Health and metrics endpoints."""

from fastapi import APIRouter

from authbridge.bridge.registry import registry

router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/metrics")
async def metrics():
    """Basic metrics endpoint for observability."""
    return {"service": "authbridge", "version": "0.1.0", "tenantEngines": len(registry)}
