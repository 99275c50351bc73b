"""Health, readiness, metrics and version endpoints."""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from arena.config import get_settings
from arena.dependencies import get_services
from arena.services import Services

router = APIRouter()


@router.get("/health")
async def health(services: Services = Depends(get_services)) -> dict[str, Any]:  # noqa: B008
    """Per-component health report."""
    return await services.health.check()


@router.get("/ready")
async def readiness(services: Services = Depends(get_services)) -> JSONResponse:  # noqa: B008
    """Readiness probe: 503 while the store is unreachable."""
    report = await services.health.check()
    store = report["components"]["store"]
    ready = store["status"] != "unhealthy"
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "unavailable", "checks": {"store": store["status"]}},
    )


@router.get("/metrics")
async def metrics(services: Services = Depends(get_services)) -> dict[str, Any]:  # noqa: B008
    return await services.health.contest_metrics()


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
