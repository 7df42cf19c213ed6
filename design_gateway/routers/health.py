"""
Health check endpoints for service monitoring.

Provides /healthz for load balancers plus liveness and readiness probes.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from design_gateway.config import Settings, get_settings
from design_gateway.utils.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/healthz",
    response_model=Dict[str, str],
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Returns service health status and version information",
)
async def health_check(
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> Dict[str, str]:
    """
    Example response:
        {"status": "ok", "version": "0.1.0", "environment": "development"}
    """
    logger.debug("Health check requested")

    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.app_env,
    }


@router.get("/healthz/live", include_in_schema=False)
async def liveness_probe() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/healthz/ready", include_in_schema=False)
async def readiness_probe(request: Request) -> Any:
    """Ready once the gateway has been built during startup."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ready": False},
        )

    return {
        "ready": True,
        "cache": gateway.cache.stats() if gateway.cache else None,
    }
