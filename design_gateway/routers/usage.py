"""
Usage and limit endpoints.

Reports are read-only projections of the cost governor; limit updates are
persisted immediately.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from design_gateway.gateway import ResourceGateway
from design_gateway.routers.deps import get_gateway, provider_token
from design_gateway.services.cache_service import credential_fingerprint

router = APIRouter()


class LimitsUpdate(BaseModel):
    daily: Optional[float] = Field(None, ge=0)
    monthly: Optional[float] = Field(None, ge=0)
    perRequest: Optional[float] = Field(None, ge=0)


@router.get("/usage", summary="AI usage report")
async def usage_report(
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    return {
        "report": gateway.get_usage_report(),
        "stats": gateway.get_usage_stats(),
    }


@router.patch("/usage/limits", summary="Update cost ceilings")
async def update_limits(
    body: LimitsUpdate,
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, float]:
    limits = gateway.update_cost_limits(
        **body.model_dump(exclude_none=True)
    )
    return limits.to_dict()


@router.get("/rate-limits", summary="Rate-limit windows for the calling credential")
async def rate_limits(
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    return gateway.get_rate_limit_stats(credential_fingerprint(token))
