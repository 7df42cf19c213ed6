"""Shared FastAPI dependencies for the API routers."""

from typing import Optional

from fastapi import Header, Request

from design_gateway.errors import InvalidInputError
from design_gateway.gateway import ResourceGateway


def get_gateway(request: Request) -> ResourceGateway:
    """The gateway built during application startup."""
    return request.app.state.gateway


async def provider_token(
    x_provider_token: Optional[str] = Header(None, alias="X-Provider-Token"),
) -> str:
    """Caller-supplied upstream credential; format is checked by the gateway."""
    if not x_provider_token or not x_provider_token.strip():
        raise InvalidInputError("X-Provider-Token header is required")
    return x_provider_token.strip()
