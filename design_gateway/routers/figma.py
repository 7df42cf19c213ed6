"""
Figma endpoints: identifier parsing, file retrieval, image rendering,
team components and comments.

``file_ref`` path parameters accept a bare file key; full URLs go through
``POST /identifiers/parse`` first.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from design_gateway.gateway import ResourceGateway
from design_gateway.routers.deps import get_gateway, provider_token
from design_gateway.utils.url_parser import generate_file_url

router = APIRouter()


class ParseRequest(BaseModel):
    url: str = Field(..., description="Figma URL or bare file key")


class ImagesRequest(BaseModel):
    nodeIds: List[str] = Field(..., description="Node ids to render")
    format: str = Field("png", description="jpg, png, svg or pdf")
    scale: float = Field(1.0, description="Render scale between 0.01 and 4")


@router.post("/identifiers/parse", summary="Parse a Figma URL or file key")
async def parse_identifier(
    body: ParseRequest,
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    parsed = gateway.parse_identifier(body.url)
    result = asdict(parsed)
    result["canonicalUrl"] = (
        generate_file_url(parsed.file_key, parsed.file_name) if parsed.is_valid else None
    )
    return result


@router.get("/figma/files/{file_ref}", summary="Fetch a design file")
async def get_file(
    file_ref: str,
    version: Optional[str] = Query(None),
    ids: Optional[str] = Query(None, description="Comma-separated node ids"),
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    node_ids = [i for i in ids.split(",") if i] if ids else None
    return await gateway.get_design_file(file_ref, token, version=version, ids=node_ids)


@router.post("/figma/files/{file_ref}/images", summary="Render nodes to image URLs")
async def render_images(
    file_ref: str,
    body: ImagesRequest,
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    return await gateway.get_rendered_images(
        file_ref, body.nodeIds, token, image_format=body.format, scale=body.scale
    )


@router.get("/figma/files/{file_ref}/comments", summary="List file comments")
async def get_comments(
    file_ref: str,
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    return await gateway.get_file_comments(file_ref, token)


@router.get("/figma/teams/{team_id}/components", summary="List team components")
async def get_team_components(
    team_id: str,
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    return await gateway.get_team_components(team_id, token)
