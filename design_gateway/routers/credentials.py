"""Credential format checks, connection tests and GitHub export."""

from dataclasses import asdict
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from design_gateway.gateway import ResourceGateway
from design_gateway.routers.deps import get_gateway, provider_token
from design_gateway.utils.types import Provider

router = APIRouter()


class ValidateRequest(BaseModel):
    provider: str = Field(..., description="figma, github, openai or groq")
    token: str = Field(..., description="Token to check (format only, never stored)")


class ConnectionTestRequest(BaseModel):
    provider: Provider


class ExportRequest(BaseModel):
    repoName: str = Field(..., description="New repository name")
    files: Dict[str, str] = Field(..., description="Path -> file content")
    description: str = ""
    private: bool = False


@router.post("/credentials/validate", summary="Check a token's format")
async def validate_credential(
    body: ValidateRequest,
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    return {
        "provider": body.provider,
        "valid": gateway.validate_credential(body.provider, body.token),
    }


@router.post("/credentials/test", summary="Test a token against its provider")
async def test_connection(
    body: ConnectionTestRequest,
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    status = await gateway.test_connection(body.provider, token)
    return asdict(status)


@router.post("/github/export", summary="Create a repository and commit files")
async def export_repository(
    body: ExportRequest,
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    return await gateway.export_to_repository(
        body.repoName,
        body.files,
        token,
        description=body.description,
        private=body.private,
    )
