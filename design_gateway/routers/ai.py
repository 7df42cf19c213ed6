"""AI text generation endpoint, governed by the export limiter and cost ceilings."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from design_gateway.gateway import ResourceGateway
from design_gateway.routers.deps import get_gateway, provider_token
from design_gateway.utils.types import GenerationOptions, Provider

router = APIRouter()


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="Prompt text")
    provider: Provider = Field(Provider.OPENAI, description="openai or groq")
    model: Optional[str] = Field(None, description="Model override")
    maxTokens: Optional[int] = Field(None, ge=1, le=32000)
    temperature: Optional[float] = Field(None, ge=0, le=2)
    systemPrompt: Optional[str] = None


@router.post("/ai/generate", summary="Generate text with a chat-completion model")
async def generate(
    body: GenerateRequest,
    token: str = Depends(provider_token),
    gateway: ResourceGateway = Depends(get_gateway),  # noqa: B008
) -> Dict[str, Any]:
    options = GenerationOptions(
        provider=body.provider,
        model=body.model,
        max_tokens=body.maxTokens,
        temperature=body.temperature,
        system_prompt=body.systemPrompt,
    )
    result = await gateway.generate_text(body.prompt, options, token)
    return {
        "content": result.content,
        "usage": result.usage.to_dict(),
        "model": result.model,
        "provider": result.provider,
    }
