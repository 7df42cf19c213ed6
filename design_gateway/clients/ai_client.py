"""
Chat-completion client for OpenAI and OpenAI-compatible providers (Groq).

Both providers expose the same ``/chat/completions`` contract, so a single
client class serves either one; only the base URL, default model and
provider name differ.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from design_gateway.config import Settings
from design_gateway.errors import UpstreamError
from design_gateway.utils.http_client import HardenedHTTPClient, TimeoutConfig
from design_gateway.utils.logging import get_logger
from design_gateway.utils.types import Provider

logger = get_logger(__name__)


CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _token_count(usage: Any, field: str) -> Optional[int]:
    """A non-negative integer count from the usage block, else None."""
    if not isinstance(usage, dict):
        return None
    value = usage.get(field)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


@dataclass(frozen=True)
class Completion:
    """Generated text plus the token counts the provider billed."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    model: str


class ChatCompletionClient:
    """Bearer-authenticated ``/chat/completions`` client."""

    def __init__(self, http: HardenedHTTPClient, default_model: str):
        self.http = http
        self.default_model = default_model

    @property
    def provider(self) -> str:
        return self.http.provider

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def complete(
        self,
        prompt: str,
        token: str,
        *,
        max_tokens: int,
        temperature: float,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> Completion:
        """
        Run one chat completion.

        Token counts come from the response's ``usage`` block. When a
        provider omits it or reports a count that is not a non-negative
        integer, both counts are estimated at ~4 characters per token so
        the spend is still recorded.
        """
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": model or self.default_model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        data = await self.http.post(
            "/chat/completions", headers=self._headers(token), json_body=payload
        )

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            logger.warning("Malformed completion response", provider=self.provider)
            raise UpstreamError(
                "Completion response did not contain a message",
                upstream_status=200,
                provider=self.provider,
            ) from e

        usage = data.get("usage")
        prompt_tokens = _token_count(usage, "prompt_tokens")
        completion_tokens = _token_count(usage, "completion_tokens")
        if prompt_tokens is None or completion_tokens is None:
            # Both counts are estimated together, never mixed with reported ones
            prompt_tokens = estimate_tokens(prompt)
            completion_tokens = estimate_tokens(content)
            logger.warning(
                "Completion usage missing or malformed, estimating tokens",
                provider=self.provider,
                usage_present=bool(usage),
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )

        return Completion(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            model=data.get("model") or payload["model"],
        )

    async def list_models(self, token: str) -> Dict[str, Any]:
        return await self.http.get("/models", headers=self._headers(token))

    async def close(self) -> None:
        await self.http.close()


def _create_client(
    provider: Provider,
    base_url: str,
    model: str,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport],
) -> ChatCompletionClient:
    timeout_config = TimeoutConfig(
        connect_timeout=settings.http_connect_timeout_seconds,
        read_timeout=settings.ai_timeout_seconds,
        write_timeout=30.0,
        pool_timeout=5.0,
    )
    http = HardenedHTTPClient(
        provider.value,
        base_url,
        timeout_config=timeout_config,
        max_request_size_bytes=settings.max_request_size_mb * 1024 * 1024,
        transport=transport,
    )
    return ChatCompletionClient(http, default_model=model)


def create_openai_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ChatCompletionClient:
    return _create_client(
        Provider.OPENAI,
        settings.openai_api_base_url,
        settings.openai_model,
        settings,
        transport,
    )


def create_groq_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ChatCompletionClient:
    return _create_client(
        Provider.GROQ,
        settings.groq_api_base_url,
        settings.groq_model,
        settings,
        transport,
    )
