"""
Hardened HTTP client for upstream provider integrations.

Wraps httpx.AsyncClient with:
- Explicit connect/read/write/pool timeouts on every request
- Connection pool limits
- Outbound request size limits
- Structured request logging (credentials never logged)
- Mapping of non-2xx responses, timeouts and transport failures to the
  gateway's typed error taxonomy

Nothing here retries. A failed call surfaces to the caller exactly once.
"""

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from design_gateway.errors import (
    InvalidInputError,
    NetworkError,
    UpstreamError,
    error_for_status,
)
from design_gateway.utils.logging import get_logger

logger = get_logger(__name__)

PROVIDER_LABELS = {
    "figma": "Figma",
    "github": "GitHub",
    "openai": "OpenAI",
    "groq": "Groq",
}


@dataclass
class TimeoutConfig:
    """HTTP timeout configuration for one upstream."""

    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    write_timeout: float = 30.0
    pool_timeout: float = 5.0

    def to_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout,
        )


def provider_label(provider: str) -> str:
    return PROVIDER_LABELS.get(provider, provider.capitalize())


def extract_error_message(response: httpx.Response, provider: str) -> str:
    """
    Pull a human-readable message out of an upstream error body.

    Checks ``err``, ``message``, ``error.message`` and a plain ``error``
    string in that order, falling back to "<Provider> API error: HTTP <status>".
    """
    fallback = f"{provider_label(provider)} API error: HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return fallback

    if not isinstance(body, dict):
        return fallback

    for key in ("err", "message"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value

    error = body.get("error")
    if isinstance(error, dict):
        nested = error.get("message")
        if isinstance(nested, str) and nested:
            return nested
    elif isinstance(error, str) and error:
        return error

    return fallback


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After header as seconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class HardenedHTTPClient:
    """
    Async HTTP client bound to one upstream provider.

    Usage:
        async with HardenedHTTPClient("figma", "https://api.figma.com/v1") as http:
            data = await http.request_json("GET", "/files/abc", headers=...)
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        timeout_config: Optional[TimeoutConfig] = None,
        max_request_size_bytes: int = 10 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            provider: Upstream name used for logs and error messages
            base_url: Base URL that request paths are resolved against
            timeout_config: Timeout configuration
            max_request_size_bytes: Maximum serialized request body size
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.provider = provider
        self.base_url = base_url
        self.timeout_config = timeout_config or TimeoutConfig()
        self.max_request_size_bytes = max_request_size_bytes

        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0,
        )

        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=self.timeout_config.to_httpx(),
            limits=limits,
            transport=transport,
            follow_redirects=False,
        )

        logger.info(
            "HTTP client initialized",
            provider=provider,
            base_url=base_url,
            read_timeout=self.timeout_config.read_timeout,
        )

    async def close(self) -> None:
        await self.client.aclose()
        logger.debug("HTTP client closed", provider=self.provider)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _encode_body(self, json_body: Any) -> Optional[bytes]:
        if json_body is None:
            return None
        content = json.dumps(json_body).encode("utf-8")
        if len(content) > self.max_request_size_bytes:
            raise InvalidInputError(
                f"Request body too large: {len(content)} bytes > "
                f"{self.max_request_size_bytes} bytes",
                provider=self.provider,
            )
        return content

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
    ) -> httpx.Response:
        """
        Send one request and return the 2xx response.

        Raises:
            InvalidInputError: Request body exceeds the size limit
            NetworkError: Timeout or transport failure
            GatewayError: Typed error for any non-2xx status
        """
        content = self._encode_body(json_body)
        request_headers = dict(headers or {})
        if content is not None:
            request_headers.setdefault("Content-Type", "application/json")

        request_start = time.perf_counter()
        try:
            response = await self.client.request(
                method,
                path,
                headers=request_headers,
                params=params,
                content=content,
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "HTTP request timed out",
                provider=self.provider,
                method=method,
                path=path,
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - request_start) * 1000, 2),
            )
            raise NetworkError(
                f"{provider_label(self.provider)} request timed out",
                provider=self.provider,
            ) from e
        except httpx.TransportError as e:
            logger.warning(
                "HTTP transport failure",
                provider=self.provider,
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise NetworkError(
                f"{provider_label(self.provider)} request failed: {type(e).__name__}",
                provider=self.provider,
            ) from e

        duration_ms = round((time.perf_counter() - request_start) * 1000, 2)

        if response.is_success:
            logger.debug(
                "HTTP request successful",
                provider=self.provider,
                method=method,
                path=path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            return response

        message = extract_error_message(response, self.provider)
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        logger.warning(
            "HTTP request failed",
            provider=self.provider,
            method=method,
            path=path,
            status_code=response.status_code,
            error=message,
            duration_ms=duration_ms,
        )
        raise error_for_status(
            response.status_code,
            message,
            provider=self.provider,
            retry_after=retry_after,
        )

    async def request_json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Like ``request`` but decodes the JSON body."""
        response = await self.request(method, path, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                "Upstream returned invalid JSON",
                provider=self.provider,
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamError(
                f"{provider_label(self.provider)} API returned invalid JSON",
                upstream_status=response.status_code,
                provider=self.provider,
            ) from e

    async def get(self, path: str, **kwargs) -> Dict[str, Any]:
        return await self.request_json("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Dict[str, Any]:
        return await self.request_json("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> Dict[str, Any]:
        return await self.request_json("PUT", path, **kwargs)
