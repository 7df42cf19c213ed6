"""
Typed error taxonomy for the Design Gateway.

Every failure raised by the governance layer is a GatewayError subclass so
callers (the wizard UI, the HTTP surface) can branch on ``kind`` instead of
parsing messages. Validation, limiter, and cost-governor failures are raised
before any network call; upstream failures carry the provider and HTTP status.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for all governance-layer failures."""

    kind: str = "gateway_error"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for structured error responses."""
        payload: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.provider:
            payload["provider"] = self.provider
        return payload


class InvalidInputError(GatewayError):
    """Malformed identifier, empty required list, or malformed token format."""

    kind = "invalid_input"
    status_code = 400


class RateLimitedError(GatewayError):
    """Admission denied by a local limiter or by the upstream (HTTP 429)."""

    kind = "rate_limited"
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message, provider=provider)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.retry_after is not None:
            payload["retryAfter"] = round(self.retry_after, 3)
        return payload


class CostLimitExceededError(GatewayError):
    """A daily, monthly, or per-request spending ceiling was reached."""

    kind = "cost_limit_exceeded"
    status_code = 402

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class UnauthorizedError(GatewayError):
    """Upstream rejected the credential (HTTP 401)."""

    kind = "unauthorized"
    status_code = 401


class ForbiddenError(GatewayError):
    """Upstream refused access to the resource (HTTP 403)."""

    kind = "forbidden"
    status_code = 403


class NotFoundError(GatewayError):
    """Upstream resource does not exist (HTTP 404)."""

    kind = "not_found"
    status_code = 404


class UpstreamError(GatewayError):
    """Any other non-2xx upstream response."""

    kind = "upstream_error"
    status_code = 502

    def __init__(
        self, message: str, *, upstream_status: int, provider: Optional[str] = None
    ):
        super().__init__(message, provider=provider)
        self.upstream_status = upstream_status

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["upstreamStatus"] = self.upstream_status
        return payload


class NetworkError(GatewayError):
    """Transport failure or timeout talking to the upstream."""

    kind = "network_error"
    status_code = 504


def error_for_status(
    status: int,
    message: str,
    *,
    provider: Optional[str] = None,
    retry_after: Optional[float] = None,
) -> GatewayError:
    """
    Map an upstream HTTP status to the matching typed error.

    Args:
        status: Upstream HTTP status code (non-2xx)
        message: Upstream error message, or a synthesized one
        provider: Upstream provider name for context
        retry_after: Parsed Retry-After seconds for 429 responses

    Returns:
        GatewayError subclass instance (not raised)
    """
    if status == 401:
        return UnauthorizedError(message, provider=provider)
    if status == 403:
        return ForbiddenError(message, provider=provider)
    if status == 404:
        return NotFoundError(message, provider=provider)
    if status == 429:
        return RateLimitedError(message, retry_after=retry_after, provider=provider)
    return UpstreamError(message, upstream_status=status, provider=provider)
