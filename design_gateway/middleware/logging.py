"""
Logging middleware for request tracking.

Adds structured logging to all HTTP requests:
- Request ID generation and propagation
- Request/response timing
- Error tracking with context

Credential headers are never logged.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from design_gateway.utils.logging import clear_request_context, get_logger, set_request_context

logger = get_logger(__name__)

REDACTED_HEADERS = {"authorization", "cookie", "x-provider-token", "x-figma-token"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request-scoped logging context plus start/finish log lines."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Reuse the caller's request ID so traces join across services
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        # Bind request context for every log line emitted while handling it
        start_time = time.time()
        set_request_context(
            request_id=request_id,
            method=request.method,
            path=str(request.url.path),
            client_ip=request.client.host if request.client else None,
            start_time=start_time,
        )

        # Log request start (provider tokens stay out of the header dump)
        logger.info(
            "Request started",
            query_params=dict(request.query_params),
            headers={
                k: v
                for k, v in request.headers.items()
                if k.lower() not in REDACTED_HEADERS
            },
        )

        try:
            response = await call_next(request)

            # Log completion with timing
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Request completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            # Echo tracing headers to the client
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Request failed with exception",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
                exc_info=True,
            )
            # Re-raise for the app's exception handlers
            raise

        finally:
            # Context is per request; never let it bleed into the next one
            clear_request_context()
