"""
FastAPI application entry point for the Design Gateway.

Initializes the app with routers, middleware and error handlers. The
ResourceGateway is built once at startup and closed on shutdown; tests
inject their own through ``create_app(settings, gateway)``.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from design_gateway.config import Settings, get_settings
from design_gateway.errors import GatewayError, RateLimitedError
from design_gateway.gateway import ResourceGateway, create_gateway
from design_gateway.middleware.logging import LoggingMiddleware
from design_gateway.routers import ai, credentials, figma, health, usage
from design_gateway.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def create_app(
    settings: Optional[Settings] = None, gateway: Optional[ResourceGateway] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to the global instance)
        gateway: Pre-built gateway; when omitted one is created at startup
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        app_env=settings.app_env,
        app_version=settings.app_version,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting {settings.app_name}",
            version=settings.app_version,
            environment=settings.app_env,
        )
        owns_gateway = getattr(app.state, "gateway", None) is None
        if owns_gateway:
            app.state.gateway = create_gateway(settings)

        yield

        logger.info(f"Shutting down {settings.app_name}...")
        if owns_gateway:
            await app.state.gateway.close()
            app.state.gateway = None

    app = FastAPI(
        title=settings.app_name,
        description="Governed access to Figma, AI and GitHub APIs",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.gateway = gateway

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        """Typed gateway failures become structured JSON with a matching status."""
        logger.info(
            "Request rejected",
            error_kind=exc.kind,
            status_code=exc.status_code,
            provider=exc.provider,
        )
        headers = {}
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            headers["Retry-After"] = str(max(1, round(exc.retry_after)))

        return JSONResponse(
            status_code=exc.status_code,
            content={**exc.to_dict(), "requestId": _request_id(request)},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "invalid_input",
                "message": "Request validation failed",
                "details": errors,
                "requestId": _request_id(request),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "message": "An internal error occurred",
                "requestId": _request_id(request),
            },
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(figma.router, prefix="/api/v1", tags=["figma"])
    app.include_router(ai.router, prefix="/api/v1", tags=["ai"])
    app.include_router(usage.router, prefix="/api/v1", tags=["usage"])
    app.include_router(credentials.router, prefix="/api/v1", tags=["credentials"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, Any]:
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()
