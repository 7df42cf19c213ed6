"""
Structured logging configuration for the Design Gateway.

This module provides centralized logging configuration using structlog,
with support for request context tracking, environment metadata, and
secret masking so provider tokens never reach log output in clear text.
"""

import logging
import re
import sys
import time
from contextvars import ContextVar
from typing import Any, Dict

import structlog
from structlog.types import EventDict, Processor

# Context variable for request-scoped data
request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default=None
)

# Provider tokens that may appear inside free-form strings (error messages, URLs)
TOKEN_PATTERN = re.compile(r"(?:figd_|github_pat_|ghp_|gsk_|sk-)[A-Za-z0-9_\-]{8,}")

SENSITIVE_KEYS = [
    "password",
    "api_key",
    "secret",
    "authorization",
    "access_token",
    "credential",
    "x-figma-token",
    "figma_token",
    "provider_token",
    "encryption_key",
    # Generic "token" is excluded so token usage metrics stay readable
]


def mask_secret(value: str) -> str:
    """
    Mask a secret for safe logging, keeping the first and last 4 characters.

    Args:
        value: The token or secret to mask

    Returns:
        Masked string; values of 8 characters or fewer are fully hidden

    Example:
        mask_secret("figd_abcdefghijklmnop")
        # Returns: "figd***mnop"
    """
    if not value or len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-4:]}"


def scrub_tokens(text: str) -> str:
    """Replace every token-shaped substring of ``text`` with its masked form."""
    return TOKEN_PATTERN.sub(lambda m: mask_secret(m.group(0)), text)


class RequestContextProcessor:
    """
    Add request context to all log entries.

    This processor extracts request-scoped context (request_id, identity, etc.)
    from context variables and adds them to every log entry within that request.
    """

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        """Add request context to the event dict."""
        ctx = request_context.get()
        if ctx is not None:
            event_dict.update(ctx)
        return event_dict


class PerformanceProcessor:
    """Add timing information for requests and operations."""

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        """Add performance metrics if available."""
        # Add current timestamp if not present
        if "timestamp" not in event_dict:
            event_dict["timestamp"] = time.time()

        # Duration since the request started, when inside one
        ctx = request_context.get()
        if ctx and "start_time" in ctx:
            duration_ms = (time.time() - ctx["start_time"]) * 1000
            event_dict["duration_ms"] = round(duration_ms, 2)

        return event_dict


class EnvironmentProcessor:
    """Add app version and environment to log entries."""

    def __init__(self, app_env: str, app_version: str):
        """Initialize with environment settings."""
        self.app_env = app_env
        self.app_version = app_version

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        """Add environment context to the event dict."""
        event_dict["env"] = self.app_env
        event_dict["version"] = self.app_version
        return event_dict


def filter_sensitive_data(
    logger: Any, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Filter sensitive data from log entries.

    Fields whose name looks sensitive are masked outright. Every other string
    value (including the event message) is scrubbed of token-shaped substrings,
    so a token echoed inside an upstream error message is still masked.
    """
    for key in list(event_dict.keys()):
        value = event_dict[key]
        key_lower = key.lower()
        # Sensitive field names are masked whole
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            if isinstance(value, str):
                event_dict[key] = mask_secret(value)
            else:
                event_dict[key] = "***REDACTED***"
        # Anything else that is text gets token-shaped substrings masked
        elif isinstance(value, str):
            event_dict[key] = scrub_tokens(value)

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    app_env: str = "development",
    app_version: str = "0.1.0",
    json_format: bool = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        app_env: Application environment (development, staging, production)
        app_version: Application version for tracking
        json_format: Force JSON output (None = auto-detect based on environment)

    Development gets human-readable console output; staging and production
    get JSON output for log aggregation systems.
    """
    # Auto-detect JSON format based on environment if not specified
    if json_format is None:
        json_format = app_env in ["staging", "production"]

    # Route structlog output through standard logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Build processor chain
    processors: list[Processor] = [
        # Level and logger name
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        # Callsite parameters (filename, line number, function)
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ]
        ),
        # Request, timing and deployment context
        RequestContextProcessor(),
        PerformanceProcessor(),
        EnvironmentProcessor(app_env, app_version),
        structlog.stdlib.PositionalArgumentsFormatter(),
        # Must run after positional formatting so rendered messages are scrubbed
        filter_sensitive_data,
        # Standard processors
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        # Staging/production: JSON for log aggregation
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Development: human-readable console output
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__ from the calling module)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def set_request_context(**kwargs: Any) -> None:
    """
    Set request-scoped context that will be included in all logs.

    Example:
        set_request_context(request_id="123", method="POST", path="/api/v1/ai/generate")
    """
    ctx = request_context.get()
    if ctx is None:
        ctx = {}
    ctx.update(kwargs)
    request_context.set(ctx)


def clear_request_context() -> None:
    """Clear the request context (should be called at the end of each request)."""
    request_context.set(None)
