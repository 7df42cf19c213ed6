"""
Environment configuration loader using Pydantic BaseSettings.

This module centralizes all environment configuration for the Design Gateway.
It provides type safety, validation, and automatic loading from environment
variables and .env files. Settings are validated at startup to fail fast with
clear errors.

No provider credential lives here: every upstream call is authenticated with
a credential supplied by the caller.
"""

import json
from typing import Annotated, Any, List, Optional

import structlog
from pydantic import AnyHttpUrl, BeforeValidator, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = structlog.get_logger(__name__)


def parse_cors(v: Any) -> List[str]:
    """
    Parse CORS origins from a list, a JSON array string, or a comma-separated string.
    """
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return []
        if s.startswith("["):
            return json.loads(s)
        return [origin.strip() for origin in s.split(",") if origin.strip()]
    return v


CorsOrigins = Annotated[List[AnyHttpUrl], NoDecode, BeforeValidator(parse_cors)]

# GPT-4o list prices per 1K tokens; Groq's hosted Llama is billed far lower.
DEFAULT_PRICING_JSON = json.dumps(
    {
        "openai": {"prompt": 0.005, "completion": 0.015},
        "groq": {"prompt": 0.00059, "completion": 0.00079},
    }
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Priority order for loading values:
    1. Environment variables (highest priority)
    2. .env file
    3. Default values defined here
    """

    # ===== Application Settings =====
    app_env: str = Field(
        default="development",
        description="Application environment (development/staging/production/test)",
    )

    app_name: str = Field(
        default="Design Gateway",
        description="Application name for logging and identification",
    )

    app_version: str = Field(default="0.1.0", description="Application version")

    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)"
    )

    cors_origins: CorsOrigins = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins (JSON array or comma-separated in env)",
    )

    # ===== Upstream APIs =====
    figma_api_base_url: str = Field(
        default="https://api.figma.com/v1", description="Figma REST API base URL"
    )

    openai_api_base_url: str = Field(
        default="https://api.openai.com/v1", description="OpenAI API base URL"
    )

    openai_model: str = Field(default="gpt-4o", description="Default OpenAI model")

    groq_api_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Groq OpenAI-compatible API base URL",
    )

    groq_model: str = Field(
        default="llama-3.1-70b-versatile", description="Default Groq model"
    )

    github_api_base_url: str = Field(
        default="https://api.github.com", description="GitHub REST API base URL"
    )

    # ===== Timeouts =====
    http_connect_timeout_seconds: float = Field(
        default=10.0, description="Connection establishment timeout", gt=0, le=60
    )

    figma_timeout_seconds: float = Field(
        default=30.0, description="Figma API read timeout", gt=0, le=300
    )

    ai_timeout_seconds: float = Field(
        default=60.0, description="Chat-completion read timeout", gt=0, le=300
    )

    github_timeout_seconds: float = Field(
        default=30.0, description="GitHub API read timeout", gt=0, le=300
    )

    max_request_size_mb: int = Field(
        default=10, description="Max outbound request body size in MB", ge=1, le=100
    )

    # ===== Rate Limiting =====
    api_rate_limit_max_requests: int = Field(
        default=20,
        description="API read admissions per identity per window",
        ge=1,
        le=10000,
    )

    api_rate_limit_window_ms: int = Field(
        default=60_000, description="API read window in milliseconds", ge=1
    )

    export_rate_limit_max_requests: int = Field(
        default=5,
        description="Export/generation admissions per identity per window",
        ge=1,
        le=1000,
    )

    export_rate_limit_window_ms: int = Field(
        default=300_000, description="Export/generation window in milliseconds", ge=1
    )

    # ===== Cost Governance =====
    cost_limit_daily: float = Field(
        default=10.0, description="Daily AI spend ceiling in USD (0 blocks)", ge=0
    )

    cost_limit_monthly: float = Field(
        default=100.0, description="Monthly AI spend ceiling in USD (0 blocks)", ge=0
    )

    cost_limit_per_request: float = Field(
        default=1.0, description="Per-request AI spend ceiling in USD (0 blocks)", ge=0
    )

    ai_pricing_json: str = Field(
        default=DEFAULT_PRICING_JSON,
        description="Per-1K-token rates as JSON: provider -> {prompt, completion}",
    )

    ai_max_tokens: int = Field(
        default=1000, description="Default completion token cap", ge=1, le=32000
    )

    ai_temperature: float = Field(
        default=0.7, description="Default sampling temperature", ge=0, le=2
    )

    # ===== Credential Storage =====
    storage_path: Optional[str] = Field(
        default=None,
        description="JSON file for credentials and usage (None = in-memory only)",
    )

    credential_encryption_key: Optional[str] = Field(
        default=None,
        description="Comma-separated Fernet keys; enables encryption instead of obfuscation",
    )

    credential_obfuscation_salt: str = Field(
        default="design-gateway-key",
        description="Salt for the non-cryptographic obfuscating codec",
        min_length=8,
    )

    # ===== Cache Configuration =====
    cache_enabled: bool = Field(default=True, description="Cache Figma read responses")

    cache_max_entries: int = Field(
        default=100, description="Maximum cached responses", ge=1, le=10000
    )

    cache_ttl_file: int = Field(
        default=300, description="File response TTL in seconds", ge=0
    )

    cache_ttl_images: int = Field(
        default=600, description="Rendered image URL TTL in seconds", ge=0
    )

    cache_ttl_comments: int = Field(
        default=120, description="Comments TTL in seconds", ge=0
    )

    # ===== Validators =====

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Ensure app environment is valid."""
        valid_envs = ["development", "staging", "production", "test"]
        v_lower = v.lower()
        if v_lower not in valid_envs:
            raise ValueError(f"Invalid app_env: {v}. Must be one of {valid_envs}")
        return v_lower

    @field_validator("ai_pricing_json")
    @classmethod
    def validate_pricing_json(cls, v: str) -> str:
        """Validate the pricing table structure."""
        try:
            table = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON pricing table: {e}") from e

        if not isinstance(table, dict) or not table:
            raise ValueError("Pricing table must be a non-empty JSON object")

        for provider, rates in table.items():
            if not isinstance(rates, dict):
                raise ValueError(f"Pricing for '{provider}' must be an object")
            for field in ("prompt", "completion"):
                rate = rates.get(field)
                if not isinstance(rate, (int, float)) or rate < 0:
                    raise ValueError(
                        f"Pricing for '{provider}' needs a non-negative '{field}' rate"
                    )
        return v

    # ===== Pydantic Config =====

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def log_config(self) -> None:
        """Log configuration (with secrets masked)."""
        config_dict = self.model_dump()

        sensitive_fields = ["credential_encryption_key", "credential_obfuscation_salt"]

        for field in sensitive_fields:
            if field in config_dict and config_dict[field]:
                value = str(config_dict[field])
                if len(value) > 8:
                    config_dict[field] = f"{value[:4]}...{value[-4:]}"
                else:
                    config_dict[field] = "***"

        logger.info("Configuration loaded", **config_dict)


# ===== Global Settings Instance =====

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton pattern).

    Settings are loaded and validated once. Use this as a FastAPI dependency
    for injecting settings into routes.
    """
    global _settings
    if _settings is None:
        try:
            _settings = Settings()
            _settings.log_config()
            logger.info(
                "Settings loaded successfully",
                app_env=_settings.app_env,
                app_version=_settings.app_version,
            )
        except ValidationError as e:
            logger.error("Failed to load settings", errors=e.errors())
            raise

    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
