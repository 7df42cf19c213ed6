"""
Validation utilities for provider tokens and other user-supplied input.

Every validator here is pure: no I/O, no logging of the checked value.
Callers use the boolean helpers for UI feedback and the ``require_*``
helpers to fail fast with InvalidInputError before touching the network.
"""

import re
from dataclasses import dataclass
from typing import Dict, Pattern, Tuple, Union

from design_gateway.errors import InvalidInputError
from design_gateway.utils.types import Provider


@dataclass(frozen=True)
class TokenRule:
    """Format rule for one provider's credentials."""

    prefixes: Tuple[str, ...]
    min_length: int
    body: Pattern[str]
    hint: str


TOKEN_RULES: Dict[Provider, TokenRule] = {
    Provider.FIGMA: TokenRule(
        prefixes=("figd_",),
        min_length=20,
        body=re.compile(r"^[A-Za-z0-9_-]+$"),
        hint="Figma tokens start with 'figd_'",
    ),
    Provider.GITHUB: TokenRule(
        prefixes=("ghp_", "github_pat_"),
        min_length=20,
        body=re.compile(r"^[A-Za-z0-9_]+$"),
        hint="GitHub tokens start with 'ghp_' or 'github_pat_'",
    ),
    Provider.OPENAI: TokenRule(
        prefixes=("sk-",),
        min_length=21,
        body=re.compile(r"^[A-Za-z0-9_-]+$"),
        hint="OpenAI keys start with 'sk-' and are longer than 20 characters",
    ),
    Provider.GROQ: TokenRule(
        prefixes=("gsk_",),
        min_length=21,
        body=re.compile(r"^[A-Za-z0-9_]+$"),
        hint="Groq keys start with 'gsk_' and are longer than 20 characters",
    ),
}

REPO_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
TEAM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def coerce_provider(provider: Union[Provider, str]) -> Provider:
    try:
        return Provider(provider.lower() if isinstance(provider, str) else provider)
    except ValueError as e:
        valid = [p.value for p in Provider]
        raise InvalidInputError(
            f"Unknown provider '{provider}'. Must be one of: {valid}"
        ) from e


def is_valid_token(provider: Union[Provider, str], raw: str) -> bool:
    """
    Check a raw token against the provider's prefix and length rule.

    Args:
        provider: Provider enum or its string value
        raw: Token as typed by the user (surrounding whitespace ignored)

    Returns:
        True if the token is well-formed for that provider

    Raises:
        InvalidInputError: If the provider is unknown
    """
    rule = TOKEN_RULES[coerce_provider(provider)]
    if not isinstance(raw, str):
        return False

    token = raw.strip()
    if len(token) < rule.min_length:
        return False

    for prefix in rule.prefixes:
        if token.startswith(prefix):
            return bool(rule.body.match(token[len(prefix) :]))
    return False


def validate_figma_token(raw: str) -> bool:
    return is_valid_token(Provider.FIGMA, raw)


def validate_github_token(raw: str) -> bool:
    return is_valid_token(Provider.GITHUB, raw)


def validate_openai_key(raw: str) -> bool:
    return is_valid_token(Provider.OPENAI, raw)


def validate_groq_key(raw: str) -> bool:
    return is_valid_token(Provider.GROQ, raw)


def require_valid_token(provider: Union[Provider, str], raw: str) -> str:
    """
    Validate a token and return it stripped.

    Raises:
        InvalidInputError: With a provider-specific hint; the token itself is
            never included in the message
    """
    resolved = coerce_provider(provider)
    if not is_valid_token(resolved, raw):
        raise InvalidInputError(
            f"Invalid {resolved.value} token format. {TOKEN_RULES[resolved].hint}",
            provider=resolved.value,
        )
    return raw.strip()


def require_repo_name(name: str) -> str:
    """Validate a repository name (letters, digits, '.', '_', '-'; max 100)."""
    if not isinstance(name, str) or not REPO_NAME_PATTERN.match(name):
        raise InvalidInputError(
            "Invalid repository name: use 1-100 letters, digits, '.', '_' or '-'"
        )
    return name


def require_team_id(team_id: str) -> str:
    """Validate a Figma team id before it is interpolated into a URL path."""
    if not isinstance(team_id, str) or not TEAM_ID_PATTERN.match(team_id.strip()):
        raise InvalidInputError("Team ID is required and must be alphanumeric")
    return team_id.strip()


def sanitize_input(value: str) -> str:
    """
    Strip markup and script vectors from free-form user text.

    Removes angle brackets, ``javascript:`` schemes, and inline event
    handler attributes, then trims whitespace. Applied to repository
    descriptions before export.
    """
    cleaned = re.sub(r"[<>]", "", value)
    cleaned = re.sub(r"javascript:", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"on\w+=", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()
