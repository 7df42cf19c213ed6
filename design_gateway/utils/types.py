"""
Type definitions and data classes for the Design Gateway.

This module contains shared value types passed between the identifier
parser, rate limiter, cost governor, and API client, plus type aliases
used across the package for readability.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Provider(str, Enum):
    """Upstream providers the gateway talks to."""

    FIGMA = "figma"
    GITHUB = "github"
    OPENAI = "openai"
    GROQ = "groq"


@dataclass(frozen=True)
class ResourceIdentifier:
    """
    Canonical identifier for a remote design file.

    Produced only by the identifier parser. ``file_key`` is the handle used
    for every downstream request; an invalid identifier always carries an
    empty ``file_key`` so it can never address a real resource.

    Attributes:
        file_key: Canonical file key ("" when invalid)
        node_id: Decoded sub-resource locator from the URL, if any
        file_name: Display name decoded from the URL slug, if any
        is_valid: Whether a structural match was found
        original_url: The trimmed input, kept for error display
    """

    file_key: str
    is_valid: bool
    original_url: str
    node_id: Optional[str] = None
    file_name: Optional[str] = None


@dataclass(frozen=True)
class UsageRecord:
    """
    One billable AI call. Append-only; never modified after creation.

    Attributes:
        prompt_tokens: Tokens sent to the model
        completion_tokens: Tokens generated by the model
        total_tokens: prompt_tokens + completion_tokens
        cost: Dollar cost computed from the pricing table
        timestamp: Unix epoch seconds when the call completed
        provider: AI provider that served the call
    """

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: float
    timestamp: float
    provider: str = Provider.OPENAI.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        prompt = int(data["prompt_tokens"])
        completion = int(data["completion_tokens"])
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(data.get("total_tokens", prompt + completion)),
            cost=float(data["cost"]),
            timestamp=float(data["timestamp"]),
            provider=data.get("provider", Provider.OPENAI.value),
        )


@dataclass
class CostLimits:
    """
    Spending ceilings in dollars. A zero ceiling blocks, it never disables.

    Attributes:
        daily: Maximum spend over the trailing 24 hours
        monthly: Maximum spend over the trailing 30 days
        per_request: Maximum estimated spend for a single generation call
    """

    daily: float = 10.0
    monthly: float = 100.0
    per_request: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "daily": self.daily,
            "monthly": self.monthly,
            "perRequest": self.per_request,
        }


@dataclass(frozen=True)
class UsageTotals:
    """Aggregated tokens and cost over a trailing window."""

    tokens: int
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {"tokens": self.tokens, "cost": self.cost}


@dataclass(frozen=True)
class LimitCheck:
    """Result of a pre-dispatch ceiling check."""

    can_proceed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class RateLimitStats:
    """Snapshot of one identity's sliding window."""

    requests_in_window: int
    max_requests: int
    window_ms: int
    reset_in_seconds: float


@dataclass(frozen=True)
class GenerationOptions:
    """
    Per-call generation settings. ``None`` fields fall back to configuration.

    Attributes:
        provider: AI provider to call (openai or groq)
        model: Model override
        max_tokens: Completion token cap
        temperature: Sampling temperature
        system_prompt: Optional system message sent before the prompt
    """

    provider: Provider = Provider.OPENAI
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    """Text returned by a chat-completion call plus the usage it billed."""

    content: str
    usage: UsageRecord
    model: str
    provider: str


@dataclass
class ConnectionStatus:
    """Outcome of a credential connection test."""

    success: bool
    provider: str
    user: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


# Type aliases for better code readability
FileKey = str  # Canonical Figma file key
NodeId = str  # Figma node id, e.g. "1:2"
Identity = str  # Rate-limiter identity (session id, IP, credential fingerprint)
