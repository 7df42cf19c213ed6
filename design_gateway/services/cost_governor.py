"""
Cost governance for AI generation calls.

This service provides:
- Per-call usage recording priced from a configurable per-1K-token table
- Trailing 24h / 30d spend aggregation computed at call time
- Daily, monthly, and per-request ceilings checked before dispatch
- Read-only usage reports for display

Known relaxation: checking and tracking are not atomic across in-flight
calls. Two generation calls started close together can both pass
``check_limits()`` before either ``track_usage()`` lands, overshooting a
ceiling by at most the cost of the concurrent calls. Ceilings are soft
guards, not hard guarantees.
"""

import json
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from design_gateway.errors import InvalidInputError
from design_gateway.utils.logging import get_logger
from design_gateway.utils.storage import KeyValueStorage, StorageError
from design_gateway.utils.types import (
    CostLimits,
    LimitCheck,
    Provider,
    UsageRecord,
    UsageTotals,
)

logger = get_logger(__name__)

USAGE_STORAGE_KEY = "ai_usage_data"
LIMITS_STORAGE_KEY = "ai_cost_limits"

DAY_SECONDS = 24 * 60 * 60
MONTH_SECONDS = 30 * DAY_SECONDS

CHARS_PER_TOKEN = 4
COMPLETION_RATIO = 0.5
RECENT_HISTORY_SIZE = 10

_LIMIT_ALIASES = {
    "daily": "daily",
    "monthly": "monthly",
    "per_request": "per_request",
    "perRequest": "per_request",
}


@dataclass(frozen=True)
class TokenRates:
    """Dollar rates per 1,000 tokens."""

    prompt: float
    completion: float


class PricingTable:
    """
    Per-provider token rates, loaded from configuration data.

    Rates change over time; keeping them in configuration means a price
    change never requires a code change.
    """

    def __init__(self, rates: Mapping[str, TokenRates]):
        if not rates:
            raise ValueError("Pricing table cannot be empty")
        self._rates: Dict[str, TokenRates] = dict(rates)

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, float]]) -> "PricingTable":
        return cls(
            {
                provider: TokenRates(
                    prompt=float(entry["prompt"]),
                    completion=float(entry["completion"]),
                )
                for provider, entry in data.items()
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "PricingTable":
        return cls.from_dict(json.loads(raw))

    def rates_for(self, provider: str) -> TokenRates:
        if provider not in self._rates:
            raise InvalidInputError(f"No pricing configured for provider '{provider}'")
        return self._rates[provider]

    def cost(self, provider: str, prompt_tokens: float, completion_tokens: float) -> float:
        rates = self.rates_for(provider)
        prompt_cost = (prompt_tokens / 1000) * rates.prompt
        completion_cost = (completion_tokens / 1000) * rates.completion
        return prompt_cost + completion_cost

    def providers(self) -> List[str]:
        return list(self._rates.keys())


DEFAULT_PRICING = PricingTable.from_dict(
    {Provider.OPENAI.value: {"prompt": 0.005, "completion": 0.015}}
)


def _format_money(amount: float) -> str:
    return f"${amount:.2f}"


def _format_limit(amount: float) -> str:
    return f"${amount:g}"


class CostGovernor:
    """
    Tracks AI token spend and enforces spending ceilings.

    State lives in two storage keys: the append-only usage log and the
    current limits. Both are re-persisted in full on every change.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        pricing: Optional[PricingTable] = None,
        limits: Optional[CostLimits] = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            storage: Durable key-value storage for the usage log and limits
            pricing: Rate table (defaults to GPT-4o list prices)
            limits: Default ceilings, used only when none are persisted yet
            clock: Zero-argument callable returning Unix seconds (inject for tests)
        """
        self.storage = storage
        self.pricing = pricing or DEFAULT_PRICING
        self._clock = clock
        self._usage: List[UsageRecord] = self._load_usage()
        self._limits: CostLimits = self._load_limits(limits or CostLimits())

    # ----- persistence -----

    def _load_usage(self) -> List[UsageRecord]:
        raw = self.storage.get(USAGE_STORAGE_KEY)
        if not raw:
            return []

        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                raise ValueError("usage log must be a JSON array")
            return [UsageRecord.from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError) as e:
            # Keep the unreadable log for audit instead of discarding it
            self.storage.set(f"{USAGE_STORAGE_KEY}.corrupt", raw)
            logger.warning(
                "Stored usage log unreadable, starting empty",
                error=str(e),
                error_type=type(e).__name__,
                preserved_key=f"{USAGE_STORAGE_KEY}.corrupt",
            )
            return []

    def _load_limits(self, defaults: CostLimits) -> CostLimits:
        raw = self.storage.get(LIMITS_STORAGE_KEY)
        if not raw:
            return CostLimits(defaults.daily, defaults.monthly, defaults.per_request)

        try:
            data = json.loads(raw)
            return CostLimits(
                daily=float(data.get("daily", defaults.daily)),
                monthly=float(data.get("monthly", defaults.monthly)),
                per_request=float(data.get("perRequest", defaults.per_request)),
            )
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(
                "Stored cost limits unreadable, using defaults",
                error=str(e),
                error_type=type(e).__name__,
            )
            return CostLimits(defaults.daily, defaults.monthly, defaults.per_request)

    def _persist_usage(self) -> None:
        payload = json.dumps([record.to_dict() for record in self._usage])
        self.storage.set(USAGE_STORAGE_KEY, payload)

    def _persist_limits(self) -> None:
        self.storage.set(LIMITS_STORAGE_KEY, json.dumps(self._limits.to_dict()))

    # ----- recording -----

    def track_usage(
        self,
        prompt_tokens: int,
        completion_tokens: int,
        provider: Union[Provider, str] = Provider.OPENAI,
    ) -> UsageRecord:
        """
        Record one completed AI call and persist the full usage log.

        A storage failure is logged and does not raise; the record stays in
        memory and is written with the next successful persist.

        Args:
            prompt_tokens: Tokens billed for the prompt
            completion_tokens: Tokens billed for the completion
            provider: Provider whose rates apply

        Returns:
            The appended UsageRecord

        Raises:
            InvalidInputError: For negative or non-integer token counts or an
                unpriced provider
        """
        provider = provider.value if isinstance(provider, Provider) else provider
        for label, value in (("prompt_tokens", prompt_tokens), ("completion_tokens", completion_tokens)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidInputError(f"{label} must be a non-negative integer")

        record = UsageRecord(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            cost=self.pricing.cost(provider, prompt_tokens, completion_tokens),
            timestamp=self._clock(),
            provider=provider,
        )

        self._usage.append(record)
        try:
            self._persist_usage()
        except StorageError as e:
            logger.error(
                "Failed to persist AI usage, keeping record in memory",
                provider=provider,
                cost=round(record.cost, 6),
                records_in_memory=len(self._usage),
                error=str(e),
            )

        logger.info(
            "AI usage tracked",
            provider=provider,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=round(record.cost, 6),
        )
        return record

    # ----- aggregation -----

    def _records_since(self, seconds: float) -> List[UsageRecord]:
        cutoff = self._clock() - seconds
        return [record for record in self._usage if record.timestamp > cutoff]

    @staticmethod
    def _totals(records: List[UsageRecord]) -> UsageTotals:
        return UsageTotals(
            tokens=sum(r.total_tokens for r in records),
            cost=sum(r.cost for r in records),
        )

    def get_daily_usage(self) -> UsageTotals:
        """Tokens and cost over the trailing 24 hours."""
        return self._totals(self._records_since(DAY_SECONDS))

    def get_monthly_usage(self) -> UsageTotals:
        """Tokens and cost over the trailing 30 days."""
        return self._totals(self._records_since(MONTH_SECONDS))

    def get_lifetime_usage(self) -> UsageTotals:
        return self._totals(self._usage)

    # ----- enforcement -----

    def check_limits(self) -> LimitCheck:
        """
        Check the daily and monthly ceilings.

        Must return ``can_proceed=True`` before any billable call is dispatched.
        Spend equal to a ceiling blocks, so a zero ceiling always blocks.
        """
        daily = self.get_daily_usage()
        if daily.cost >= self._limits.daily:
            return LimitCheck(
                can_proceed=False,
                reason=(
                    f"Daily limit reached: {_format_money(daily.cost)}"
                    f"/{_format_limit(self._limits.daily)}"
                ),
            )

        monthly = self.get_monthly_usage()
        if monthly.cost >= self._limits.monthly:
            return LimitCheck(
                can_proceed=False,
                reason=(
                    f"Monthly limit reached: {_format_money(monthly.cost)}"
                    f"/{_format_limit(self._limits.monthly)}"
                ),
            )

        return LimitCheck(can_proceed=True)

    def estimate_cost(
        self, prompt_length: int, provider: Union[Provider, str] = Provider.OPENAI
    ) -> float:
        """
        Estimate the cost of a generation from the prompt's character length.

        Assumes ~4 characters per token and a completion half as long as the
        prompt.
        """
        provider = provider.value if isinstance(provider, Provider) else provider
        if prompt_length < 0:
            raise InvalidInputError("prompt_length must be non-negative")

        prompt_tokens = math.ceil(prompt_length / CHARS_PER_TOKEN)
        completion_tokens = prompt_tokens * COMPLETION_RATIO
        return self.pricing.cost(provider, prompt_tokens, completion_tokens)

    def check_request(
        self, prompt_length: int, provider: Union[Provider, str] = Provider.OPENAI
    ) -> LimitCheck:
        """Daily and monthly ceilings, then the per-request ceiling on the estimate."""
        result = self.check_limits()
        if not result.can_proceed:
            return result

        estimate = self.estimate_cost(prompt_length, provider)
        per_request = self._limits.per_request
        if per_request <= 0 or estimate > per_request:
            return LimitCheck(
                can_proceed=False,
                reason=(
                    f"Per-request limit exceeded: estimated "
                    f"${estimate:.4f}/{_format_limit(per_request)}"
                ),
            )

        return LimitCheck(can_proceed=True)

    # ----- limits -----

    def get_limits(self) -> CostLimits:
        return CostLimits(
            self._limits.daily, self._limits.monthly, self._limits.per_request
        )

    def update_limits(self, **partial: float) -> CostLimits:
        """
        Merge new ceilings into the current limits and persist them.

        Accepts ``daily``, ``monthly``, and ``per_request`` (or ``perRequest``).
        Zero is a valid value and blocks the corresponding capability.

        Raises:
            InvalidInputError: For unknown keys or negative / non-numeric values
        """
        updates: Dict[str, float] = {}
        for key, value in partial.items():
            field = _LIMIT_ALIASES.get(key)
            if field is None:
                raise InvalidInputError(
                    f"Unknown cost limit '{key}'. Must be one of: daily, monthly, per_request"
                )
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidInputError(f"Cost limit '{key}' must be a number")
            if math.isnan(value) or value < 0:
                raise InvalidInputError(f"Cost limit '{key}' must be >= 0")
            updates[field] = float(value)

        for field, value in updates.items():
            setattr(self._limits, field, value)
        self._persist_limits()

        logger.info("Cost limits updated", **self._limits.to_dict())
        return self.get_limits()

    # ----- read-only projections -----

    @property
    def usage_log(self) -> Tuple[UsageRecord, ...]:
        return tuple(self._usage)

    def export_usage(self) -> List[Dict[str, Any]]:
        """Full raw usage log for audit or export."""
        return [record.to_dict() for record in self._usage]

    def get_usage_report(self) -> Dict[str, Any]:
        """Daily, monthly, and lifetime totals with limits and recent history."""
        lifetime = self.get_lifetime_usage()
        return {
            "daily": self.get_daily_usage().to_dict(),
            "monthly": self.get_monthly_usage().to_dict(),
            "total": {
                "tokens": lifetime.tokens,
                "cost": lifetime.cost,
                "requests": len(self._usage),
            },
            "limits": self._limits.to_dict(),
            "recentUsage": [r.to_dict() for r in self._usage[-RECENT_HISTORY_SIZE:]],
        }

    def get_usage_stats(self) -> Dict[str, Any]:
        """Costs and request counts per window and per provider."""
        daily_records = self._records_since(DAY_SECONDS)
        monthly_records = self._records_since(MONTH_SECONDS)

        requests_by_provider: Dict[str, int] = {}
        cost_by_provider: Dict[str, float] = {}
        for record in self._usage:
            requests_by_provider[record.provider] = (
                requests_by_provider.get(record.provider, 0) + 1
            )
            cost_by_provider[record.provider] = (
                cost_by_provider.get(record.provider, 0.0) + record.cost
            )

        return {
            "dailyCost": self._totals(daily_records).cost,
            "monthlyCost": self._totals(monthly_records).cost,
            "totalCost": self.get_lifetime_usage().cost,
            "dailyRequests": len(daily_records),
            "monthlyRequests": len(monthly_records),
            "totalRequests": len(self._usage),
            "requestsByProvider": requests_by_provider,
            "costByProvider": cost_by_provider,
        }
