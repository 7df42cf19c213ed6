"""
Sliding-window rate limiting for outbound API calls.

A limiter instance knows nothing about what it protects: it admits or denies
events per identity string. The gateway holds two independent instances, one
for API reads (higher throughput, short window) and one for export and
generation calls (low throughput, long window).

Admission and pruning happen in a single synchronous step with no await in
between, so the limiter is safe under interleaved coroutines on one event
loop. A multi-threaded port would need a lock around ``is_allowed``.
"""

import hashlib
import time
from typing import Callable, Dict, List, Optional

from design_gateway.config import Settings
from design_gateway.utils.logging import get_logger
from design_gateway.utils.types import RateLimitStats

logger = get_logger(__name__)

Clock = Callable[[], float]


class SlidingWindowRateLimiter:
    """
    Identity-keyed sliding-window admission controller.

    Each identity owns an ordered list of admission timestamps (seconds from
    ``clock``). Every check first drops timestamps at or before
    ``now - window``, so a window never grows beyond ``max_requests`` entries
    and idle identities are removed from the map entirely.
    """

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        *,
        clock: Clock = time.monotonic,
        name: str = "default",
    ):
        """
        Args:
            max_requests: Admissions allowed per identity per window
            window_ms: Trailing window length in milliseconds
            clock: Zero-argument callable returning seconds (inject for tests)
            name: Label used in logs to tell limiter instances apart
        """
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")

        self.max_requests = max_requests
        self.window_ms = window_ms
        self.name = name
        self._clock = clock
        self._windows: Dict[str, List[float]] = {}

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0

    def _prune(self, identity: str, now: float) -> List[float]:
        cutoff = now - self.window_seconds
        timestamps = [t for t in self._windows.get(identity, []) if t > cutoff]
        if timestamps:
            self._windows[identity] = timestamps
        else:
            self._windows.pop(identity, None)
        return timestamps

    def is_allowed(self, identity: str) -> bool:
        """
        Admit and record one event for ``identity`` if under the limit.

        Returns:
            True if admitted (event recorded), False if denied (nothing recorded)
        """
        now = self._clock()
        timestamps = self._prune(identity, now)

        if len(timestamps) >= self.max_requests:
            logger.warning(
                "Rate limit exceeded",
                limiter=self.name,
                identity=safe_identity(identity),
                limit=self.max_requests,
                window_ms=self.window_ms,
                retry_after=round(self.retry_after(identity), 3),
            )
            return False

        timestamps.append(now)
        self._windows[identity] = timestamps

        logger.debug(
            "Rate limit check passed",
            limiter=self.name,
            identity=safe_identity(identity),
            remaining=self.max_requests - len(timestamps),
        )
        return True

    def get_remaining_requests(self, identity: str) -> int:
        """Headroom for ``identity`` in the current window; never negative."""
        timestamps = self._prune(identity, self._clock())
        return max(0, self.max_requests - len(timestamps))

    def retry_after(self, identity: str) -> float:
        """Seconds until the oldest admission in the window expires (0 if none)."""
        now = self._clock()
        timestamps = self._prune(identity, now)
        if len(timestamps) < self.max_requests:
            return 0.0
        return max(0.0, timestamps[0] + self.window_seconds - now)

    def get_stats(self, identity: str) -> RateLimitStats:
        """Snapshot of the identity's window for monitoring and UI display."""
        now = self._clock()
        timestamps = self._prune(identity, now)
        reset_in = timestamps[0] + self.window_seconds - now if timestamps else 0.0
        return RateLimitStats(
            requests_in_window=len(timestamps),
            max_requests=self.max_requests,
            window_ms=self.window_ms,
            reset_in_seconds=max(0.0, reset_in),
        )

    def reset(self, identity: Optional[str] = None) -> None:
        """Forget one identity's window, or every window when no identity is given."""
        if identity is None:
            self._windows.clear()
        else:
            self._windows.pop(identity, None)

    def tracked_identities(self) -> int:
        return len(self._windows)


def safe_identity(identity: str) -> str:
    """
    Stable, non-reversible label for an identity, safe to log.

    Identities may be credential fingerprints or client IPs; only a short
    SHA-256 prefix is ever written to logs.
    """
    h = hashlib.sha256(identity.encode()).hexdigest()
    return f"id:{h[:12]}"


def create_api_rate_limiter(
    settings: Settings, clock: Clock = time.monotonic
) -> SlidingWindowRateLimiter:
    """Limiter for general API reads (file, images, components)."""
    return SlidingWindowRateLimiter(
        settings.api_rate_limit_max_requests,
        settings.api_rate_limit_window_ms,
        clock=clock,
        name="api",
    )


def create_export_rate_limiter(
    settings: Settings, clock: Clock = time.monotonic
) -> SlidingWindowRateLimiter:
    """Limiter for export and generation operations."""
    return SlidingWindowRateLimiter(
        settings.export_rate_limit_max_requests,
        settings.export_rate_limit_window_ms,
        clock=clock,
        name="export",
    )
