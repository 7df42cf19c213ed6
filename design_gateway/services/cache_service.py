"""
In-memory response cache for Figma read calls.

Uses cachetools TTLCache for size-bounded storage with per-entry TTLs on top
(file data, rendered image URLs and comments go stale at different rates).
Keys always include a fingerprint of the caller's credential, so one user's
cached data is never served to another.
"""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache

from design_gateway.config import Settings
from design_gateway.utils.logging import get_logger

logger = get_logger(__name__)

# Upper bound on any single entry's lifetime; per-entry TTLs are shorter.
GLOBAL_MAX_TTL_SECONDS = 3600


@dataclass
class CacheEntry:
    """Cached value plus the timestamps needed for per-entry expiry."""

    value: Dict[str, Any]
    cached_at: float
    expires_at: float
    kind: str

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def age_seconds(self, now: float) -> float:
        return now - self.cached_at

    def ttl_remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


class ResponseCache:
    """
    Per-entry TTL cache for upstream read responses.

    Usage:
        cache = ResponseCache(maxsize=100)
        key = make_cache_key("file", credential, file_key="abc")
        if (hit := await cache.get(key)) is None:
            data = await fetch()
            await cache.set(key, data, ttl_s=300, kind="file")
    """

    def __init__(
        self,
        maxsize: int = 100,
        *,
        ttls: Optional[Dict[str, int]] = None,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool = True,
    ):
        """
        Args:
            maxsize: Maximum entries before least-recently-used eviction
            ttls: Default TTL in seconds per entry kind
            clock: Zero-argument callable returning seconds (inject for tests)
            enabled: When False every lookup misses and nothing is stored
        """
        self._clock = clock
        self.store: TTLCache = TTLCache(
            maxsize=maxsize, ttl=GLOBAL_MAX_TTL_SECONDS, timer=clock
        )
        self.ttls = dict(ttls or {})
        self.enabled = enabled
        self._lock = asyncio.Lock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "expired": 0, "deletes": 0}

        logger.info("Response cache initialized", maxsize=maxsize, enabled=enabled)

    def ttl_for(self, kind: str) -> int:
        return self.ttls.get(kind, 0)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the cached value, or None on miss or expiry."""
        if not self.enabled:
            return None

        async with self._lock:
            entry: Optional[CacheEntry] = self.store.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self.store[key]
                self._stats["misses"] += 1
                self._stats["expired"] += 1
                logger.debug("Cache expired", kind=entry.kind, age_s=entry.age_seconds(now))
                return None

            self._stats["hits"] += 1
            logger.debug(
                "Cache hit",
                kind=entry.kind,
                age_s=round(entry.age_seconds(now), 3),
                ttl_remaining_s=round(entry.ttl_remaining(now), 3),
            )
            return dict(entry.value)

    async def set(
        self,
        key: str,
        value: Dict[str, Any],
        *,
        kind: str,
        ttl_s: Optional[int] = None,
    ) -> None:
        """Store a copy of ``value``; a TTL of zero means do not cache."""
        ttl = self.ttl_for(kind) if ttl_s is None else ttl_s
        if not self.enabled or ttl <= 0:
            return

        async with self._lock:
            now = self._clock()
            self.store[key] = CacheEntry(
                value=dict(value),
                cached_at=now,
                expires_at=now + ttl,
                kind=kind,
            )
            self._stats["sets"] += 1
            logger.debug("Cache set", kind=kind, ttl_s=ttl, cache_size=len(self.store))

    async def delete(self, key: str) -> None:
        async with self._lock:
            if self.store.pop(key, None) is not None:
                self._stats["deletes"] += 1

    async def clear(self) -> None:
        async with self._lock:
            self.store.clear()

    def stats(self) -> Dict[str, Any]:
        """Hit rate, size, and operation counts for monitoring."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total if total > 0 else 0.0
        return {
            **self._stats,
            "hit_rate": round(hit_rate, 3),
            "entries": len(self.store),
            "maxsize": self.store.maxsize,
            "enabled": self.enabled,
        }


def credential_fingerprint(credential: str) -> str:
    """Short one-way fingerprint of a credential, safe for keys and logs."""
    return hashlib.sha256(credential.encode()).hexdigest()[:16]


def canonical_json(value: Any) -> str:
    """Sorted-key compact JSON so equivalent parameters hash identically."""
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def make_cache_key(kind: str, credential: str, **params: Any) -> str:
    """
    Build a cache key scoped to one credential.

    Format: figma:{kind}:{credential_fp}:{params_hash}
    """
    params_hash = hashlib.sha256(canonical_json(params).encode()).hexdigest()[:16]
    return f"figma:{kind}:{credential_fingerprint(credential)}:{params_hash}"


def create_response_cache(
    settings: Settings, clock: Callable[[], float] = time.monotonic
) -> ResponseCache:
    return ResponseCache(
        maxsize=settings.cache_max_entries,
        ttls={
            "file": settings.cache_ttl_file,
            "images": settings.cache_ttl_images,
            "comments": settings.cache_ttl_comments,
        },
        clock=clock,
        enabled=settings.cache_enabled,
    )
