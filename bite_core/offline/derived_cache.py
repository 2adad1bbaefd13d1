# =============================================================================
# bite_core/offline/derived_cache.py
# TTL-bound caches for values derived from the store or the backend
# =============================================================================
"""
DerivedDataCache - process-lifetime caches with per-kind TTL.

Each cache kind registers an async compute function. Reads inside the TTL
window return the held value; later reads recompute. Only one computation
per kind runs at a time: readers arriving while one is in flight await the
same task. A failed computation keeps the previous value (or the kind's
default) and leaves ``computed_at`` untouched so the next read retries.
"""

from __future__ import annotations
import asyncio
import copy
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_AGGREGATION_TTL = 2 * 60.0
DEFAULT_INFERENCE_TTL = 5 * 60.0


@dataclass
class DerivedCacheEntry(Generic[T]):
    value: T
    computed_at: float


@dataclass
class CacheRead(Generic[T]):
    """Result of one read, with freshness flags for the caller."""
    value: T
    computed_at: Optional[float] = None
    stale: bool = False
    loading: bool = False


@dataclass
class _Kind:
    compute: Callable[[], Awaitable[Any]]
    ttl: float
    default: Any


class DerivedDataCache:
    """
    Explicitly constructed cache service; one instance per application.

    Usage:
        cache = DerivedDataCache(clock=time.monotonic)
        cache.register("favorite_aggregation", compute_favorites, ttl=120)
        result = await cache.read("favorite_aggregation")
        cache.invalidate("favorite_aggregation")
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        ttls: Optional[Dict[str, float]] = None,
    ):
        """
        Args:
            clock: Monotonic seconds source
            ttls: Per-kind TTL overrides applied at registration
        """
        self._clock = clock
        self._ttl_overrides = dict(ttls or {})
        self._kinds: Dict[str, _Kind] = {}
        self._entries: Dict[str, DerivedCacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._generation: Dict[str, int] = {}
        self.compute_count: Dict[str, int] = {}

    def register(
        self,
        kind: str,
        compute: Callable[[], Awaitable[T]],
        ttl: float = DEFAULT_AGGREGATION_TTL,
        default: Optional[T] = None,
    ) -> None:
        """Register (or replace) a cache kind."""
        if kind in self._inflight:
            raise RuntimeError(f"Cannot re-register '{kind}' while it is computing")
        ttl = self._ttl_overrides.get(kind, ttl)
        if ttl <= 0:
            raise ValueError(f"TTL for '{kind}' must be positive")
        self._kinds[kind] = _Kind(compute=compute, ttl=ttl, default=default)
        self._entries.pop(kind, None)
        self._generation.setdefault(kind, 0)
        self.compute_count.setdefault(kind, 0)

    def _kind(self, kind: str) -> _Kind:
        try:
            return self._kinds[kind]
        except KeyError:
            raise KeyError(f"Unknown cache kind: {kind}") from None

    def ttl(self, kind: str) -> float:
        return self._kind(kind).ttl

    def _is_fresh(self, kind: str, entry: DerivedCacheEntry) -> bool:
        return self._clock() - entry.computed_at < self._kind(kind).ttl

    def peek(self, kind: str) -> Optional[DerivedCacheEntry]:
        """Held entry without triggering computation (may be expired)."""
        self._kind(kind)
        return self._entries.get(kind)

    async def read(self, kind: str, wait: bool = True) -> CacheRead:
        """
        Read a cached value, recomputing when expired.

        Args:
            kind: Registered cache kind
            wait: When False and an expired value is held, return it
                immediately (``stale=True, loading=True``) and refresh in
                the background. Without a held value the read always waits.
        """
        while True:
            registered = self._kind(kind)
            entry = self._entries.get(kind)
            if entry is not None and self._is_fresh(kind, entry):
                return CacheRead(value=entry.value, computed_at=entry.computed_at)

            task = self._inflight.get(kind)
            if task is None:
                task = asyncio.ensure_future(self._compute(kind, registered))
                self._inflight[kind] = task

            if entry is not None and not wait:
                return CacheRead(
                    value=entry.value, computed_at=entry.computed_at, stale=True, loading=True
                )

            generation = self._generation[kind]
            await asyncio.shield(task)
            if self._generation[kind] == generation:
                break
            # Invalidated while we waited: the result belongs to old source data

        entry = self._entries.get(kind)
        if entry is not None and self._is_fresh(kind, entry):
            return CacheRead(value=entry.value, computed_at=entry.computed_at)
        if entry is not None:
            return CacheRead(value=entry.value, computed_at=entry.computed_at, stale=True)
        return CacheRead(value=copy.deepcopy(registered.default), stale=True)

    async def _compute(self, kind: str, registered: _Kind) -> None:
        generation = self._generation[kind]
        self.compute_count[kind] += 1
        try:
            value = await registered.compute()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Derived cache '{kind}' computation failed: {e}")
            return
        finally:
            if self._inflight.get(kind) is asyncio.current_task():
                del self._inflight[kind]

        if self._generation[kind] != generation:
            logger.debug(f"Discarding '{kind}' result computed before invalidation")
            return
        self._entries[kind] = DerivedCacheEntry(value=value, computed_at=self._clock())
        logger.debug(f"Derived cache '{kind}' recomputed")

    def invalidate(self, kind: str) -> None:
        """Drop the held value so the next read recomputes."""
        self._kind(kind)
        self._entries.pop(kind, None)
        self._generation[kind] += 1
        # A computation started before the mutation must not be joined either
        self._inflight.pop(kind, None)
        logger.debug(f"Derived cache '{kind}' invalidated")

    def invalidate_all(self) -> None:
        for kind in list(self._kinds):
            self.invalidate(kind)
