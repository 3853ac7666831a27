# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Process-local denial cache for quota checks.

This cache is an optimization only. The store-derived counts remain the
authority; the cache remembers recent denials so repeated attempts from a
user who is already over quota skip the store round-trip. Entries are
trusted for at most ``ttl`` seconds and never past the denial's own reset
time, which bounds how stale an answer can be.

Expired entries are removed by a background sweep on a fixed interval,
and the cache holds at most ``max_entries`` owners.
"""

from __future__ import annotations

import asyncio
import contextlib
import heapq
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from ..types.results import QuotaDecision
from ..types.tiers import SubscriptionTier

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    valid_until: float
    decision: QuotaDecision
    tier: SubscriptionTier | None = None


class DenialCache:
    """
    Bounded, swept map of owner id to the latest quota denial.

    Example:
        >>> cache = DenialCache(ttl=30, sweep_interval=60)
        >>> await cache.start()
        >>> cache.put("user-1", decision, now)
        >>> cache.get("user-1", now + 1)
        >>> await cache.stop()
    """

    def __init__(
        self,
        ttl: float = 30.0,
        sweep_interval: float = 60.0,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.time,
    ):
        self._ttl = ttl
        self._sweep_interval = sweep_interval
        self._max_entries = max_entries
        self._clock = clock

        self._entries: dict[str, _CacheEntry] = {}
        # Lazy-deletion heap of (valid_until, owner_id)
        self._expiry_heap: list[tuple[float, str]] = []

        self._sweep_task: asyncio.Task[None] | None = None
        self._running = False

    def __len__(self) -> int:
        return len(self._entries)

    def get(
        self, owner_id: str, now: float, tier: SubscriptionTier | None = None
    ) -> QuotaDecision | None:
        """
        Return a cached denial with retry_after recomputed for ``now``.

        A denial recorded under a different tier is discarded, since its
        limit and hints no longer apply.
        """
        entry = self._entries.get(owner_id)
        if entry is None:
            return None
        if entry.valid_until <= now or entry.tier != tier:
            del self._entries[owner_id]
            return None
        retry_after = max(1, math.ceil(entry.decision.reset_time - now))
        return replace(entry.decision, retry_after=retry_after)

    def put(
        self,
        owner_id: str,
        decision: QuotaDecision,
        now: float,
        tier: SubscriptionTier | None = None,
    ) -> None:
        """Remember a denial. Allowed decisions are ignored."""
        if decision.allowed:
            return
        valid_until = min(decision.reset_time, now + self._ttl)
        if valid_until <= now:
            return

        if owner_id not in self._entries and len(self._entries) >= self._max_entries:
            self._evict_one()

        self._entries[owner_id] = _CacheEntry(
            valid_until=valid_until, decision=decision, tier=tier
        )
        heapq.heappush(self._expiry_heap, (valid_until, owner_id))

    def invalidate(self, owner_id: str) -> None:
        self._entries.pop(owner_id, None)

    def clear(self) -> None:
        self._entries.clear()
        self._expiry_heap.clear()

    def _evict_one(self) -> None:
        """Drop the entry closest to expiry."""
        while self._expiry_heap:
            valid_until, owner_id = heapq.heappop(self._expiry_heap)
            entry = self._entries.get(owner_id)
            if entry is not None and entry.valid_until == valid_until:
                del self._entries[owner_id]
                return

    def sweep(self, now: float | None = None) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock() if now is None else now
        removed = 0
        while self._expiry_heap and self._expiry_heap[0][0] <= now:
            valid_until, owner_id = heapq.heappop(self._expiry_heap)
            entry = self._entries.get(owner_id)
            # Skip heap entries superseded by a later put
            if entry is not None and entry.valid_until == valid_until:
                del self._entries[owner_id]
                removed += 1
        return removed

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._sweep_task is None or self._sweep_task.done():
            self._running = True
            self._sweep_task = asyncio.create_task(
                self._sweep_loop(), name="denial_cache_sweep"
            )
            logger.debug("Started denial cache sweep task")

    async def stop(self) -> None:
        """Stop the background sweep task."""
        self._running = False
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
        self._sweep_task = None
        logger.debug("Stopped denial cache sweep task")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._sweep_interval)
                removed = self.sweep()
                if removed:
                    logger.debug(f"Denial cache sweep removed {removed} entries")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Denial cache sweep error: {e}")


__all__ = ["DenialCache"]
