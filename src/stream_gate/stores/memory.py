# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
MemoryTokenStore for stream-gate

This module provides an in-memory token store that doesn't require Redis.
Perfect for testing, development, and single-process applications.
"""

import asyncio
import contextlib
import heapq
import logging
import time
from collections import defaultdict
from collections.abc import Callable

from ..exceptions import StoreOperationError
from ..types.results import TokenStatistics
from ..types.token import StreamToken, TokenState
from .base import BaseTokenStore, HealthCheckResult

logger = logging.getLogger(__name__)


class MemoryTokenStore(BaseTokenStore):
    """
    An in-memory token store.

    Every operation runs inside one asyncio.Lock critical section, which
    makes ``claim`` atomic for all callers sharing this instance. No I/O
    happens while the lock is held.

    Key Features:
    - Dict-based storage indexed by secret hash, token id and owner
    - Optional retention sweep that drops records no longer needed for
      quota accounting
    - No external dependencies beyond Python stdlib

    Note:
        This store is NOT suitable for:
        - Multi-process applications
        - Distributed systems
        Use RedisTokenStore there.
    """

    def __init__(
        self,
        namespace: str = "stream_gate_memory",
        retention_seconds: float = 172800.0,
        cleanup_interval: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the in-memory store.

        Args:
            namespace: Namespace for key isolation (for compatibility)
            retention_seconds: How long after creation a finished record is
                kept. Must cover the longest quota window (default 48h).
            cleanup_interval: Seconds between retention sweeps
            clock: Time source for the retention sweep
        """
        super().__init__(namespace)
        self.retention_seconds = retention_seconds
        self.cleanup_interval = cleanup_interval
        self._clock = clock

        # secret_hash -> record
        self._tokens: dict[str, StreamToken] = {}
        # token_id -> secret_hash
        self._by_id: dict[str, str] = {}
        # owner_id -> secret hashes in insertion order
        self._by_owner: dict[str, list[str]] = defaultdict(list)

        # Retention heap: (created_at, secret_hash)
        self._retention_heap: list[tuple[float, str]] = []

        self._lock = asyncio.Lock()

        self._cleanup_task: asyncio.Task[None] | None = None
        self._running = False

        logger.debug(f"Initialized MemoryTokenStore with namespace '{namespace}'")

    # Token Lifecycle

    async def insert(self, token: StreamToken) -> None:
        async with self._lock:
            if token.secret_hash in self._tokens or token.id in self._by_id:
                raise StoreOperationError(f"Duplicate token record: {token.id}")
            self._tokens[token.secret_hash] = token
            self._by_id[token.id] = token.secret_hash
            self._by_owner[token.owner_id].append(token.secret_hash)
            heapq.heappush(self._retention_heap, (token.created_at, token.secret_hash))
        logger.debug(f"Stored token {token.id} for owner {token.owner_id}")

    async def claim(self, secret_hash: str, now: float) -> StreamToken | None:
        async with self._lock:
            token = self._tokens.get(secret_hash)
            if token is None or token.used:
                return None
            claimed = token.claimed(now)
            self._tokens[secret_hash] = claimed
            return claimed

    async def get(self, token_id: str) -> StreamToken | None:
        async with self._lock:
            secret_hash = self._by_id.get(token_id)
            return self._tokens.get(secret_hash) if secret_hash else None

    # Owner Queries

    def _owner_tokens_locked(self, owner_id: str) -> list[StreamToken]:
        return [
            self._tokens[h] for h in self._by_owner.get(owner_id, ()) if h in self._tokens
        ]

    async def count_issued_since(self, owner_id: str, since: float) -> int:
        async with self._lock:
            return sum(
                1 for t in self._owner_tokens_locked(owner_id) if t.created_at >= since
            )

    async def count_active(self, owner_id: str, now: float) -> int:
        async with self._lock:
            return sum(1 for t in self._owner_tokens_locked(owner_id) if t.is_active(now))

    async def list_active(self, owner_id: str, now: float) -> list[StreamToken]:
        async with self._lock:
            active = [t for t in self._owner_tokens_locked(owner_id) if t.is_active(now)]
        active.sort(key=lambda t: t.created_at, reverse=True)
        return active

    # Owner-initiated Transitions

    def _owned_active_locked(
        self, token_id: str, owner_id: str, now: float
    ) -> StreamToken | None:
        secret_hash = self._by_id.get(token_id)
        if secret_hash is None:
            return None
        token = self._tokens.get(secret_hash)
        if token is None or token.owner_id != owner_id or not token.is_active(now):
            return None
        return token

    async def extend_expiry(
        self, token_id: str, owner_id: str, expires_at: float, now: float
    ) -> StreamToken | None:
        async with self._lock:
            token = self._owned_active_locked(token_id, owner_id, now)
            if token is None:
                return None
            updated = token.model_copy(update={"expires_at": expires_at})
            self._tokens[token.secret_hash] = updated
            return updated

    async def revoke(self, token_id: str, owner_id: str, now: float) -> bool:
        async with self._lock:
            token = self._owned_active_locked(token_id, owner_id, now)
            if token is None:
                return False
            self._tokens[token.secret_hash] = token.model_copy(
                update={"used": True, "used_at": now}
            )
            return True

    # Health and Monitoring

    async def get_statistics(self, now: float) -> TokenStatistics:
        async with self._lock:
            tokens = list(self._tokens.values())

        stats = TokenStatistics()
        for token in tokens:
            state = token.state(now)
            if state is TokenState.ACTIVE:
                stats.total_active += 1
            elif state is TokenState.EXPIRED:
                stats.total_expired += 1
            else:
                stats.total_consumed += 1
        if tokens:
            stats.average_access_count = sum(t.access_count for t in tokens) / len(
                tokens
            )
        return stats

    async def health_check(self) -> HealthCheckResult:
        """Perform a health check on the store."""
        async with self._lock:
            return HealthCheckResult(
                healthy=True,
                store_type="memory",
                namespace=self.namespace,
                metadata={
                    "tokens_count": len(self._tokens),
                    "owners_count": len(self._by_owner),
                    "cleanup_running": self._running,
                },
            )

    # Cleanup and Maintenance

    async def purge_expired_records(self, now: float | None = None) -> int:
        """
        Drop finished records older than the retention period.

        Active tokens are never dropped, whatever their age.

        Returns:
            Number of records removed.
        """
        now = self._clock() if now is None else now
        cutoff = now - self.retention_seconds
        removed = 0
        kept: list[tuple[float, str]] = []

        async with self._lock:
            while self._retention_heap and self._retention_heap[0][0] < cutoff:
                created_at, secret_hash = heapq.heappop(self._retention_heap)
                token = self._tokens.get(secret_hash)
                if token is None:
                    continue
                if token.is_active(now):
                    kept.append((created_at, secret_hash))
                    continue
                del self._tokens[secret_hash]
                self._by_id.pop(token.id, None)
                owner_hashes = self._by_owner.get(token.owner_id)
                if owner_hashes is not None:
                    with contextlib.suppress(ValueError):
                        owner_hashes.remove(secret_hash)
                    if not owner_hashes:
                        del self._by_owner[token.owner_id]
                removed += 1
            for entry in kept:
                heapq.heappush(self._retention_heap, entry)

        if removed:
            logger.debug(f"Purged {removed} finished token records")
        return removed

    async def cleanup(self) -> None:
        """Stop background work and clear all records."""
        await self.stop()
        async with self._lock:
            self._tokens.clear()
            self._by_id.clear()
            self._by_owner.clear()
            self._retention_heap.clear()
            logger.debug("MemoryTokenStore cleanup completed")

    async def start(self) -> None:
        """
        Start the background retention sweep.
        """
        if self._running:
            return

        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("MemoryTokenStore cleanup task started")

    async def stop(self) -> None:
        """
        Stop the background retention sweep.
        """
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
            logger.info("MemoryTokenStore cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.cleanup_interval)
                await self.purge_expired_records()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cleanup loop: {e}", exc_info=True)


__all__ = ["MemoryTokenStore"]
