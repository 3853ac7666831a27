# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
In-flight transfer tracker.

Keeps a registry of running transfers and cancels the ones that have gone
quiet. A transfer is idle when no chunk has been written for
``idle_timeout`` seconds; the sweep runs every ``cleanup_interval``
seconds in a background task.

Classes:
    TransferEntry: One tracked transfer.
    TransferTracker: Registry plus idle sweep.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..observability.constants import TRANSFER_IDLE_CANCELLATIONS_TOTAL

if TYPE_CHECKING:
    from ..observability.collector import MetricsCollector
    from .cancel import CancelSignal

logger = logging.getLogger(__name__)

IDLE_CANCEL_REASON = "idle timeout"


@dataclass
class TransferEntry:
    """
    A transfer registered with the tracker.

    Attributes:
        transfer_id: Unique identifier of the transfer
        owner_id: Owner of the token that started it
        token_id: Consumed token the transfer runs under
        started_at: Monotonic time the transfer was registered
        last_activity_at: Monotonic time of the last written chunk
        bytes_transferred: Bytes written so far
        cancel: Signal used to stop the transfer
    """

    transfer_id: str
    owner_id: str
    token_id: str
    started_at: float
    last_activity_at: float
    cancel: CancelSignal
    bytes_transferred: int = 0


class TransferTracker:
    """
    Registry of in-flight transfers with a background idle sweep.

    Example:
        >>> tracker = TransferTracker(cleanup_interval=60, idle_timeout=300)
        >>> await tracker.start_cleanup()
        >>> engine = StreamTransferEngine(opener, tracker=tracker)
        >>> ...
        >>> await tracker.stop_cleanup()
    """

    def __init__(
        self,
        cleanup_interval: float = 60.0,
        idle_timeout: float = 300.0,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cleanup_interval = cleanup_interval
        self._idle_timeout = idle_timeout
        self._metrics = metrics
        self._clock = clock

        self._in_flight: dict[str, TransferEntry] = {}
        self._lock = asyncio.Lock()

        self._cleanup_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def active_count(self) -> int:
        """Return the number of currently tracked transfers."""
        return len(self._in_flight)

    def count_for_owner(self, owner_id: str) -> int:
        return sum(1 for e in self._in_flight.values() if e.owner_id == owner_id)

    def get(self, transfer_id: str) -> TransferEntry | None:
        return self._in_flight.get(transfer_id)

    async def start_cleanup(self) -> None:
        """Start the background idle sweep."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._running = True
            self._cleanup_task = asyncio.create_task(
                self._cleanup_loop(),
                name="transfer_idle_sweep",
            )
            logger.info("Started transfer idle sweep task")

    async def stop_cleanup(self) -> None:
        """Stop the background idle sweep and wait for it to finish."""
        self._running = False
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
        self._cleanup_task = None
        logger.info("Stopped transfer idle sweep task")

    async def register(
        self, transfer_id: str, owner_id: str, token_id: str, cancel: CancelSignal
    ) -> TransferEntry:
        now = self._clock()
        entry = TransferEntry(
            transfer_id=transfer_id,
            owner_id=owner_id,
            token_id=token_id,
            started_at=now,
            last_activity_at=now,
            cancel=cancel,
        )
        async with self._lock:
            self._in_flight[transfer_id] = entry

        logger.debug(f"Registered transfer {transfer_id} (token={token_id})")
        return entry

    async def deregister(self, transfer_id: str) -> None:
        async with self._lock:
            entry = self._in_flight.pop(transfer_id, None)

        if entry:
            logger.debug(
                f"Deregistered transfer {transfer_id} "
                f"after {entry.bytes_transferred} bytes"
            )

    async def update_activity(self, transfer_id: str, bytes_transferred: int) -> None:
        """
        Record that a chunk was written.

        Called by the engine after each sink write so the sweep does not
        treat a slow but moving transfer as idle.
        """
        async with self._lock:
            entry = self._in_flight.get(transfer_id)
            if entry:
                entry.last_activity_at = self._clock()
                entry.bytes_transferred = bytes_transferred

    async def cancel_owner(self, owner_id: str, reason: str) -> int:
        """Signal cancellation to every transfer of one owner."""
        async with self._lock:
            entries = [e for e in self._in_flight.values() if e.owner_id == owner_id]
        for entry in entries:
            entry.cancel.cancel(reason)
        return len(entries)

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._cleanup_interval)
                cancelled = await self._cleanup_idle()
                if cancelled > 0:
                    logger.info(f"Transfer sweep cancelled {cancelled} idle transfers")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Transfer sweep error: {e}")

    async def _cleanup_idle(self) -> int:
        """
        Cancel transfers idle for longer than idle_timeout.

        Entries are removed from the registry here; the engine's own
        deregister call afterwards is a no-op. Cancellation is only a
        signal, so the transfer tears itself down at its next read.

        Returns:
            Number of transfers cancelled.
        """
        now = self._clock()
        cutoff = now - self._idle_timeout
        idle: list[TransferEntry] = []

        async with self._lock:
            for transfer_id, entry in list(self._in_flight.items()):
                if entry.cancel.is_set():
                    self._in_flight.pop(transfer_id)
                elif entry.last_activity_at < cutoff:
                    idle.append(self._in_flight.pop(transfer_id))

        for entry in idle:
            logger.warning(
                f"Cancelling idle transfer {entry.transfer_id} "
                f"(age: {now - entry.started_at:.1f}s, "
                f"inactivity: {now - entry.last_activity_at:.1f}s, "
                f"bytes: {entry.bytes_transferred})"
            )
            entry.cancel.cancel(IDLE_CANCEL_REASON)
            if self._metrics:
                self._metrics.inc_counter(TRANSFER_IDLE_CANCELLATIONS_TOTAL)

        return len(idle)

    def get_stats(self) -> dict[str, Any]:
        """
        Get statistics about the tracker.

        Returns:
            Dictionary with tracker statistics.
        """
        return {
            "active_transfers": len(self._in_flight),
            "cleanup_interval": self._cleanup_interval,
            "idle_timeout": self._idle_timeout,
            "cleanup_running": self._running,
        }


__all__ = [
    "IDLE_CANCEL_REASON",
    "TransferEntry",
    "TransferTracker",
]
