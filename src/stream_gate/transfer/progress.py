# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Progress accounting for byte transfers.

The figures mirror what a download client derives from the byte flow:

- ``percentage = loaded / total * 100`` (0 when total is unknown)
- ``speed = loaded / elapsed`` in bytes per second
- ``time_remaining = (total - loaded) / speed`` when both are positive
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class TransferProgress:
    """
    Snapshot of a transfer's progress.

    Attributes:
        loaded: Bytes written to the sink so far
        total: Expected size in bytes, or None when the source does not say
        percentage: 0-100, or 0 when total is unknown
        speed: Average bytes per second since the transfer started
        time_remaining: Estimated seconds left, 0 when not computable
        elapsed: Seconds since the transfer started
        final: True for the last event of a transfer
    """

    loaded: int
    total: int | None
    percentage: float
    speed: float
    time_remaining: float
    elapsed: float
    final: bool = False


class ProgressTracker:
    """
    Accumulates transferred bytes and rate-limits progress snapshots.

    ``advance`` returns a snapshot at most once per ``interval`` seconds;
    ``finish`` always returns one.
    """

    def __init__(
        self,
        total: int | None = None,
        interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total = total
        self.loaded = 0
        self._interval = interval
        self._clock = clock
        self._started_at = clock()
        self._last_emit_at: float | None = None

    @property
    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._started_at)

    def advance(self, nbytes: int) -> TransferProgress | None:
        """Record ``nbytes`` written; return a snapshot when one is due."""
        self.loaded += nbytes
        now = self._clock()
        if self._last_emit_at is not None and now - self._last_emit_at < self._interval:
            return None
        self._last_emit_at = now
        return self.snapshot()

    def finish(self) -> TransferProgress:
        return self.snapshot(final=True)

    def snapshot(self, final: bool = False) -> TransferProgress:
        elapsed = self.elapsed
        speed = self.loaded / elapsed if elapsed > 0 else 0.0

        if self.total:
            percentage = min(100.0, self.loaded / self.total * 100)
            remaining = max(0, self.total - self.loaded)
            time_remaining = remaining / speed if speed > 0 else 0.0
        else:
            percentage = 0.0
            time_remaining = 0.0

        return TransferProgress(
            loaded=self.loaded,
            total=self.total,
            percentage=percentage,
            speed=speed,
            time_remaining=time_remaining,
            elapsed=elapsed,
            final=final,
        )


__all__ = ["ProgressTracker", "TransferProgress"]
