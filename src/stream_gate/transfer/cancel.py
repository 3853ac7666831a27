# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Cooperative cancellation signal for transfers.
"""

import asyncio


class CancelSignal:
    """
    One-shot cancellation flag that a transfer loop can await.

    Setting the signal never interrupts a write that is already in
    progress; the transfer loop observes it before its next read.

    Example:
        >>> cancel = CancelSignal()
        >>> handle = engine.start(claim, sink, cancel=cancel)
        >>> cancel.cancel("client closed the download")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. The first reason given is kept."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()


__all__ = ["CancelSignal"]
