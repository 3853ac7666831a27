# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Streaming transfer engine.

Relays bytes from an upstream source to a sink for an already-claimed
token. The engine never touches the token store: by the time it runs, the
token is consumed and nothing the transfer does can change that.

Outcomes:
- COMPLETED: the source reached end of stream
- CANCELLED: the cancel signal fired, or the sink stopped accepting bytes
- FAILED: the source could not be opened or failed mid-read, or the
  overall timeout elapsed

Key Design Decisions:
- Reads race the cancel signal, so cancellation is observed within one
  chunk. A write that has started always completes.
- The source is closed under asyncio.shield on every exit path.
- Task cancellation (asyncio.CancelledError) closes the source and then
  propagates; it is not converted into a result.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..config import TransferConfig
from ..exceptions import UpstreamTransferError
from ..observability.constants import (
    ACTIVE_TRANSFERS,
    TRANSFER_BYTES_TOTAL,
    TRANSFER_DURATION_SECONDS,
    TRANSFERS_TOTAL,
)
from .cancel import CancelSignal
from .progress import ProgressTracker, TransferProgress

if TYPE_CHECKING:
    from ..observability.collector import MetricsCollector
    from ..types.results import Claim
    from .sources import ByteSink, ByteSource, SourceOpener
    from .tracker import TransferTracker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TransferProgress], Any]

SINK_CLOSED_REASON = "sink closed"


class TransferStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferResult:
    """
    Final outcome of a transfer.

    Attributes:
        transfer_id: Identifier assigned when the transfer started
        status: COMPLETED, CANCELLED or FAILED
        bytes_transferred: Bytes written to the sink
        total: Size reported by the source, if any
        duration: Wall time in seconds
        error: The UpstreamTransferError for FAILED transfers
        cancel_reason: Why a CANCELLED transfer stopped
    """

    transfer_id: str
    status: TransferStatus
    bytes_transferred: int
    total: int | None
    duration: float
    error: UpstreamTransferError | None = None
    cancel_reason: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == TransferStatus.COMPLETED


@dataclass
class _RunState:
    status: TransferStatus = TransferStatus.FAILED
    error: UpstreamTransferError | None = None
    cancel_reason: str | None = None


class TransferHandle:
    """
    A transfer running as its own task.

    Progress events arrive on a channel; iterate ``progress()`` to receive
    them. The last event has ``final=True``.
    """

    def __init__(
        self,
        transfer_id: str,
        task: asyncio.Task[TransferResult],
        cancel_signal: CancelSignal,
        channel: asyncio.Queue[TransferProgress],
    ):
        self.transfer_id = transfer_id
        self._task = task
        self._cancel = cancel_signal
        self._channel = channel

    def cancel(self, reason: str | None = None) -> None:
        """Request cooperative cancellation."""
        self._cancel.cancel(reason)

    def done(self) -> bool:
        return self._task.done()

    def add_done_callback(self, callback: Callable[[TransferHandle], Any]) -> None:
        self._task.add_done_callback(lambda _task: callback(self))

    async def wait(self) -> TransferResult:
        """Wait for the transfer to finish and return its result."""
        return await self._task

    async def progress(self) -> AsyncIterator[TransferProgress]:
        """Yield progress events until the final one or the task ends."""
        while True:
            if self._task.done() and self._channel.empty():
                return
            getter = asyncio.ensure_future(self._channel.get())
            try:
                await asyncio.wait({getter, self._task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not getter.done():
                    getter.cancel()
            if getter.done() and not getter.cancelled():
                event = getter.result()
                yield event
                if event.final:
                    return


class StreamTransferEngine:
    """
    Moves bytes from a SourceOpener-provided source into a sink.

    Example:
        >>> engine = StreamTransferEngine(HTTPSourceOpener())
        >>> result = await engine.transfer(claim, sink, cancel=CancelSignal())
        >>> result.status
        <TransferStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        opener: SourceOpener,
        config: TransferConfig | None = None,
        tracker: TransferTracker | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._opener = opener
        self._config = config or TransferConfig()
        self._tracker = tracker
        self._metrics = metrics
        self._clock = clock

    @property
    def tracker(self) -> TransferTracker | None:
        return self._tracker

    async def open_source(self, claim: Claim) -> ByteSource:
        """
        Open the byte source for a claim.

        Raises:
            UpstreamTransferError: If the source cannot be opened
        """
        try:
            return await self._opener.open(claim.resource)
        except UpstreamTransferError:
            raise
        except Exception as e:
            logger.warning(f"Failed to open source for token {claim.token_id}: {e}")
            raise UpstreamTransferError(f"Failed to open source: {e}") from e

    def start(
        self,
        claim: Claim,
        sink: ByteSink,
        cancel: CancelSignal | None = None,
        source: ByteSource | None = None,
    ) -> TransferHandle:
        """Run a transfer as an independent task and return its handle."""
        cancel = cancel or CancelSignal()
        transfer_id = uuid.uuid4().hex
        channel: asyncio.Queue[TransferProgress] = asyncio.Queue()

        task = asyncio.create_task(
            self.transfer(
                claim,
                sink,
                cancel=cancel,
                on_progress=channel.put_nowait,
                source=source,
                transfer_id=transfer_id,
            ),
            name=f"transfer_{transfer_id[:8]}",
        )
        return TransferHandle(transfer_id, task, cancel, channel)

    async def transfer(
        self,
        claim: Claim,
        sink: ByteSink,
        cancel: CancelSignal | None = None,
        on_progress: ProgressCallback | None = None,
        source: ByteSource | None = None,
        transfer_id: str | None = None,
    ) -> TransferResult:
        """
        Relay the claimed resource into ``sink``.

        Args:
            claim: Capability returned by the validator
            sink: Destination for the bytes
            cancel: Cooperative cancellation signal
            on_progress: Called with rate-limited progress snapshots and a
                final snapshot
            source: An already opened source (otherwise one is opened)
            transfer_id: Identifier to use instead of a generated one

        Returns:
            TransferResult describing how the transfer ended
        """
        cancel = cancel or CancelSignal()
        transfer_id = transfer_id or uuid.uuid4().hex
        progress = ProgressTracker(
            interval=self._config.progress_interval, clock=self._clock
        )
        state = _RunState()
        started = self._clock()

        if self._tracker:
            await self._tracker.register(transfer_id, claim.owner_id, claim.token_id, cancel)
        if self._metrics:
            self._metrics.inc_gauge(ACTIVE_TRANSFERS)

        try:
            await asyncio.wait_for(
                self._relay(claim, sink, cancel, progress, on_progress, source, state, transfer_id),
                timeout=self._config.timeout,
            )
        except asyncio.TimeoutError:
            state.status = TransferStatus.FAILED
            state.error = UpstreamTransferError(
                f"Transfer timed out after {self._config.timeout:.0f}s",
                bytes_transferred=progress.loaded,
            )
            logger.warning(f"Transfer {transfer_id} timed out after {progress.loaded} bytes")
        except UpstreamTransferError as e:
            state.status = TransferStatus.FAILED
            e.bytes_transferred = progress.loaded
            state.error = e
            logger.warning(f"Transfer {transfer_id} failed after {progress.loaded} bytes: {e}")
        except asyncio.CancelledError:
            self._record(TransferStatus.CANCELLED, progress.loaded, self._clock() - started)
            logger.info(f"Transfer {transfer_id} task cancelled after {progress.loaded} bytes")
            raise
        finally:
            if self._metrics:
                self._metrics.dec_gauge(ACTIVE_TRANSFERS)
            if self._tracker:
                await self._tracker.deregister(transfer_id)

        duration = self._clock() - started
        if on_progress:
            self._emit(on_progress, progress.finish())
        self._record(state.status, progress.loaded, duration)

        logger.debug(
            f"Transfer {transfer_id} {state.status.value}: "
            f"{progress.loaded} bytes in {duration:.1f}s"
        )

        return TransferResult(
            transfer_id=transfer_id,
            status=state.status,
            bytes_transferred=progress.loaded,
            total=progress.total,
            duration=duration,
            error=state.error,
            cancel_reason=state.cancel_reason,
        )

    async def _relay(
        self,
        claim: Claim,
        sink: ByteSink,
        cancel: CancelSignal,
        progress: ProgressTracker,
        on_progress: ProgressCallback | None,
        source: ByteSource | None,
        state: _RunState,
        transfer_id: str,
    ) -> None:
        if source is None:
            source = await self.open_source(claim)
        progress.total = source.total
        cancel_waiter = asyncio.ensure_future(cancel.wait())

        try:
            while True:
                chunk = await self._read_or_cancel(
                    source, cancel, cancel_waiter, progress.loaded
                )
                if chunk is None:
                    state.status = TransferStatus.CANCELLED
                    state.cancel_reason = cancel.reason
                    logger.info(
                        f"Transfer {transfer_id} cancelled at {progress.loaded} bytes"
                        f"{f' ({cancel.reason})' if cancel.reason else ''}"
                    )
                    return
                if not chunk:
                    state.status = TransferStatus.COMPLETED
                    return

                try:
                    await sink.write(chunk)
                except Exception as e:
                    state.status = TransferStatus.CANCELLED
                    state.cancel_reason = SINK_CLOSED_REASON
                    logger.info(
                        f"Transfer {transfer_id} stopped, sink rejected write "
                        f"at {progress.loaded} bytes: {type(e).__name__}"
                    )
                    return

                snapshot = progress.advance(len(chunk))
                if self._tracker:
                    await self._tracker.update_activity(transfer_id, progress.loaded)
                if snapshot is not None and on_progress:
                    self._emit(on_progress, snapshot)
        finally:
            cancel_waiter.cancel()
            await asyncio.shield(self._close_source(source, transfer_id))

    async def _read_or_cancel(
        self,
        source: ByteSource,
        cancel: CancelSignal,
        cancel_waiter: asyncio.Future[None],
        loaded: int,
    ) -> bytes | None:
        """Return the next chunk, b"" at end of stream, or None if cancelled."""
        if cancel.is_set():
            return None

        read = asyncio.ensure_future(source.read(self._config.chunk_size))
        try:
            await asyncio.wait({read, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._discard_read(read)
            raise

        if cancel.is_set():
            await self._discard_read(read)
            return None

        try:
            return read.result()
        except UpstreamTransferError:
            raise
        except Exception as e:
            raise UpstreamTransferError(
                f"Source read failed: {e}", bytes_transferred=loaded
            ) from e

    async def _discard_read(self, read: asyncio.Future[bytes]) -> None:
        """Cancel an abandoned read and wait until the source has unwound."""
        if not read.done():
            read.cancel()
        await asyncio.wait({read})
        if not read.cancelled() and read.exception() is not None:
            logger.debug(f"Discarded source error after cancellation: {read.exception()}")

    async def _close_source(self, source: ByteSource, transfer_id: str) -> None:
        try:
            await source.aclose()
        except Exception as e:
            logger.warning(
                f"Failed to close source for transfer {transfer_id}: "
                f"{type(e).__name__}: {e}"
            )

    def _emit(self, on_progress: ProgressCallback, snapshot: TransferProgress) -> None:
        try:
            on_progress(snapshot)
        except Exception as e:
            logger.debug(f"Progress callback failed: {e}")

    def _record(self, status: TransferStatus, nbytes: int, duration: float) -> None:
        if not self._metrics:
            return
        labels = {"status": status.value}
        self._metrics.inc_counter(TRANSFERS_TOTAL, labels=labels)
        if nbytes:
            self._metrics.inc_counter(TRANSFER_BYTES_TOTAL, nbytes)
        self._metrics.observe_histogram(TRANSFER_DURATION_SECONDS, duration, labels=labels)


__all__ = [
    "SINK_CLOSED_REASON",
    "StreamTransferEngine",
    "TransferHandle",
    "TransferResult",
    "TransferStatus",
]
