import asyncio

import pytest

from stream_gate.config import TransferConfig
from stream_gate.exceptions import UpstreamTransferError
from stream_gate.observability.constants import (
    ACTIVE_TRANSFERS,
    TRANSFER_BYTES_TOTAL,
    TRANSFERS_TOTAL,
)
from stream_gate.transfer.cancel import CancelSignal
from stream_gate.transfer.engine import (
    SINK_CLOSED_REASON,
    StreamTransferEngine,
    TransferStatus,
)
from stream_gate.transfer.sources import IteratorSource
from stream_gate.transfer.tracker import TransferTracker
from stream_gate.types.results import Claim


class BlockingSource:
    """Source whose reads never complete until released."""

    def __init__(self, first: bytes = b""):
        self.total = None
        self.content_type = None
        self.extension = None
        self.pending = [first] if first else []
        self.release = asyncio.Event()
        self.read_cancelled = False
        self.closed = False

    async def read(self, size: int) -> bytes:
        if self.pending:
            return self.pending.pop()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.read_cancelled = True
            raise
        return b""

    async def aclose(self) -> None:
        self.closed = True


class CancellingSink:
    """Sink that fires a cancel signal after a number of writes."""

    def __init__(self, cancel: CancelSignal, after: int):
        self.cancel = cancel
        self.after = after
        self.chunks: list[bytes] = []

    async def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)
        if len(self.chunks) == self.after:
            self.cancel.cancel("user requested")


class FailingSink:
    def __init__(self, fail_on: int):
        self.fail_on = fail_on
        self.writes = 0

    async def write(self, chunk: bytes) -> None:
        self.writes += 1
        if self.writes == self.fail_on:
            raise ConnectionResetError("client went away")


async def failing_chunks():
    yield b"abcd"
    raise RuntimeError("upstream reset")


@pytest.fixture
def claim(resource):
    return Claim(token_id="tok-1", owner_id="user-1", resource=resource, claimed_at=1000.0)


@pytest.fixture
def config():
    return TransferConfig(chunk_size=4, progress_interval=0.0)


@pytest.fixture
def tracker():
    return TransferTracker()


@pytest.fixture
def engine(opener, config, tracker, metrics):
    return StreamTransferEngine(opener, config, tracker=tracker, metrics=metrics)


class TestTransferOutcomes:
    @pytest.mark.asyncio
    async def test_completes(self, engine, opener, claim, sink, metrics):
        result = await engine.transfer(claim, sink)

        assert result.status == TransferStatus.COMPLETED
        assert result.completed
        assert result.bytes_transferred == 16
        assert result.total == 16
        assert sink.data == b"abcdefghijklmnop"
        assert opener.opened == [claim.resource]
        assert opener.sources[0].closed
        assert metrics.get_counter(TRANSFERS_TOTAL, {"status": "completed"}) == 1
        assert metrics.get_counter(TRANSFER_BYTES_TOTAL) == 16
        assert metrics.get_metrics()["gauges"][ACTIVE_TRANSFERS][""] == 0

    @pytest.mark.asyncio
    async def test_cancel_midway_stops_writes(self, engine, opener, claim):
        cancel = CancelSignal()
        sink = CancellingSink(cancel, after=2)

        result = await engine.transfer(claim, sink, cancel=cancel)

        assert result.status == TransferStatus.CANCELLED
        assert result.cancel_reason == "user requested"
        assert result.bytes_transferred == 8
        assert b"".join(sink.chunks) == b"abcdefgh"
        assert opener.sources[0].closed

    @pytest.mark.asyncio
    async def test_cancel_interrupts_blocked_read(self, engine, claim, sink):
        source = BlockingSource(first=b"abcd")
        handle = engine.start(claim, sink, source=source)

        await asyncio.sleep(0.01)
        handle.cancel("stop")
        result = await asyncio.wait_for(handle.wait(), timeout=1)

        assert result.status == TransferStatus.CANCELLED
        assert result.cancel_reason == "stop"
        assert result.bytes_transferred == 4
        assert source.read_cancelled
        assert source.closed

    @pytest.mark.asyncio
    async def test_source_failure(self, config, claim, sink, metrics):
        engine = StreamTransferEngine(object(), config, metrics=metrics)
        source = IteratorSource(failing_chunks(), total=100)

        result = await engine.transfer(claim, sink, source=source)

        assert result.status == TransferStatus.FAILED
        assert isinstance(result.error, UpstreamTransferError)
        assert result.error.bytes_transferred == 4
        assert result.bytes_transferred == 4
        assert source.closed
        assert metrics.get_counter(TRANSFERS_TOTAL, {"status": "failed"}) == 1

    @pytest.mark.asyncio
    async def test_open_failure(self, config, claim, sink):
        class BrokenOpener:
            async def open(self, resource):
                raise OSError("dns failure")

        engine = StreamTransferEngine(BrokenOpener(), config)

        with pytest.raises(UpstreamTransferError, match="dns failure"):
            await engine.open_source(claim)

        result = await engine.transfer(claim, sink)
        assert result.status == TransferStatus.FAILED
        assert result.bytes_transferred == 0

    @pytest.mark.asyncio
    async def test_sink_failure_is_cancellation(self, engine, opener, claim):
        sink = FailingSink(fail_on=2)

        result = await engine.transfer(claim, sink)

        assert result.status == TransferStatus.CANCELLED
        assert result.cancel_reason == SINK_CLOSED_REASON
        assert result.bytes_transferred == 4
        assert opener.sources[0].closed

    @pytest.mark.asyncio
    async def test_timeout(self, claim, sink):
        engine = StreamTransferEngine(object(), TransferConfig(chunk_size=4, timeout=0.05))
        source = BlockingSource()

        result = await engine.transfer(claim, sink, source=source)

        assert result.status == TransferStatus.FAILED
        assert "timed out" in str(result.error)
        assert source.closed

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, engine, claim, sink, tracker):
        source = BlockingSource()
        handle = engine.start(claim, sink, source=source)
        await asyncio.sleep(0.01)
        assert tracker.active_count == 1

        handle._task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handle.wait()

        assert source.closed
        assert tracker.active_count == 0


class TestProgressAndTracking:
    @pytest.mark.asyncio
    async def test_progress_callback(self, engine, claim, sink):
        events = []

        await engine.transfer(claim, sink, on_progress=events.append)

        assert [e.loaded for e in events if not e.final] == [4, 8, 12, 16]
        assert events[-1].final
        assert events[-1].loaded == 16
        assert events[-1].percentage == 100.0

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_transfer(self, engine, claim, sink):
        def explode(_event):
            raise ValueError("bad listener")

        result = await engine.transfer(claim, sink, on_progress=explode)
        assert result.completed

    @pytest.mark.asyncio
    async def test_handle_progress_stream(self, engine, claim, sink):
        handle = engine.start(claim, sink)

        events = [event async for event in handle.progress()]
        result = await handle.wait()

        assert events[-1].final
        assert events[-1].loaded == result.bytes_transferred == 16
        assert handle.done()

    @pytest.mark.asyncio
    async def test_done_callback(self, engine, claim, sink):
        done = asyncio.Event()
        handle = engine.start(claim, sink)
        handle.add_done_callback(lambda h: done.set())

        await asyncio.wait_for(done.wait(), timeout=1)
        assert (await handle.wait()).completed

    @pytest.mark.asyncio
    async def test_registered_while_running(self, engine, claim, sink, tracker):
        source = BlockingSource(first=b"abcd")
        handle = engine.start(claim, sink, source=source)
        await asyncio.sleep(0.01)

        entry = tracker.get(handle.transfer_id)
        assert entry is not None
        assert entry.owner_id == "user-1"
        assert entry.token_id == "tok-1"
        assert entry.bytes_transferred == 4

        source.release.set()
        await handle.wait()
        assert tracker.get(handle.transfer_id) is None

    @pytest.mark.asyncio
    async def test_owner_cancellation_through_tracker(self, engine, claim, sink, tracker):
        source = BlockingSource()
        handle = engine.start(claim, sink, source=source)
        await asyncio.sleep(0.01)

        assert await tracker.cancel_owner("user-1", "tokens revoked") == 1
        result = await asyncio.wait_for(handle.wait(), timeout=1)

        assert result.status == TransferStatus.CANCELLED
        assert result.cancel_reason == "tokens revoked"
