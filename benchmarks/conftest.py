"""
Shared fixtures for benchmark tests.
"""

import pytest
from typing import AsyncIterator

from stream_gate.config import GateConfig, QuotaConfig, TransferConfig
from stream_gate.service import StreamGate
from stream_gate.stores.memory import MemoryTokenStore
from stream_gate.transfer.sources import IteratorSource
from stream_gate.types.tiers import SubscriptionTier, TierLimits
from stream_gate.types.token import ResourceDescriptor

CHUNK_SIZE = 64 * 1024


class BenchmarkOpener:
    """Opener serving a fixed number of in-memory chunks with no I/O."""

    def __init__(self, chunk_count: int = 16):
        self.chunk = b"x" * CHUNK_SIZE
        self.chunk_count = chunk_count
        self.size = CHUNK_SIZE * chunk_count

    async def open(self, resource: ResourceDescriptor) -> IteratorSource:
        async def body() -> AsyncIterator[bytes]:
            for _ in range(self.chunk_count):
                yield self.chunk

        return IteratorSource(body(), total=self.size)


@pytest.fixture
def benchmark_resource() -> ResourceDescriptor:
    return ResourceDescriptor(
        source_url="https://benchmark.test/video.mp4", format_id="bench"
    )


@pytest.fixture
def benchmark_config() -> GateConfig:
    """Configuration with limits high enough that no issuance is denied."""
    unlimited = TierLimits(max_per_hour=1_000_000, max_per_day=1_000_000, max_concurrent=1_000_000)
    return GateConfig(
        quota=QuotaConfig(
            day_timezone="UTC",
            tiers={SubscriptionTier.FREE: unlimited, SubscriptionTier.PRO: unlimited},
        ),
        transfer=TransferConfig(chunk_size=CHUNK_SIZE, progress_interval=0.0),
        metrics_enabled=False,
    )


@pytest.fixture
def benchmark_opener() -> BenchmarkOpener:
    return BenchmarkOpener()


@pytest.fixture
async def gate(benchmark_opener, benchmark_config):
    """Started gate over the in-memory store."""
    gate = StreamGate(MemoryTokenStore(namespace="bench"), benchmark_opener, benchmark_config)
    await gate.start()
    yield gate
    await gate.stop()

