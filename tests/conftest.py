"""Shared fixtures for the stream-gate test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from prometheus_client import CollectorRegistry

from stream_gate.config import GateConfig, QuotaConfig, TransferConfig
from stream_gate.observability.collector import MetricsCollector
from stream_gate.stores.memory import MemoryTokenStore
from stream_gate.transfer.sources import IteratorSource
from stream_gate.types.tiers import DEFAULT_TIER_LIMITS, SubscriptionTier, TierLimits
from stream_gate.types.token import ResourceDescriptor

# 2023-11-14 01:00:00 UTC
START_TIME = 1699923600.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def byte_chunks(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class StaticOpener:
    """SourceOpener that serves fixed chunks for every resource."""

    def __init__(self, chunks: list[bytes], content_type: str | None = "video/mp4"):
        self.chunks = chunks
        self.content_type = content_type
        self.opened: list[ResourceDescriptor] = []
        self.sources: list[IteratorSource] = []

    async def open(self, resource: ResourceDescriptor) -> IteratorSource:
        self.opened.append(resource)
        source = IteratorSource(
            byte_chunks(*self.chunks),
            total=sum(len(c) for c in self.chunks),
            content_type=self.content_type,
        )
        self.sources.append(source)
        return source


class ListSink:
    """ByteSink collecting chunks in memory."""

    def __init__(self) -> None:
        self.chunks: list[bytes] = []

    async def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resource() -> ResourceDescriptor:
    return ResourceDescriptor(
        source_url="https://cdn.example.com/video.mp4",
        format_id="mp4-720",
        title="Launch Keynote",
    )


@pytest.fixture
def store(clock: FakeClock) -> MemoryTokenStore:
    return MemoryTokenStore(namespace="test", clock=clock)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def quota_config() -> QuotaConfig:
    return QuotaConfig(day_timezone="UTC")


@pytest.fixture
def roomy_quota_config() -> QuotaConfig:
    """Daily and concurrency caps high enough to isolate the rolling window."""
    tiers = dict(DEFAULT_TIER_LIMITS)
    tiers[SubscriptionTier.FREE] = TierLimits(max_per_hour=20, max_per_day=100, max_concurrent=50)
    return QuotaConfig(day_timezone="UTC", tiers=tiers)


@pytest.fixture
def gate_config(quota_config: QuotaConfig) -> GateConfig:
    return GateConfig(
        quota=quota_config,
        transfer=TransferConfig(chunk_size=4, progress_interval=0.0),
    )


@pytest.fixture
def opener() -> StaticOpener:
    return StaticOpener([b"abcd", b"efgh", b"ijkl", b"mnop"])


@pytest.fixture
def sink() -> ListSink:
    return ListSink()
