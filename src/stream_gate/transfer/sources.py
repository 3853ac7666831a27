# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Byte sources and sinks for the transfer engine.

Resolving a resource into bytes is the job of an external collaborator;
the engine only sees the ``SourceOpener`` and ``ByteSource`` protocols.
``HTTPSourceOpener`` covers the common case of a resource whose
``source_url`` is directly fetchable.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol, cast, runtime_checkable

import httpx

from ..exceptions import UpstreamTransferError
from ..types.token import ResourceDescriptor
from .media import extension_for

logger = logging.getLogger(__name__)


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class ByteSource(Protocol):
    """An open upstream byte stream."""

    total: int | None
    """Size in bytes if the upstream reported one."""

    content_type: str | None
    extension: str | None

    async def read(self, size: int) -> bytes:
        """Return up to ``size`` bytes, or b"" at end of stream."""
        ...

    async def aclose(self) -> None:
        """Release the upstream handle. Must be idempotent."""
        ...


@runtime_checkable
class SourceOpener(Protocol):
    """Turns a resource descriptor into an open ByteSource."""

    async def open(self, resource: ResourceDescriptor) -> ByteSource: ...


@runtime_checkable
class ByteSink(Protocol):
    """Destination of a transfer. A raising write means the client is gone."""

    async def write(self, chunk: bytes) -> None: ...


# =============================================================================
# Sources
# =============================================================================


class IteratorSource:
    """
    ByteSource over an async iterator of byte chunks.

    Chunks larger than the requested read size are split; smaller chunks
    are returned as they arrive.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        total: int | None = None,
        content_type: str | None = None,
        extension: str | None = None,
    ):
        self._chunks = chunks
        self._buffer = b""
        self._exhausted = False
        self.closed = False
        self.total = total
        self.content_type = content_type
        self.extension = extension or extension_for(content_type)

    async def read(self, size: int) -> bytes:
        if self.closed:
            raise UpstreamTransferError("Source is closed")
        while not self._buffer and not self._exhausted:
            try:
                self._buffer = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
        chunk, self._buffer = self._buffer[:size], self._buffer[size:]
        return chunk

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()


class HTTPByteSource(IteratorSource):
    """ByteSource backed by a streamed httpx response."""

    def __init__(self, response: httpx.Response, chunk_size: int):
        length = response.headers.get("content-length")
        content_type = response.headers.get("content-type")
        super().__init__(
            response.aiter_bytes(chunk_size),
            total=int(length) if length and length.isdigit() else None,
            content_type=content_type,
        )
        self._response = response

    async def aclose(self) -> None:
        if self.closed:
            return
        await super().aclose()
        await self._response.aclose()


class HTTPSourceOpener:
    """
    Opens ``resource.source_url`` with an httpx streaming GET.

    Usage::

        opener = HTTPSourceOpener()
        try:
            engine = StreamTransferEngine(opener)
            ...
        finally:
            await opener.close()
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
    ):
        self._client = client
        self._owned_client = client is None
        self._timeout = timeout
        self._chunk_size = chunk_size

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def open(self, resource: ResourceDescriptor) -> HTTPByteSource:
        client = self._ensure_client()
        request = client.build_request("GET", resource.source_url)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamTransferError(f"Failed to open source: {e}") from e

        if response.is_error:
            await response.aclose()
            raise UpstreamTransferError(
                f"Source responded with HTTP {response.status_code}"
            )

        logger.debug(
            f"Opened source for format {resource.format_id} "
            f"(length={response.headers.get('content-length', 'unknown')})"
        )
        return HTTPByteSource(response, self._chunk_size)

    async def close(self) -> None:
        if self._client is not None and self._owned_client:
            await self._client.aclose()
        self._client = None


# =============================================================================
# Sinks
# =============================================================================


class SinkClosedError(Exception):
    """Raised by ChannelSink.write after the reader went away."""


_END = object()


class ChannelSink:
    """
    Bounded channel between a transfer task and a response body.

    The transfer writes chunks; the body iterates them. ``close`` ends the
    iteration after buffered chunks drain. ``abort`` is for the reading
    side: it discards buffered chunks and makes later writes fail, which
    the engine reports as a cancelled transfer.
    """

    def __init__(self, maxsize: int = 8):
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._aborted = False

    async def write(self, chunk: bytes) -> None:
        if self._aborted or self._closed:
            raise SinkClosedError("Sink is closed")
        await self._queue.put(chunk)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A full queue is drained by the reader, which then sees _closed
        if not self._queue.full():
            self._queue.put_nowait(_END)

    def abort(self) -> None:
        self._aborted = True
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while not self._aborted:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _END:
                return
            yield cast(bytes, item)


__all__ = [
    "ByteSink",
    "ByteSource",
    "ChannelSink",
    "HTTPByteSource",
    "HTTPSourceOpener",
    "IteratorSource",
    "SinkClosedError",
    "SourceOpener",
]
