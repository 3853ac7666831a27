# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Streaming transfer: engine, progress accounting, cancellation and tracking.
"""

from .cancel import CancelSignal
from .engine import (
    SINK_CLOSED_REASON,
    StreamTransferEngine,
    TransferHandle,
    TransferResult,
    TransferStatus,
)
from .media import build_filename, content_type_for, extension_for, sanitize_filename
from .progress import ProgressTracker, TransferProgress
from .sources import (
    ByteSink,
    ByteSource,
    ChannelSink,
    HTTPByteSource,
    HTTPSourceOpener,
    IteratorSource,
    SinkClosedError,
    SourceOpener,
)
from .tracker import IDLE_CANCEL_REASON, TransferEntry, TransferTracker

__all__ = [
    "IDLE_CANCEL_REASON",
    "SINK_CLOSED_REASON",
    "ByteSink",
    "ByteSource",
    "CancelSignal",
    "ChannelSink",
    "HTTPByteSource",
    "HTTPSourceOpener",
    "IteratorSource",
    "ProgressTracker",
    "SinkClosedError",
    "SourceOpener",
    "StreamTransferEngine",
    "TransferEntry",
    "TransferHandle",
    "TransferProgress",
    "TransferResult",
    "TransferStatus",
    "TransferTracker",
    "build_filename",
    "content_type_for",
    "extension_for",
    "sanitize_filename",
]
