# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""stream-gate - Single-use stream tokens with quota gates and cancellable transfers.

This library issues time-bound, single-use tokens that authorize one pull
of a large binary resource, gates issuance on per-user quota and
concurrency limits, and relays the resource with progress accounting and
cooperative cancellation.

Key Features:
    - Secrets are returned once and only their SHA-256 hash is stored
    - Exactly-once consumption through the store's atomic claim
    - Calendar-day and rolling-window quotas per subscription tier
    - Per-user cap on simultaneously active tokens
    - Streaming transfer engine with progress events, idle sweep and timeout
    - Memory and Redis token stores
    - FastAPI router with structured error bodies

Quick Start:
    >>> from stream_gate import Identity, MemoryTokenStore, StreamGate
    >>> from stream_gate.transfer import HTTPSourceOpener
    >>>
    >>> gate = StreamGate(MemoryTokenStore(), HTTPSourceOpener())
    >>> async with gate:
    ...     issued = await gate.issue(Identity("user-1"), {
    ...         "source_url": "https://cdn.example.com/v.mp4",
    ...         "format_id": "mp4-720",
    ...     })
    ...     result = await gate.stream(issued.secret, sink)

Main Exports:
    - StreamGate: Service facade
    - MemoryTokenStore, RedisTokenStore: Token stores
    - GateConfig, TokenConfig, QuotaConfig, TransferConfig: Configuration
    - StreamTransferEngine, CancelSignal, TransferProgress: Transfers

Note: the HTTP surface lives in ``stream_gate.api`` and is not imported here.

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING, Any

from .config import GateConfig, QuotaConfig, TokenConfig, TransferConfig
from .exceptions import (
    AuthenticationError,
    ConcurrencyExceededError,
    ConfigurationError,
    ErrorCode,
    InternalError,
    QuotaExceededError,
    RequestValidationError,
    StoreConnectionError,
    StoreOperationError,
    StreamGateError,
    TokenInvalidError,
    TokenNotFoundError,
    UpstreamTransferError,
)
from .guards import ConcurrencyGuard, DenialCache, QuotaGuard
from .service import StreamGate
from .stores import BaseTokenStore, HealthCheckResult, MemoryTokenStore
from .tokens import TokenIssuer, TokenValidator
from .transfer import (
    CancelSignal,
    StreamTransferEngine,
    TransferProgress,
    TransferResult,
    TransferStatus,
)
from .types import (
    Claim,
    ClientInfo,
    Identity,
    IssuedToken,
    ResourceDescriptor,
    StreamToken,
    SubscriptionTier,
    TierLimits,
    TokenState,
)

# Lazy import for the redis store
if TYPE_CHECKING:
    from .stores import RedisTokenStore


def __getattr__(name: str) -> Any:
    if name == "RedisTokenStore":
        from .stores import RedisTokenStore

        return RedisTokenStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AuthenticationError",
    "BaseTokenStore",
    "CancelSignal",
    "Claim",
    "ClientInfo",
    "ConcurrencyExceededError",
    "ConcurrencyGuard",
    "ConfigurationError",
    "DenialCache",
    "ErrorCode",
    "GateConfig",
    "HealthCheckResult",
    "Identity",
    "InternalError",
    "IssuedToken",
    "MemoryTokenStore",
    "QuotaConfig",
    "QuotaExceededError",
    "QuotaGuard",
    "RedisTokenStore",
    "RequestValidationError",
    "ResourceDescriptor",
    "StoreConnectionError",
    "StoreOperationError",
    "StreamGate",
    "StreamGateError",
    "StreamToken",
    "StreamTransferEngine",
    "SubscriptionTier",
    "TierLimits",
    "TokenConfig",
    "TokenInvalidError",
    "TokenIssuer",
    "TokenNotFoundError",
    "TokenState",
    "TokenValidator",
    "TransferConfig",
    "TransferProgress",
    "TransferResult",
    "TransferStatus",
    "UpstreamTransferError",
    "__version__",
]
