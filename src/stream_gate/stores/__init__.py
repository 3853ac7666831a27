# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token stores for stream-gate.

This module provides the BaseTokenStore contract and its implementations.
RedisTokenStore is imported lazily so the memory store can be used without
touching the Redis client library.
"""

from typing import TYPE_CHECKING, Any

from .base import BaseTokenStore, HealthCheckResult
from .memory import MemoryTokenStore

if TYPE_CHECKING:
    from .redis import RedisTokenStore


def __getattr__(name: str) -> Any:
    if name == "RedisTokenStore":
        from .redis import RedisTokenStore

        return RedisTokenStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "BaseTokenStore",
    "HealthCheckResult",
    "MemoryTokenStore",
    "RedisTokenStore",
]
