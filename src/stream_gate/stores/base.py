# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Token Store for stream-gate

This module provides the BaseTokenStore abstract class that defines the
persistence contract for stream token records.

The only operation that matters for correctness is ``claim``: a single
atomic conditional update that flips ``used`` from false to true. Every
other operation is an ordinary read or a best-effort snapshot.
"""

import abc
import logging
from dataclasses import dataclass
from typing import Any

from ..types.results import TokenStatistics
from ..types.token import StreamToken

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """
    Structured health check result for store monitoring.

    Attributes:
        healthy: Whether the store is operational
        store_type: Type of store (e.g., 'redis', 'memory')
        namespace: Store namespace
        error: Error message if unhealthy
        metadata: Additional store-specific information
    """

    healthy: bool
    store_type: str
    namespace: str
    error: str | None = None
    metadata: dict[str, Any] | None = None


class BaseTokenStore(abc.ABC):
    """
    An abstract base class that defines the common interface for all token
    store implementations.

    Implementations must guarantee that ``claim`` is atomic across every
    process sharing the store: for a given secret hash, at most one call
    ever returns a record. Application-level locks in the caller are not
    a substitute.

    Timestamps are epoch seconds supplied by the caller so that a single
    clock governs issuance, validation and quota accounting.
    """

    def __init__(self, namespace: str = "stream_gate"):
        """
        Initialize the store with a namespace for isolation.

        Args:
            namespace: Namespace for isolating data across different instances
        """
        self.namespace = namespace

    # ==========================================================================
    # Token Lifecycle
    # ==========================================================================

    @abc.abstractmethod
    async def insert(self, token: StreamToken) -> None:
        """
        Durably write a new token record.

        Args:
            token: The record to write (``used`` is False)

        Raises:
            StoreOperationError: If the write fails. Callers must not hand
                out the secret in that case.
        """
        pass

    @abc.abstractmethod
    async def claim(self, secret_hash: str, now: float) -> StreamToken | None:
        """
        Atomically mark an unused token as used.

        Equivalent to "set used=true, used_at=now, access_count+=1,
        last_access_at=now where secret_hash = X and used = false".
        Expiry is not part of the condition; the caller checks it on the
        returned record.

        Args:
            secret_hash: SHA-256 hex digest of the presented secret
            now: Claim timestamp

        Returns:
            The record after the update, or None when no row matched
            (unknown hash, already used, or lost a concurrent race).
        """
        pass

    @abc.abstractmethod
    async def get(self, token_id: str) -> StreamToken | None:
        """
        Get a token record by id.

        Args:
            token_id: The record id

        Returns:
            The record if it exists, None otherwise
        """
        pass

    # ==========================================================================
    # Owner Queries
    # ==========================================================================

    @abc.abstractmethod
    async def count_issued_since(self, owner_id: str, since: float) -> int:
        """
        Count tokens created by an owner at or after ``since``.

        Consumed and expired tokens count too; this is issuance volume.
        """
        pass

    @abc.abstractmethod
    async def count_active(self, owner_id: str, now: float) -> int:
        """Count an owner's tokens that are unused and expire after ``now``."""
        pass

    @abc.abstractmethod
    async def list_active(self, owner_id: str, now: float) -> list[StreamToken]:
        """
        List an owner's active tokens, newest first.
        """
        pass

    # ==========================================================================
    # Owner-initiated Transitions
    # ==========================================================================

    @abc.abstractmethod
    async def extend_expiry(
        self, token_id: str, owner_id: str, expires_at: float, now: float
    ) -> StreamToken | None:
        """
        Move an active token's expiry to ``expires_at``.

        Conditional in the same way as ``claim``: applies only when the token
        belongs to ``owner_id``, is unused and has not expired at ``now``.

        Returns:
            The updated record, or None if the condition did not hold.
        """
        pass

    @abc.abstractmethod
    async def revoke(self, token_id: str, owner_id: str, now: float) -> bool:
        """
        Mark an active token as used without redeeming it.

        Returns:
            True if the token was active and is now consumed.
        """
        pass

    async def revoke_owner(self, owner_id: str, now: float) -> int:
        """
        Revoke every active token held by an owner.

        Returns:
            Number of tokens revoked.
        """
        revoked = 0
        for token in await self.list_active(owner_id, now):
            if await self.revoke(token.id, owner_id, now):
                revoked += 1
        return revoked

    # ==========================================================================
    # Health and Monitoring
    # ==========================================================================

    @abc.abstractmethod
    async def get_statistics(self, now: float) -> TokenStatistics:
        """Aggregate counts across all stored tokens."""
        pass

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Perform a health check on the store."""
        pass

    @abc.abstractmethod
    async def cleanup(self) -> None:
        """Release store resources (connections, background tasks)."""
        pass


__all__ = [
    "BaseTokenStore",
    "HealthCheckResult",
]
