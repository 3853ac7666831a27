# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
StreamGate service facade.

Wires the store, guards, issuer, validator and transfer engine together
and owns their background tasks. Issuance runs:

    identity check -> QuotaGuard -> ConcurrencyGuard -> TokenIssuer

Redemption runs:

    TokenValidator -> StreamTransferEngine
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from typing_extensions import Self

from .config import GateConfig
from .exceptions import (
    AuthenticationError,
    ConcurrencyExceededError,
    QuotaExceededError,
    RequestValidationError,
    TokenNotFoundError,
)
from .guards.cache import DenialCache
from .guards.concurrency import ConcurrencyGuard
from .guards.quota import QuotaGuard
from .observability.collector import MetricsCollector, get_metrics_collector
from .observability.constants import ISSUANCE_DENIALS_TOTAL, TOKENS_ISSUED_TOTAL
from .tokens.issuer import TokenIssuer
from .tokens.validator import TokenValidator
from .transfer.engine import StreamTransferEngine, TransferResult
from .transfer.tracker import TransferTracker
from .types.token import ResourceDescriptor

if TYPE_CHECKING:
    from .stores.base import BaseTokenStore, HealthCheckResult
    from .transfer.cancel import CancelSignal
    from .transfer.engine import ProgressCallback
    from .transfer.sources import ByteSink, SourceOpener
    from .types.results import Claim, ClientInfo, IssuedToken, TokenStatistics
    from .types.tiers import Identity
    from .types.token import StreamToken

logger = logging.getLogger(__name__)

REVOKED_CANCEL_REASON = "tokens revoked"


class StreamGate:
    """
    Entry point for issuing, redeeming and managing stream tokens.

    Example:
        >>> gate = StreamGate(MemoryTokenStore(), HTTPSourceOpener())
        >>> async with gate:
        ...     issued = await gate.issue(identity, resource, client=client)
        ...     result = await gate.stream(issued.secret, sink, client=client)
    """

    def __init__(
        self,
        store: BaseTokenStore,
        opener: SourceOpener,
        config: GateConfig | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the facade.

        Args:
            store: Token persistence
            opener: Resolves a resource descriptor into a byte source
            config: Gate configuration (defaults apply when omitted)
            metrics: Collector to record into; the process-wide collector is
                used when omitted and metrics are enabled
            clock: Epoch-seconds clock shared by issuance, validation and quotas
        """
        self.config = config or GateConfig()
        self.store = store
        self._clock = clock

        if metrics is None and self.config.metrics_enabled:
            metrics = get_metrics_collector()
        self.metrics = metrics

        quota = self.config.quota
        self.denial_cache: DenialCache | None = None
        if quota.enable_denial_cache:
            self.denial_cache = DenialCache(
                ttl=quota.denial_cache_ttl,
                sweep_interval=quota.denial_cache_sweep_interval,
                max_entries=quota.denial_cache_max_entries,
                clock=clock,
            )

        self.quota_guard = QuotaGuard(
            store, quota, clock=clock, denial_cache=self.denial_cache, metrics=metrics
        )
        self.concurrency_guard = ConcurrencyGuard(store, quota, clock=clock)
        self.issuer = TokenIssuer(store, self.config.tokens, clock=clock, metrics=metrics)
        self.validator = TokenValidator(
            store, self.config.tokens, clock=clock, metrics=metrics
        )

        transfer = self.config.transfer
        self.tracker = TransferTracker(
            cleanup_interval=transfer.sweep_interval,
            idle_timeout=transfer.idle_timeout,
            metrics=metrics,
        )
        self.engine = StreamTransferEngine(
            opener, transfer, tracker=self.tracker, metrics=metrics
        )

        self._running = False

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def start(self) -> None:
        """Start background sweeps (store retention, denial cache, idle transfers)."""
        if self._running:
            return
        self._running = True

        store_start = getattr(self.store, "start", None)
        if store_start is not None:
            await store_start()
        if self.denial_cache is not None:
            await self.denial_cache.start()
        await self.tracker.start_cleanup()

        logger.info(f"StreamGate started (store={type(self.store).__name__})")

    async def stop(self) -> None:
        """Stop background sweeps. Stored tokens are left in place."""
        if not self._running:
            return
        self._running = False

        await self.tracker.stop_cleanup()
        if self.denial_cache is not None:
            await self.denial_cache.stop()
        store_stop = getattr(self.store, "stop", None)
        if store_stop is not None:
            await store_stop()

        logger.info("StreamGate stopped")

    def is_running(self) -> bool:
        return self._running

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.stop()

    # ==========================================================================
    # Issuance
    # ==========================================================================

    async def issue(
        self,
        identity: Identity | None,
        resource: ResourceDescriptor | Mapping[str, Any],
        ttl: float | None = None,
        client: ClientInfo | None = None,
    ) -> IssuedToken:
        """
        Issue a single-use stream token.

        Args:
            identity: Authenticated caller, or None
            resource: What the token allows streaming
            ttl: Requested lifetime in seconds, clamped to [min_ttl, max_ttl]
            client: Requester metadata for client binding

        Returns:
            IssuedToken with the raw secret and the admitting quota decision

        Raises:
            AuthenticationError: If identity is missing
            RequestValidationError: If the resource is malformed
            QuotaExceededError: If a daily or rolling-window cap is reached
            ConcurrencyExceededError: If too many tokens are already active
        """
        identity = self._require_identity(identity)
        descriptor = self._coerce_resource(resource)

        tier = identity.tier
        decision = await self.quota_guard.check(identity.owner_id, tier)
        if not decision.allowed:
            self._record_denial(tier.value, decision.limit_type)
            raise QuotaExceededError(
                decision.reason or "Quota exceeded",
                limit_type=decision.limit_type,
                limit=decision.limit,
                reset_time=decision.reset_time,
                retry_after=decision.retry_after,
            )

        concurrency = await self.concurrency_guard.check(identity.owner_id, tier)
        if not concurrency.allowed:
            self._record_denial(tier.value, "concurrency")
            raise ConcurrencyExceededError(
                concurrency.reason or "Too many active tokens",
                max_concurrent=concurrency.max_concurrent,
                active_count=concurrency.active_count,
            )

        issued = await self.issuer.issue(identity.owner_id, descriptor, ttl=ttl, client=client)

        if self.metrics:
            self.metrics.inc_counter(TOKENS_ISSUED_TOTAL, labels={"tier": tier.value})
        logger.info(f"Issued token {issued.token_id} to {identity.owner_id} ({tier.value})")

        return replace(issued, quota=decision)

    # ==========================================================================
    # Redemption
    # ==========================================================================

    async def open_stream(self, secret: str | None, client: ClientInfo | None = None) -> Claim:
        """Validate and consume a secret. See TokenValidator.validate_and_consume."""
        return await self.validator.validate_and_consume(secret, client)

    async def stream(
        self,
        secret: str | None,
        sink: ByteSink,
        client: ClientInfo | None = None,
        cancel: CancelSignal | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Consume a secret and relay its resource into ``sink``."""
        claim = await self.open_stream(secret, client)
        return await self.engine.transfer(claim, sink, cancel=cancel, on_progress=on_progress)

    # ==========================================================================
    # Token Management
    # ==========================================================================

    async def list_active_tokens(self, identity: Identity | None) -> list[StreamToken]:
        identity = self._require_identity(identity)
        return await self.store.list_active(identity.owner_id, self._clock())

    async def refresh(
        self, identity: Identity | None, token_id: str, ttl: float | None = None
    ) -> StreamToken:
        """
        Push an active token's expiry to now + ttl.

        Raises:
            TokenNotFoundError: If the token is unknown, not owned by the
                caller, already consumed or already expired
        """
        identity = self._require_identity(identity)
        now = self._clock()
        expires_at = now + self.config.tokens.clamp_ttl(ttl)
        updated = await self.store.extend_expiry(token_id, identity.owner_id, expires_at, now)
        if updated is None:
            raise TokenNotFoundError(token_id)

        logger.debug(f"Refreshed token {token_id} until {expires_at:.0f}")
        return updated

    async def revoke(self, identity: Identity | None, token_id: str) -> None:
        """
        Consume an active token without redeeming it.

        Raises:
            TokenNotFoundError: If the token is not an active token of the caller
        """
        identity = self._require_identity(identity)
        if not await self.store.revoke(token_id, identity.owner_id, self._clock()):
            raise TokenNotFoundError(token_id)
        logger.info(f"Revoked token {token_id} for {identity.owner_id}")

    async def revoke_all(self, identity: Identity | None, cancel_transfers: bool = False) -> int:
        """
        Revoke every active token of the caller.

        Args:
            identity: Authenticated caller
            cancel_transfers: Also signal cancellation to the caller's
                in-flight transfers

        Returns:
            Number of tokens revoked
        """
        identity = self._require_identity(identity)
        revoked = await self.store.revoke_owner(identity.owner_id, self._clock())
        if cancel_transfers:
            await self.tracker.cancel_owner(identity.owner_id, REVOKED_CANCEL_REASON)
        if self.denial_cache is not None:
            self.denial_cache.invalidate(identity.owner_id)
        logger.info(f"Revoked {revoked} tokens for {identity.owner_id}")
        return revoked

    # ==========================================================================
    # Health and Monitoring
    # ==========================================================================

    async def statistics(self) -> TokenStatistics:
        return await self.store.get_statistics(self._clock())

    async def health_check(self) -> HealthCheckResult:
        return await self.store.health_check()

    def get_metrics(self) -> dict[str, Any]:
        """Metrics snapshot plus live transfer counts."""
        snapshot = self.metrics.get_metrics() if self.metrics else {}
        snapshot["transfers"] = self.tracker.get_stats()
        return snapshot

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @staticmethod
    def _require_identity(identity: Identity | None) -> Identity:
        if identity is None or not identity.owner_id:
            raise AuthenticationError()
        return identity

    @staticmethod
    def _coerce_resource(resource: ResourceDescriptor | Mapping[str, Any]) -> ResourceDescriptor:
        if isinstance(resource, ResourceDescriptor):
            return resource
        try:
            return ResourceDescriptor.model_validate(dict(resource))
        except (ValidationError, TypeError, ValueError) as e:
            raise RequestValidationError(f"Invalid resource: {e}") from e

    def _record_denial(self, tier: str, reason: str) -> None:
        if self.metrics:
            self.metrics.inc_counter(
                ISSUANCE_DENIALS_TOTAL, labels={"tier": tier, "reason": reason}
            )


__all__ = ["REVOKED_CANCEL_REASON", "StreamGate"]
