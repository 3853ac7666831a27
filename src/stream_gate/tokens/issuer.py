# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token issuance.

TokenIssuer creates one token record per call and returns the raw secret
exactly once. It does not evaluate quotas; StreamGate runs the guards
before calling it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..config import TokenConfig
from ..exceptions import StoreOperationError, StreamGateError
from ..observability.constants import STORE_ERRORS_TOTAL
from ..types.results import ClientInfo, IssuedToken
from ..types.token import ResourceDescriptor, StreamToken
from .codec import generate_secret, hash_secret

if TYPE_CHECKING:
    from ..observability.collector import MetricsCollector
    from ..stores.base import BaseTokenStore

logger = logging.getLogger(__name__)


class TokenIssuer:
    """
    Creates stream tokens.

    The secret is generated here, hashed, and only the hash is written to
    the store. A failed write propagates as an issuance failure and no
    secret leaves this method.

    Example:
        >>> issuer = TokenIssuer(MemoryTokenStore())
        >>> issued = await issuer.issue("user-1", resource, ttl=600)
        >>> issued.resource_handle
        '/stream/3f2a...'
    """

    def __init__(
        self,
        store: BaseTokenStore,
        config: TokenConfig | None = None,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._config = config or TokenConfig()
        self._clock = clock
        self._metrics = metrics

    async def issue(
        self,
        owner_id: str,
        resource: ResourceDescriptor,
        ttl: float | None = None,
        client: ClientInfo | None = None,
    ) -> IssuedToken:
        """
        Issue a new token.

        Args:
            owner_id: Authenticated owner of the token
            resource: What the token allows streaming
            ttl: Requested lifetime in seconds, clamped to [min_ttl, max_ttl]
            client: Requester metadata recorded when client binding is on

        Returns:
            IssuedToken carrying the raw secret

        Raises:
            StoreOperationError: If the store write fails
        """
        now = self._clock()
        lifetime = self._config.clamp_ttl(ttl)
        secret = generate_secret()

        token = StreamToken(
            owner_id=owner_id,
            secret_hash=hash_secret(secret),
            resource=resource,
            created_at=now,
            expires_at=now + lifetime,
            client_binding=(
                client.to_binding() if client and self._config.bind_client else None
            ),
        )

        try:
            await self._store.insert(token)
        except StreamGateError:
            self._record_store_error()
            raise
        except Exception as e:
            self._record_store_error()
            logger.exception(f"Unexpected store failure issuing token {token.id}")
            raise StoreOperationError("Failed to persist stream token") from e

        logger.debug(
            f"Issued token {token.id} for owner {owner_id} "
            f"(hash={token.secret_hash[:8]}, ttl={lifetime:.0f}s)"
        )

        return IssuedToken(
            secret=secret,
            token_id=token.id,
            expires_at=token.expires_at,
            resource_handle=f"{self._config.stream_path_prefix}/{secret}",
        )

    def _record_store_error(self) -> None:
        if self._metrics:
            self._metrics.inc_counter(STORE_ERRORS_TOTAL, labels={"operation": "insert"})


__all__ = ["TokenIssuer"]
