# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token validation and single-use consumption.

Each check is a fast-reject gate in front of the next:

1. Presence and format, with no store access
2. Atomic claim on the secret hash
3. Expiry of the claimed record
4. Optional strict client binding

Steps 3 and 4 run after the claim, so a secret rejected there is already
consumed and stays consumed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..config import TokenConfig
from ..exceptions import ErrorCode, StoreOperationError, StreamGateError, TokenInvalidError
from ..observability.constants import STORE_ERRORS_TOTAL, TOKEN_VALIDATIONS_TOTAL
from ..types.results import Claim, ClientInfo
from .codec import hash_secret, is_valid_secret_format

if TYPE_CHECKING:
    from ..observability.collector import MetricsCollector
    from ..stores.base import BaseTokenStore

logger = logging.getLogger(__name__)


class TokenValidator:
    """
    Redeems presented secrets.

    Exactly-once consumption rests entirely on the store's atomic claim.
    The validator holds no locks and keeps no state between calls.
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

    async def validate_and_consume(
        self, secret: str | None, client: ClientInfo | None = None
    ) -> Claim:
        """
        Validate a secret and consume its token.

        Args:
            secret: The raw secret as presented
            client: Presenting client's metadata, used for strict binding

        Returns:
            A Claim for the transfer engine

        Raises:
            TokenInvalidError: With code TOKEN_MISSING, TOKEN_INVALID_FORMAT,
                TOKEN_INVALID, TOKEN_EXPIRED or TOKEN_BINDING_MISMATCH
            StoreOperationError / StoreConnectionError: If the store fails
        """
        if not secret:
            raise self._reject(ErrorCode.TOKEN_MISSING)
        if not is_valid_secret_format(secret):
            raise self._reject(ErrorCode.TOKEN_INVALID_FORMAT)

        now = self._clock()
        secret_hash = hash_secret(secret)

        try:
            token = await self._store.claim(secret_hash, now)
        except StreamGateError:
            self._record(STORE_ERRORS_TOTAL, "operation", "claim")
            raise
        except Exception as e:
            self._record(STORE_ERRORS_TOTAL, "operation", "claim")
            logger.exception(f"Unexpected store failure claiming hash {secret_hash[:8]}")
            raise StoreOperationError("Failed to claim stream token") from e

        if token is None:
            raise self._reject(ErrorCode.TOKEN_INVALID, secret_hash)

        if token.expires_at <= now:
            raise self._reject(ErrorCode.TOKEN_EXPIRED, secret_hash)

        if self._config.strict_binding and token.client_binding is not None:
            presented = client or ClientInfo()
            if not presented.matches(token.client_binding):
                raise self._reject(ErrorCode.TOKEN_BINDING_MISMATCH, secret_hash)

        self._record(TOKEN_VALIDATIONS_TOTAL, "outcome", "claimed")
        logger.debug(f"Claimed token {token.id} for owner {token.owner_id}")

        return Claim(
            token_id=token.id,
            owner_id=token.owner_id,
            resource=token.resource,
            claimed_at=now,
        )

    def _reject(
        self, code: ErrorCode, secret_hash: str | None = None
    ) -> TokenInvalidError:
        self._record(TOKEN_VALIDATIONS_TOTAL, "outcome", code.value.lower())
        if secret_hash:
            logger.info(f"Rejected token hash={secret_hash[:8]}: {code.value}")
        else:
            logger.debug(f"Rejected malformed stream request: {code.value}")
        return TokenInvalidError(code)

    def _record(self, name: str, label: str, value: str) -> None:
        if self._metrics:
            self._metrics.inc_counter(name, labels={label: value})


__all__ = ["TokenValidator"]
