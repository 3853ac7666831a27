# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Concurrency guard.

Limits how many unused, unexpired tokens an owner may hold at once. A
token stops counting the moment it is claimed, revoked or expires, so
capacity returns without any explicit release call.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..config import QuotaConfig
from ..types.results import ConcurrencyDecision
from ..types.tiers import SubscriptionTier

if TYPE_CHECKING:
    from ..stores.base import BaseTokenStore

logger = logging.getLogger(__name__)


class ConcurrencyGuard:
    """Caps the number of simultaneously active tokens per owner."""

    def __init__(
        self,
        store: BaseTokenStore,
        config: QuotaConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._config = config or QuotaConfig()
        self._clock = clock

    async def check(self, owner_id: str, tier: SubscriptionTier) -> ConcurrencyDecision:
        """
        Check whether ``owner_id`` may hold another active token.

        Returns:
            ConcurrencyDecision; denied when active_count >= max_concurrent
        """
        max_concurrent = self._config.limits_for(tier).max_concurrent
        active = await self._store.count_active(owner_id, self._clock())

        if active >= max_concurrent:
            logger.warning(
                f"Concurrency denied for {owner_id}: {active}/{max_concurrent} active"
            )
            return ConcurrencyDecision(
                allowed=False,
                active_count=active,
                max_concurrent=max_concurrent,
                reason=f"Maximum of {max_concurrent} active tokens reached",
            )

        return ConcurrencyDecision(
            allowed=True,
            active_count=active,
            max_concurrent=max_concurrent,
        )


__all__ = ["ConcurrencyGuard"]
