# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Issuance quota guard.

Two independent caps, both derived from stored token counts:

- Calendar-day cap: tokens created since local midnight vs ``max_per_day``.
- Rolling-window cap: tokens created in the trailing window vs
  ``max_per_hour``.

Counting is a snapshot read that is not atomic with the issuer's write.
Two requests from the same user racing at the cap boundary can both pass,
so the effective cap may be exceeded by a small margin. Issuance is not
serialized per user to close that gap.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from ..config import QuotaConfig
from ..observability.constants import DENIAL_CACHE_HITS_TOTAL
from ..types.results import QuotaDecision
from ..types.tiers import SubscriptionTier

if TYPE_CHECKING:
    from ..observability.collector import MetricsCollector
    from ..stores.base import BaseTokenStore
    from .cache import DenialCache

logger = logging.getLogger(__name__)

LIMIT_DAILY = "daily"
LIMIT_HOURLY = "hourly"


class QuotaGuard:
    """
    Evaluates calendar-day and rolling-window issuance caps.

    The daily cap is checked first; when it denies, the rolling window is
    not queried.
    """

    def __init__(
        self,
        store: BaseTokenStore,
        config: QuotaConfig | None = None,
        clock: Callable[[], float] = time.time,
        denial_cache: DenialCache | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._config = config or QuotaConfig()
        self._clock = clock
        self._cache = denial_cache
        self._metrics = metrics
        self._zone = ZoneInfo(self._config.day_timezone) if self._config.day_timezone else None

    def day_bounds(self, now: float) -> tuple[float, float]:
        """Return (start, end) of the calendar day containing ``now``."""
        if self._zone is not None:
            current = datetime.fromtimestamp(now, self._zone)
        else:
            current = datetime.fromtimestamp(now)
        start = current.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        return start.timestamp(), end.timestamp()

    async def check(self, owner_id: str, tier: SubscriptionTier) -> QuotaDecision:
        """
        Check whether ``owner_id`` may be issued another token.

        Args:
            owner_id: Authenticated owner
            tier: The owner's subscription tier

        Returns:
            QuotaDecision; when denied it carries reset_time and a positive
            retry_after
        """
        now = self._clock()

        if self._cache is not None:
            cached = self._cache.get(owner_id, now, tier)
            if cached is not None:
                if self._metrics:
                    self._metrics.inc_counter(DENIAL_CACHE_HITS_TOTAL)
                logger.debug(f"Quota denial for {owner_id} served from cache")
                return cached

        limits = self._config.limits_for(tier)

        day_start, day_end = self.day_bounds(now)
        used_today = await self._store.count_issued_since(owner_id, day_start)
        if used_today >= limits.max_per_day:
            decision = QuotaDecision(
                allowed=False,
                limit_type=LIMIT_DAILY,
                limit=limits.max_per_day,
                tokens_used=used_today,
                tokens_remaining=0,
                reset_time=day_end,
                retry_after=max(1, math.ceil(day_end - now)),
                reason=f"Daily limit of {limits.max_per_day} tokens reached",
            )
            return self._deny(owner_id, tier, decision, now)

        window = self._config.window_seconds
        used_in_window = await self._store.count_issued_since(owner_id, now - window)
        reset_time = now + window
        if used_in_window >= limits.max_per_hour:
            decision = QuotaDecision(
                allowed=False,
                limit_type=LIMIT_HOURLY,
                limit=limits.max_per_hour,
                tokens_used=used_in_window,
                tokens_remaining=0,
                reset_time=reset_time,
                retry_after=max(1, math.ceil(reset_time - now)),
                reason=(
                    f"Rate limit of {limits.max_per_hour} tokens "
                    f"per {window / 3600:g}h reached"
                ),
            )
            return self._deny(owner_id, tier, decision, now)

        return QuotaDecision(
            allowed=True,
            limit_type=LIMIT_HOURLY,
            limit=limits.max_per_hour,
            tokens_used=used_in_window,
            tokens_remaining=max(0, limits.max_per_hour - used_in_window),
            reset_time=reset_time,
        )

    def _deny(
        self, owner_id: str, tier: SubscriptionTier, decision: QuotaDecision, now: float
    ) -> QuotaDecision:
        logger.warning(
            f"Quota denied for {owner_id}: {decision.limit_type} "
            f"{decision.tokens_used}/{decision.limit}, retry in {decision.retry_after}s"
        )
        if self._cache is not None:
            self._cache.put(owner_id, decision, now, tier)
        return decision


__all__ = ["LIMIT_DAILY", "LIMIT_HOURLY", "QuotaGuard"]
