# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Subscription tiers and the limits they carry.

A tier parameterizes every issuance gate: the rolling-window cap, the
calendar-day cap, and the cap on simultaneously active tokens.
"""

from dataclasses import dataclass
from enum import Enum

from ..exceptions import ConfigurationError


class SubscriptionTier(str, Enum):
    """
    Subscription classification handed in by the identity provider.

    - FREE: Low daily allowance and two concurrent tokens.
    - PRO: Ten times the daily allowance and five concurrent tokens.
    """

    FREE = "free"
    PRO = "pro"


@dataclass(frozen=True)
class TierLimits:
    """
    Issuance limits for one subscription tier.

    Attributes:
        max_per_hour: Tokens allowed within the trailing rolling window
        max_per_day: Tokens allowed since local midnight
        max_concurrent: Tokens allowed to be active at the same time
    """

    max_per_hour: int = 20
    max_per_day: int = 10
    max_concurrent: int = 2

    def __post_init__(self) -> None:
        """Validate limits after initialization."""
        for name in ("max_per_hour", "max_per_day", "max_concurrent"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")


DEFAULT_TIER_LIMITS: dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(max_per_hour=20, max_per_day=10, max_concurrent=2),
    SubscriptionTier.PRO: TierLimits(max_per_hour=20, max_per_day=100, max_concurrent=5),
}


@dataclass(frozen=True)
class Identity:
    """
    Authenticated caller, as produced by the external identity provider.

    Attributes:
        owner_id: Stable user identifier
        tier: The user's subscription tier
    """

    owner_id: str
    tier: SubscriptionTier = SubscriptionTier.FREE


__all__ = [
    "DEFAULT_TIER_LIMITS",
    "Identity",
    "SubscriptionTier",
    "TierLimits",
]
