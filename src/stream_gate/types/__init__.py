# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Type definitions for stream-gate.

This module exports the token record, tier limits and the result types
returned by guards, the issuer and the validator.
"""

from .results import (
    Claim,
    ClientInfo,
    ConcurrencyDecision,
    IssuedToken,
    QuotaDecision,
    TokenStatistics,
)
from .tiers import DEFAULT_TIER_LIMITS, Identity, SubscriptionTier, TierLimits
from .token import ClientBinding, ResourceDescriptor, StreamToken, TokenState

__all__ = [
    "DEFAULT_TIER_LIMITS",
    "Claim",
    "ClientBinding",
    "ClientInfo",
    "ConcurrencyDecision",
    "Identity",
    "IssuedToken",
    "QuotaDecision",
    "ResourceDescriptor",
    "StreamToken",
    "SubscriptionTier",
    "TierLimits",
    "TokenState",
    "TokenStatistics",
]
