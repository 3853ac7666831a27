# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Issuance guards: quota caps, concurrency caps and the denial cache.
"""

from .cache import DenialCache
from .concurrency import ConcurrencyGuard
from .quota import LIMIT_DAILY, LIMIT_HOURLY, QuotaGuard

__all__ = [
    "LIMIT_DAILY",
    "LIMIT_HOURLY",
    "ConcurrencyGuard",
    "DenialCache",
    "QuotaGuard",
]
