# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for stream-gate.

This module provides configuration classes for token lifetimes, issuance
quotas, the streaming transfer engine and the facade that ties them
together. Values are validated in ``__post_init__``.
"""

from dataclasses import dataclass, field
from zoneinfo import ZoneInfo

from .exceptions import ConfigurationError
from .types.tiers import DEFAULT_TIER_LIMITS, SubscriptionTier, TierLimits


@dataclass
class TokenConfig:
    """
    Configuration for token issuance and validation.
    """

    default_ttl: float = 1800.0
    """TTL in seconds applied when the caller does not request one (30 minutes)."""

    min_ttl: float = 60.0
    """Lower clamp for requested TTLs in seconds."""

    max_ttl: float = 21600.0
    """Upper clamp for requested TTLs in seconds (6 hours)."""

    bind_client: bool = True
    """Record the requester's IP and user agent on the token at issuance."""

    strict_binding: bool = False
    """Reject redemption from a client that differs from the recorded binding."""

    stream_path_prefix: str = "/stream"
    """Prefix of the resource handle returned with an issued token."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.min_ttl <= 0:
            raise ConfigurationError("min_ttl must be positive")
        if self.max_ttl < self.min_ttl:
            raise ConfigurationError("max_ttl must be >= min_ttl")
        if not self.min_ttl <= self.default_ttl <= self.max_ttl:
            raise ConfigurationError("default_ttl must be between min_ttl and max_ttl")

    def clamp_ttl(self, ttl: float | None) -> float:
        """Clamp a requested TTL into [min_ttl, max_ttl]."""
        if ttl is None:
            return self.default_ttl
        return min(max(ttl, self.min_ttl), self.max_ttl)


@dataclass
class QuotaConfig:
    """
    Configuration for issuance quotas.
    """

    window_seconds: float = 3600.0
    """Length of the trailing rolling window."""

    day_timezone: str | None = None
    """IANA zone that defines "midnight" for the daily cap. None uses host local time."""

    tiers: dict[SubscriptionTier, TierLimits] = field(
        default_factory=lambda: dict(DEFAULT_TIER_LIMITS)
    )
    """Limits keyed by subscription tier."""

    enable_denial_cache: bool = False
    """Remember quota denials in-process to skip store reads (non-authoritative)."""

    denial_cache_sweep_interval: float = 60.0
    """Seconds between sweeps of expired denial cache entries."""

    denial_cache_max_entries: int = 10000
    """Upper bound on cached denials; the earliest-expiring entries are evicted first."""

    denial_cache_ttl: float = 30.0
    """Longest time a cached denial is trusted before the store is asked again."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.window_seconds <= 0:
            raise ConfigurationError("window_seconds must be positive")
        if self.denial_cache_sweep_interval <= 0:
            raise ConfigurationError("denial_cache_sweep_interval must be positive")
        if self.denial_cache_max_entries < 1:
            raise ConfigurationError("denial_cache_max_entries must be at least 1")
        if self.denial_cache_ttl <= 0:
            raise ConfigurationError("denial_cache_ttl must be positive")
        missing = [t.value for t in SubscriptionTier if t not in self.tiers]
        if missing:
            raise ConfigurationError(f"tiers missing limits for: {', '.join(missing)}")
        if self.day_timezone is not None:
            try:
                ZoneInfo(self.day_timezone)
            except (KeyError, ValueError) as e:
                raise ConfigurationError(
                    f"unknown day_timezone: {self.day_timezone}"
                ) from e

    def limits_for(self, tier: SubscriptionTier) -> TierLimits:
        return self.tiers[tier]


@dataclass
class TransferConfig:
    """
    Configuration for the streaming transfer engine.
    """

    chunk_size: int = 64 * 1024
    """Maximum bytes read from the source per iteration."""

    progress_interval: float = 0.5
    """Minimum seconds between progress events (the final event is always sent)."""

    timeout: float = 1800.0
    """Overall transfer deadline in seconds."""

    idle_timeout: float = 300.0
    """Seconds without a chunk before the tracker cancels a transfer."""

    sweep_interval: float = 60.0
    """Seconds between idle-transfer sweeps."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.chunk_size < 1:
            raise ConfigurationError("chunk_size must be at least 1")
        if self.progress_interval < 0:
            raise ConfigurationError("progress_interval must be non-negative")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        if self.idle_timeout <= 0:
            raise ConfigurationError("idle_timeout must be positive")
        if self.sweep_interval <= 0:
            raise ConfigurationError("sweep_interval must be positive")


@dataclass
class GateConfig:
    """
    Top-level configuration for the StreamGate facade.
    """

    tokens: TokenConfig = field(default_factory=TokenConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)

    metrics_enabled: bool = True
    """Enable metrics collection."""


__all__ = [
    "GateConfig",
    "QuotaConfig",
    "TokenConfig",
    "TransferConfig",
]
