# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Result types for issuance gates, issuance and validation.

These are plain dataclasses; they are never persisted.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from .token import ClientBinding, ResourceDescriptor


@dataclass
class QuotaDecision:
    """
    Result of checking a user's issuance quotas.

    Attributes:
        allowed: Whether issuance may proceed
        reason: Human-readable reason when denied
        limit_type: "daily" or "hourly" for the cap that decided the outcome
        limit: The cap that decided the outcome
        tokens_used: Tokens counted against that cap
        tokens_remaining: max(0, limit - tokens_used)
        reset_time: Epoch seconds at which the cap frees up
        retry_after: Whole seconds until reset_time (0 when allowed)
    """

    allowed: bool
    limit_type: str
    limit: int
    tokens_used: int
    tokens_remaining: int
    reset_time: float
    retry_after: int = 0
    reason: str | None = None


@dataclass
class ConcurrencyDecision:
    """
    Result of checking a user's active token count.

    Attributes:
        allowed: Whether issuance may proceed
        active_count: Active tokens held at check time
        max_concurrent: The tier cap
        reason: Human-readable reason when denied
    """

    allowed: bool
    active_count: int
    max_concurrent: int
    reason: str | None = None


@dataclass(frozen=True)
class ClientInfo:
    """Client metadata presented with a request."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"

    @classmethod
    def from_headers(
        cls, headers: Mapping[str, str], remote_addr: str | None = None
    ) -> "ClientInfo":
        """
        Extract client metadata from request headers.

        The first X-Forwarded-For hop wins, then X-Real-IP, then the socket
        peer address. Header lookups are case-insensitive.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        forwarded = lowered.get("x-forwarded-for", "")
        ip = forwarded.split(",")[0].strip() if forwarded else ""
        if not ip:
            ip = lowered.get("x-real-ip", "").strip()
        if not ip:
            ip = remote_addr or "unknown"
        return cls(ip_address=ip, user_agent=lowered.get("user-agent") or "unknown")

    def to_binding(self) -> ClientBinding:
        return ClientBinding(ip_address=self.ip_address, user_agent=self.user_agent)

    def matches(self, binding: ClientBinding) -> bool:
        return (
            self.ip_address == binding.ip_address
            and self.user_agent == binding.user_agent
        )


@dataclass(frozen=True)
class IssuedToken:
    """
    Issuance result. The only place the raw secret ever appears.

    Attributes:
        secret: 64-character lowercase hex secret
        token_id: Record id, usable for refresh and revoke
        expires_at: Absolute expiry in epoch seconds
        resource_handle: Relative path that redeems the secret
        quota: Quota decision that admitted the request, when issued
            through StreamGate
    """

    secret: str
    token_id: str
    expires_at: float
    resource_handle: str
    quota: QuotaDecision | None = field(default=None, compare=False)

    def __repr__(self) -> str:
        return (
            f"IssuedToken(token_id={self.token_id!r}, "
            f"expires_at={self.expires_at!r}, secret=<redacted>)"
        )


@dataclass(frozen=True)
class Claim:
    """
    Capability produced by a successful validation.

    Carries no further authorization: holding a Claim means the token has
    already been consumed.
    """

    token_id: str
    owner_id: str
    resource: ResourceDescriptor
    claimed_at: float


@dataclass
class TokenStatistics:
    """Aggregate token counts across all owners."""

    total_active: int = 0
    total_expired: int = 0
    total_consumed: int = 0
    average_access_count: float = 0.0


__all__ = [
    "Claim",
    "ClientInfo",
    "ConcurrencyDecision",
    "IssuedToken",
    "QuotaDecision",
    "TokenStatistics",
]
