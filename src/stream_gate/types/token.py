# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token record models.

StreamToken is the only persisted entity. It is immutable: stores hand back
new instances when they apply the claim, refresh or revoke transitions, and
nothing mutates a record in place.

Only ``used`` and ``expires_at`` are persisted state; the lifecycle tag is
derived from them by ``StreamToken.state``.
"""

import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TokenState(Enum):
    """
    Derived lifecycle state of a token.

    ACTIVE -> CONSUMED is the only transition that needs a write, and it is
    guarded by the store's atomic claim. ACTIVE -> EXPIRED is a pure function
    of time. Both CONSUMED and EXPIRED are terminal.
    """

    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class ResourceDescriptor(BaseModel):
    """What a token allows the holder to stream. Opaque to the gate."""

    model_config = ConfigDict(frozen=True)

    source_url: str = Field(min_length=1)
    format_id: str = Field(min_length=1)
    title: str | None = None


class ClientBinding(BaseModel):
    """Requester fingerprint captured at issuance."""

    model_config = ConfigDict(frozen=True)

    ip_address: str = "unknown"
    user_agent: str = "unknown"


class StreamToken(BaseModel):
    """
    A single-use stream token record.

    The raw secret is never part of this model; only its SHA-256 hex digest
    is stored. Timestamps are epoch seconds.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    owner_id: str
    secret_hash: str = Field(min_length=64, max_length=64)
    resource: ResourceDescriptor
    created_at: float
    expires_at: float
    used: bool = False
    used_at: float | None = None
    client_binding: ClientBinding | None = None
    access_count: int = 0
    last_access_at: float | None = None

    @model_validator(mode="after")
    def _validate_expiration(self) -> "StreamToken":
        """Validate that expires_at is after created_at."""
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        return self

    def state(self, now: float) -> TokenState:
        """Return the lifecycle state at ``now``."""
        if self.used:
            return TokenState.CONSUMED
        if now >= self.expires_at:
            return TokenState.EXPIRED
        return TokenState.ACTIVE

    def is_active(self, now: float) -> bool:
        return self.state(now) is TokenState.ACTIVE

    def claimed(self, now: float) -> "StreamToken":
        """Return the record as it looks after a successful claim."""
        return self.model_copy(
            update={
                "used": True,
                "used_at": now,
                "access_count": self.access_count + 1,
                "last_access_at": now,
            }
        )


__all__ = [
    "ClientBinding",
    "ResourceDescriptor",
    "StreamToken",
    "TokenState",
]
