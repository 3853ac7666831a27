# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request and response bodies for the HTTP surface.

These are API-layer shapes only; the service works with the types in
``stream_gate.types``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from ..types.token import StreamToken

# =============================================================================
# Requests
# =============================================================================


class TokenRequest(BaseModel):
    """Body of ``POST /token``."""

    source_url: str = Field(min_length=1)
    format_id: str = Field(min_length=1)
    title: str | None = None
    ttl_seconds: float | None = Field(default=None, gt=0)


class RefreshRequest(BaseModel):
    ttl_seconds: float | None = Field(default=None, gt=0)


# =============================================================================
# Responses
# =============================================================================


class TokenResponse(BaseModel):
    """The raw token appears here and nowhere else."""

    token: str
    token_id: str
    expires_at: datetime
    stream_url: str


class ActiveTokenResponse(BaseModel):
    token_id: str
    source_url: str
    format_id: str
    title: str | None = None
    created_at: datetime
    expires_at: datetime
    access_count: int

    @classmethod
    def from_token(cls, token: StreamToken) -> ActiveTokenResponse:
        return cls(
            token_id=token.id,
            source_url=token.resource.source_url,
            format_id=token.resource.format_id,
            title=token.resource.title,
            created_at=to_utc(token.created_at),
            expires_at=to_utc(token.expires_at),
            access_count=token.access_count,
        )


class TokenListResponse(BaseModel):
    tokens: list[ActiveTokenResponse]
    count: int


class RevokeResponse(BaseModel):
    revoked: int


class ErrorResponse(BaseModel):
    """Standard error body: ``{"code": "...", "message": "..."}`` plus retry hints."""

    code: str
    message: str
    retry_after: int | None = None
    reset_time: datetime | None = None
    max_tokens: int | None = None


def to_utc(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


__all__ = [
    "ActiveTokenResponse",
    "ErrorResponse",
    "RefreshRequest",
    "RevokeResponse",
    "TokenListResponse",
    "TokenRequest",
    "TokenResponse",
    "to_utc",
]
