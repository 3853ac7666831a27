# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token and stream endpoints.

- ``POST   /token``                 issue a token
- ``GET    /stream/{token}``        redeem a token and stream the resource
- ``GET    /tokens``                list the caller's active tokens
- ``POST   /token/{token_id}/refresh``
- ``DELETE /token/{token_id}``
- ``DELETE /tokens``                revoke every active token of the caller
"""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator
from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, Response
from fastapi.responses import StreamingResponse

from ..service import StreamGate
from ..transfer.engine import TransferHandle
from ..transfer.media import build_filename, content_type_for
from ..transfer.sources import ChannelSink
from ..types.results import ClientInfo
from ..types.tiers import Identity
from ..types.token import ResourceDescriptor
from .dependencies import get_client_info, get_gate, require_identity
from .schemas import (
    ActiveTokenResponse,
    RefreshRequest,
    RevokeResponse,
    TokenListResponse,
    TokenRequest,
    TokenResponse,
    to_utc,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])

CLIENT_GONE_REASON = "client disconnected"

GateDep = Annotated[StreamGate, Depends(get_gate)]
IdentityDep = Annotated[Identity, Depends(require_identity)]
ClientDep = Annotated[ClientInfo, Depends(get_client_info)]


# =============================================================================
# Helpers
# =============================================================================


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "ignore").decode("ascii") or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


async def _relay_body(sink: ChannelSink, handle: TransferHandle) -> AsyncIterator[bytes]:
    try:
        async for chunk in sink:
            yield chunk
    finally:
        if not handle.done():
            handle.cancel(CLIENT_GONE_REASON)
            sink.abort()


# =============================================================================
# Routes
# =============================================================================


@router.post("/token")
async def create_token(
    identity: IdentityDep,
    gate: GateDep,
    client: ClientDep,
    body: TokenRequest,
    response: Response,
) -> TokenResponse:
    """Issue a single-use stream token for the caller."""
    resource = ResourceDescriptor(
        source_url=body.source_url, format_id=body.format_id, title=body.title
    )
    issued = await gate.issue(identity, resource, ttl=body.ttl_seconds, client=client)

    quota = issued.quota
    if quota is not None:
        response.headers["X-RateLimit-Limit"] = str(quota.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, quota.tokens_remaining - 1))
        response.headers["X-RateLimit-Reset"] = str(math.ceil(quota.reset_time))

    return TokenResponse(
        token=issued.secret,
        token_id=issued.token_id,
        expires_at=to_utc(issued.expires_at),
        stream_url=issued.resource_handle,
    )


@router.get("/stream/{token}")
async def stream_resource(token: str, gate: GateDep, client: ClientDep) -> StreamingResponse:
    """
    Redeem a token and stream its resource.

    The token is consumed and the source opened before the response
    starts, so both failures still produce a JSON error. Anything that
    goes wrong later can only end the body early.
    """
    claim = await gate.open_stream(token, client)
    source = await gate.engine.open_source(claim)

    sink = ChannelSink()
    handle = gate.engine.start(claim, sink, source=source)
    handle.add_done_callback(lambda _handle: sink.close())

    extension = source.extension
    headers = {
        "Content-Disposition": _content_disposition(
            build_filename(claim.resource.title, extension)
        ),
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    if source.total is not None:
        headers["Content-Length"] = str(source.total)

    logger.debug(f"Streaming token {claim.token_id} (transfer={handle.transfer_id})")

    return StreamingResponse(
        _relay_body(sink, handle),
        media_type=source.content_type or content_type_for(extension),
        headers=headers,
    )


@router.get("/tokens")
async def list_tokens(identity: IdentityDep, gate: GateDep) -> TokenListResponse:
    tokens = await gate.list_active_tokens(identity)
    return TokenListResponse(
        tokens=[ActiveTokenResponse.from_token(t) for t in tokens],
        count=len(tokens),
    )


@router.post("/token/{token_id}/refresh")
async def refresh_token(
    token_id: str,
    identity: IdentityDep,
    gate: GateDep,
    body: Annotated[RefreshRequest | None, Body()] = None,
) -> ActiveTokenResponse:
    """Extend an active token's expiry."""
    ttl = body.ttl_seconds if body else None
    token = await gate.refresh(identity, token_id, ttl=ttl)
    return ActiveTokenResponse.from_token(token)


@router.delete("/token/{token_id}")
async def revoke_token(token_id: str, identity: IdentityDep, gate: GateDep) -> RevokeResponse:
    await gate.revoke(identity, token_id)
    return RevokeResponse(revoked=1)


@router.delete("/tokens")
async def revoke_all_tokens(identity: IdentityDep, gate: GateDep) -> RevokeResponse:
    revoked = await gate.revoke_all(identity)
    return RevokeResponse(revoked=revoked)


__all__ = ["router"]
