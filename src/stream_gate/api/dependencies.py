# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
FastAPI dependency helpers.

Usage in a route::

    @router.get("/tokens")
    async def list_tokens(
        identity: Annotated[Identity, Depends(require_identity)],
        gate: Annotated[StreamGate, Depends(get_gate)],
    ) -> ...:
        ...
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Annotated, Union

from fastapi import Depends, Request

from ..exceptions import AuthenticationError, InternalError
from ..service import StreamGate
from ..types.results import ClientInfo
from ..types.tiers import Identity

IdentityResolver = Callable[[Request], Union[Identity, None, Awaitable[Union[Identity, None]]]]
"""Maps a request to the authenticated caller, or None. May be sync or async."""


def get_gate(request: Request) -> StreamGate:
    """Retrieve the StreamGate stored on ``app.state.gate``."""
    gate: StreamGate | None = getattr(request.app.state, "gate", None)
    if gate is None:
        raise InternalError("StreamGate is not configured on this application")
    return gate


async def get_identity(request: Request) -> Identity | None:
    """Resolve the caller with ``app.state.identity_resolver``."""
    resolver: IdentityResolver | None = getattr(
        request.app.state, "identity_resolver", None
    )
    if resolver is None:
        return None
    identity = resolver(request)
    if inspect.isawaitable(identity):
        identity = await identity
    return identity


def require_identity(
    identity: Annotated[Identity | None, Depends(get_identity)],
) -> Identity:
    """
    Dependency that requires an authenticated caller.

    Runs before request body validation, so unauthenticated calls are
    rejected with 401 whatever they send.
    """
    if identity is None:
        raise AuthenticationError()
    return identity


def get_client_info(request: Request) -> ClientInfo:
    remote = request.client.host if request.client else None
    return ClientInfo.from_headers(request.headers, remote)


__all__ = [
    "IdentityResolver",
    "get_client_info",
    "get_gate",
    "get_identity",
    "require_identity",
]
