# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
HTTP surface for stream-gate, built on FastAPI.

Example:
    >>> gate = StreamGate(MemoryTokenStore(), HTTPSourceOpener())
    >>> app = create_app(gate, identity_resolver=resolve_identity)
"""

from .app import create_app, error_response
from .dependencies import IdentityResolver, get_client_info, get_gate, require_identity
from .routes import router

__all__ = [
    "IdentityResolver",
    "create_app",
    "error_response",
    "get_client_info",
    "get_gate",
    "require_identity",
    "router",
]
