# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError as FastAPIValidationError
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest
from starlette.responses import Response

from .. import __version__
from ..exceptions import (
    ConcurrencyExceededError,
    ErrorCode,
    InternalError,
    QuotaExceededError,
    StreamGateError,
)
from ..tokens.codec import SECRET_LENGTH, hash_secret
from .routes import router
from .schemas import ErrorResponse, to_utc

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from ..service import StreamGate
    from .dependencies import IdentityResolver

logger = logging.getLogger(__name__)

_SECRET_SEGMENT = re.compile(rf"(?<=/)[0-9a-fA-F]{{{SECRET_LENGTH}}}(?=/|$)")


def loggable_path(request: Request) -> str:
    """
    Request path safe to log.

    Matched requests report their route template (``/stream/{token}``);
    anything else has secret-shaped segments replaced by a hash prefix.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return template
    return _SECRET_SEGMENT.sub(
        lambda m: f"<{hash_secret(m.group().lower())[:8]}>", request.url.path
    )


def error_response(exc: StreamGateError) -> JSONResponse:
    """Render a StreamGateError as ``{"code", "message"}`` plus retry hints."""
    body = ErrorResponse(code=exc.public_code.value, message=exc.public_message)
    headers: dict[str, str] = {}

    if isinstance(exc, QuotaExceededError):
        body.retry_after = exc.retry_after
        body.reset_time = to_utc(exc.reset_time)
        headers["Retry-After"] = str(exc.retry_after)
        headers["X-RateLimit-Limit"] = str(exc.limit)
        headers["X-RateLimit-Remaining"] = "0"
        headers["X-RateLimit-Reset"] = str(int(exc.reset_time))
    elif isinstance(exc, ConcurrencyExceededError):
        body.max_tokens = exc.max_concurrent

    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers or None,
    )


def create_app(
    gate: StreamGate,
    identity_resolver: IdentityResolver | None = None,
    *,
    manage_lifecycle: bool = True,
    **fastapi_kwargs: Any,
) -> FastAPI:
    """
    Build the FastAPI application around a StreamGate.

    Args:
        gate: The service facade the routes call into
        identity_resolver: Maps a request to the authenticated Identity or
            None. Without one every authenticated route answers 401.
        manage_lifecycle: Start and stop the gate's background tasks with
            the application lifespan
        **fastapi_kwargs: Passed through to FastAPI()
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await gate.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await gate.stop()

    fastapi_kwargs.setdefault("title", "stream-gate")
    fastapi_kwargs.setdefault("version", __version__)
    app = FastAPI(lifespan=_lifespan, **fastapi_kwargs)

    app.state.gate = gate
    app.state.identity_resolver = identity_resolver

    # -- Error handlers --
    @app.exception_handler(StreamGateError)
    async def _gate_error_handler(request: Request, exc: StreamGateError) -> JSONResponse:
        if isinstance(exc, InternalError):
            logger.error(f"{request.method} {loggable_path(request)} failed: {exc.message}")
        return error_response(exc)

    @app.exception_handler(FastAPIValidationError)
    async def _validation_error_handler(
        request: Request, exc: FastAPIValidationError
    ) -> JSONResponse:
        fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
        return JSONResponse(
            status_code=400,
            content={
                "code": ErrorCode.VALIDATION_FAILED.value,
                "message": f"Invalid request: {fields}" if fields else "Invalid request",
            },
        )

    @app.exception_handler(Exception)
    async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {loggable_path(request)}")
        return error_response(InternalError(str(exc)))

    # -- Base routes --
    @app.get("/health", tags=["base"])
    async def health() -> JSONResponse:
        result = await gate.health_check()
        return JSONResponse(
            status_code=200 if result.healthy else 503,
            content={
                "status": "ok" if result.healthy else "unavailable",
                "store": result.store_type,
                "transfers": gate.tracker.active_count,
            },
        )

    @app.get("/metrics", tags=["base"], include_in_schema=False)
    async def metrics_endpoint() -> Response:
        """Prometheus metrics endpoint."""
        registry = gate.metrics.registry if gate.metrics else None
        body = generate_latest(registry) if registry else generate_latest()
        return Response(
            content=body,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    app.include_router(router)

    return app


__all__ = ["create_app", "error_response"]
