# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the stream-gate library.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from StreamGateError, making it easy to catch
all gate-related exceptions with a single except clause.

Every exception carries a machine-readable ``code`` and the HTTP
``status_code`` the API layer answers with, so callers outside HTTP can
still branch on the same categories.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable error codes surfaced to callers."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CONCURRENCY_EXCEEDED = "CONCURRENCY_EXCEEDED"
    TOKEN_MISSING = "TOKEN_MISSING"
    TOKEN_INVALID_FORMAT = "TOKEN_INVALID_FORMAT"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_BINDING_MISMATCH = "TOKEN_BINDING_MISMATCH"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    UPSTREAM_TRANSFER_ERROR = "UPSTREAM_TRANSFER_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class StreamGateError(Exception):
    """Base exception for all stream-gate errors.

    This is the root exception class for the library. Catch this exception
    to handle any error originating from token issuance, validation or
    transfer.

    Attributes:
        message: Human-readable description.
        code: Machine-readable ErrorCode.
        status_code: HTTP status the API layer maps this error to.

    Example:
        try:
            issued = await gate.issue(identity, resource)
        except StreamGateError as e:
            logger.error(f"Issuance failed [{e.code.value}]: {e}")
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    @property
    def public_code(self) -> ErrorCode:
        """The code shown to external callers."""
        return self.code

    @property
    def public_message(self) -> str:
        """The message shown to external callers."""
        return self.message


class RequestValidationError(StreamGateError):
    """Raised when a request is malformed.

    Covers an empty resource descriptor, a non-positive TTL override and
    similar shape errors detected before any guard runs.
    """

    code = ErrorCode.VALIDATION_FAILED
    status_code = 400


class AuthenticationError(StreamGateError):
    """Raised when no authenticated identity accompanies an issuance request.

    Unauthenticated callers are rejected before quota or concurrency
    checks run, so they never consume a user's allowance.
    """

    code = ErrorCode.AUTH_REQUIRED
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class QuotaExceededError(StreamGateError):
    """Raised when a user has exhausted an issuance quota.

    Both the calendar-day cap and the rolling-window cap raise this error;
    ``limit_type`` says which one denied the request.

    Attributes:
        limit_type: "daily" or "hourly".
        limit: The cap that was hit.
        reset_time: Epoch seconds when issuance becomes possible again.
        retry_after: Whole seconds to wait before retrying (always > 0).

    Example:
        try:
            await gate.issue(identity, resource)
        except QuotaExceededError as e:
            response.headers["Retry-After"] = str(e.retry_after)
    """

    code = ErrorCode.QUOTA_EXCEEDED
    status_code = 429

    def __init__(
        self,
        message: str,
        limit_type: str,
        limit: int,
        reset_time: float,
        retry_after: int,
    ):
        super().__init__(message)
        self.limit_type = limit_type
        self.limit = limit
        self.reset_time = reset_time
        self.retry_after = retry_after


class ConcurrencyExceededError(StreamGateError):
    """Raised when a user already holds the maximum number of active tokens.

    Attributes:
        max_concurrent: The tier's cap on simultaneously active tokens.
        active_count: How many active tokens the user held at check time.
    """

    code = ErrorCode.CONCURRENCY_EXCEEDED
    status_code = 429

    def __init__(self, message: str, max_concurrent: int, active_count: int):
        super().__init__(message)
        self.max_concurrent = max_concurrent
        self.active_count = active_count


class TokenInvalidError(StreamGateError):
    """Raised when a presented secret cannot be redeemed.

    Internally the code distinguishes missing, malformed, unknown/used,
    expired and binding-mismatched secrets. Externally the last three
    collapse into TOKEN_INVALID so callers cannot probe token state.

    Example:
        try:
            claim = await validator.validate_and_consume(secret)
        except TokenInvalidError as e:
            logger.info(f"Rejected stream request: {e.code.value}")
    """

    code = ErrorCode.TOKEN_INVALID
    status_code = 401

    _UNDIFFERENTIATED = frozenset(
        {
            ErrorCode.TOKEN_INVALID,
            ErrorCode.TOKEN_EXPIRED,
            ErrorCode.TOKEN_BINDING_MISMATCH,
        }
    )

    def __init__(self, code: ErrorCode, message: str | None = None):
        super().__init__(message or _TOKEN_MESSAGES[code], code)
        if code in (ErrorCode.TOKEN_MISSING, ErrorCode.TOKEN_INVALID_FORMAT):
            self.status_code = 400

    @property
    def public_code(self) -> ErrorCode:
        if self.code in self._UNDIFFERENTIATED:
            return ErrorCode.TOKEN_INVALID
        return self.code

    @property
    def public_message(self) -> str:
        return _TOKEN_MESSAGES[self.public_code]


_TOKEN_MESSAGES = {
    ErrorCode.TOKEN_MISSING: "Stream token is required",
    ErrorCode.TOKEN_INVALID_FORMAT: "Invalid token format",
    ErrorCode.TOKEN_INVALID: "Invalid, expired or already used token",
    ErrorCode.TOKEN_EXPIRED: "Token has expired",
    ErrorCode.TOKEN_BINDING_MISMATCH: "Token was issued to a different client",
}


class TokenNotFoundError(StreamGateError):
    """Raised when refresh or revoke targets a token the caller cannot act on.

    Covers unknown ids, tokens owned by someone else, and tokens that are
    no longer active.
    """

    code = ErrorCode.TOKEN_NOT_FOUND
    status_code = 404

    def __init__(self, token_id: str):
        super().__init__(f"Token not found or not active: {token_id}")
        self.token_id = token_id


class UpstreamTransferError(StreamGateError):
    """Raised when reading the underlying byte source fails.

    The token stays consumed; the client recovers by requesting a new
    token, which re-enters the quota and concurrency gates.

    Attributes:
        bytes_transferred: Bytes relayed before the failure.
    """

    code = ErrorCode.UPSTREAM_TRANSFER_ERROR
    status_code = 502

    def __init__(self, message: str, bytes_transferred: int = 0):
        super().__init__(message)
        self.bytes_transferred = bytes_transferred


class InternalError(StreamGateError):
    """Raised for unexpected faults.

    Detail is logged internally; callers only ever see an opaque message.
    """

    code = ErrorCode.INTERNAL_ERROR
    status_code = 500

    @property
    def public_message(self) -> str:
        return "Internal server error"


class StoreConnectionError(InternalError):
    """Raised when the token store cannot be reached.

    Example:
        try:
            await store.insert(token)
        except StoreConnectionError:
            logger.warning("Token store unavailable")
            raise
    """

    pass


class StoreOperationError(InternalError):
    """Raised when a token store operation fails after connecting.

    Issuance surfaces this unchanged: a failed write never yields a
    half-issued token.
    """

    pass


class ConfigurationError(StreamGateError, ValueError):
    """Raised when configuration is invalid.

    Also a ValueError, so callers validating plain values can catch either.

    Common causes include:
    - Non-positive TTLs or chunk sizes
    - A minimum TTL above the maximum TTL
    - Tier limits below 1

    Example:
        try:
            config = TokenConfig(min_ttl=600, max_ttl=60)
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise SystemExit(1)
    """

    code = ErrorCode.CONFIGURATION_ERROR
    status_code = 500


__all__ = [
    "AuthenticationError",
    "ConcurrencyExceededError",
    "ConfigurationError",
    "ErrorCode",
    "InternalError",
    "QuotaExceededError",
    "RequestValidationError",
    "StoreConnectionError",
    "StoreOperationError",
    "StreamGateError",
    "TokenInvalidError",
    "TokenNotFoundError",
    "UpstreamTransferError",
]
