import pytest

from stream_gate.exceptions import (
    AuthenticationError,
    ConcurrencyExceededError,
    ConfigurationError,
    ErrorCode,
    InternalError,
    QuotaExceededError,
    RequestValidationError,
    StoreConnectionError,
    StoreOperationError,
    StreamGateError,
    TokenInvalidError,
    TokenNotFoundError,
    UpstreamTransferError,
)


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            RequestValidationError("bad"),
            AuthenticationError(),
            QuotaExceededError("q", "daily", 10, 0.0, 1),
            ConcurrencyExceededError("c", 2, 2),
            TokenInvalidError(ErrorCode.TOKEN_INVALID),
            TokenNotFoundError("abc"),
            UpstreamTransferError("boom"),
            InternalError("oops"),
            StoreConnectionError("down"),
            StoreOperationError("failed"),
            ConfigurationError("wrong"),
        ],
    )
    def test_all_inherit_from_base(self, exc):
        assert isinstance(exc, StreamGateError)

    def test_store_errors_are_internal(self):
        assert issubclass(StoreConnectionError, InternalError)
        assert issubclass(StoreOperationError, InternalError)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            raise ConfigurationError("invalid")


class TestStatusCodes:
    @pytest.mark.parametrize(
        ("exc", "status", "code"),
        [
            (RequestValidationError("bad"), 400, ErrorCode.VALIDATION_FAILED),
            (AuthenticationError(), 401, ErrorCode.AUTH_REQUIRED),
            (QuotaExceededError("q", "hourly", 20, 0.0, 5), 429, ErrorCode.QUOTA_EXCEEDED),
            (ConcurrencyExceededError("c", 2, 2), 429, ErrorCode.CONCURRENCY_EXCEEDED),
            (TokenNotFoundError("abc"), 404, ErrorCode.TOKEN_NOT_FOUND),
            (UpstreamTransferError("boom"), 502, ErrorCode.UPSTREAM_TRANSFER_ERROR),
            (InternalError("oops"), 500, ErrorCode.INTERNAL_ERROR),
        ],
    )
    def test_status_and_code(self, exc, status, code):
        assert exc.status_code == status
        assert exc.code == code


class TestTokenInvalidError:
    @pytest.mark.parametrize("code", [ErrorCode.TOKEN_MISSING, ErrorCode.TOKEN_INVALID_FORMAT])
    def test_shape_errors_are_bad_request(self, code):
        err = TokenInvalidError(code)
        assert err.status_code == 400
        assert err.public_code == code

    @pytest.mark.parametrize(
        "code",
        [ErrorCode.TOKEN_INVALID, ErrorCode.TOKEN_EXPIRED, ErrorCode.TOKEN_BINDING_MISMATCH],
    )
    def test_state_errors_collapse_externally(self, code):
        err = TokenInvalidError(code)
        assert err.status_code == 401
        assert err.code == code
        assert err.public_code == ErrorCode.TOKEN_INVALID
        assert err.public_message == "Invalid, expired or already used token"

    def test_internal_message_keeps_detail(self):
        err = TokenInvalidError(ErrorCode.TOKEN_EXPIRED)
        assert str(err) == "Token has expired"


class TestErrorAttributes:
    def test_quota_error_attributes(self):
        err = QuotaExceededError("Daily limit reached", "daily", 10, 1700000000.0, 3600)
        assert err.limit_type == "daily"
        assert err.limit == 10
        assert err.reset_time == 1700000000.0
        assert err.retry_after == 3600
        assert err.message == "Daily limit reached"

    def test_concurrency_error_attributes(self):
        err = ConcurrencyExceededError("too many", max_concurrent=5, active_count=5)
        assert err.max_concurrent == 5
        assert err.active_count == 5

    def test_upstream_error_bytes(self):
        err = UpstreamTransferError("reset by peer", bytes_transferred=1024)
        assert err.bytes_transferred == 1024

    def test_internal_error_hides_message(self):
        err = StoreConnectionError("redis://secret-host:6379 refused")
        assert err.public_message == "Internal server error"
        assert "secret-host" in str(err)

    def test_token_not_found_keeps_id(self):
        err = TokenNotFoundError("tok-1")
        assert err.token_id == "tok-1"
        assert "tok-1" in str(err)
