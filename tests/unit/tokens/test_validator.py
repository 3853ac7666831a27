import asyncio
from unittest.mock import AsyncMock

import pytest

from stream_gate.config import TokenConfig
from stream_gate.exceptions import ErrorCode, StoreOperationError, TokenInvalidError
from stream_gate.observability.constants import TOKEN_VALIDATIONS_TOTAL
from stream_gate.tokens.issuer import TokenIssuer
from stream_gate.tokens.validator import TokenValidator
from stream_gate.types.results import ClientInfo


class TestTokenValidator:
    @pytest.fixture
    def issuer(self, store, clock):
        return TokenIssuer(store, clock=clock)

    @pytest.fixture
    def validator(self, store, clock, metrics):
        return TokenValidator(store, clock=clock, metrics=metrics)

    @pytest.mark.asyncio
    async def test_claim_once(self, issuer, validator, resource, clock):
        issued = await issuer.issue("user-1", resource)

        claim = await validator.validate_and_consume(issued.secret)

        assert claim.token_id == issued.token_id
        assert claim.owner_id == "user-1"
        assert claim.resource == resource
        assert claim.claimed_at == clock.now

    @pytest.mark.asyncio
    async def test_second_presentation_rejected(self, issuer, validator, resource):
        issued = await issuer.issue("user-1", resource)
        await validator.validate_and_consume(issued.secret)

        with pytest.raises(TokenInvalidError) as exc_info:
            await validator.validate_and_consume(issued.secret)
        assert exc_info.value.code == ErrorCode.TOKEN_INVALID

    @pytest.mark.asyncio
    async def test_concurrent_presentations_claim_once(self, issuer, validator, resource):
        issued = await issuer.issue("user-1", resource)

        results = await asyncio.gather(
            *(validator.validate_and_consume(issued.secret) for _ in range(10)),
            return_exceptions=True,
        )

        claims = [r for r in results if not isinstance(r, Exception)]
        errors = [r for r in results if isinstance(r, TokenInvalidError)]
        assert len(claims) == 1
        assert len(errors) == 9

    @pytest.mark.asyncio
    @pytest.mark.parametrize("secret", [None, ""])
    async def test_missing(self, validator, secret):
        with pytest.raises(TokenInvalidError) as exc_info:
            await validator.validate_and_consume(secret)
        assert exc_info.value.code == ErrorCode.TOKEN_MISSING
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_never_reaches_store(self, clock):
        store = AsyncMock()
        validator = TokenValidator(store, clock=clock)

        with pytest.raises(TokenInvalidError) as exc_info:
            await validator.validate_and_consume("not-a-token")

        assert exc_info.value.code == ErrorCode.TOKEN_INVALID_FORMAT
        store.claim.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_secret(self, validator, metrics):
        with pytest.raises(TokenInvalidError) as exc_info:
            await validator.validate_and_consume("0" * 64)
        assert exc_info.value.code == ErrorCode.TOKEN_INVALID
        assert metrics.get_counter(TOKEN_VALIDATIONS_TOTAL, {"outcome": "token_invalid"}) == 1

    @pytest.mark.asyncio
    async def test_expired_is_consumed(self, issuer, validator, store, resource, clock):
        issued = await issuer.issue("user-1", resource, ttl=600)
        clock.advance(600)

        with pytest.raises(TokenInvalidError) as exc_info:
            await validator.validate_and_consume(issued.secret)
        assert exc_info.value.code == ErrorCode.TOKEN_EXPIRED
        assert exc_info.value.public_code == ErrorCode.TOKEN_INVALID

        token = await store.get(issued.token_id)
        assert token.used is True

    @pytest.mark.asyncio
    async def test_just_before_expiry(self, issuer, validator, resource, clock):
        issued = await issuer.issue("user-1", resource, ttl=600)
        clock.advance(599.999)

        claim = await validator.validate_and_consume(issued.secret)
        assert claim.token_id == issued.token_id

    @pytest.mark.asyncio
    async def test_strict_binding_mismatch(self, store, clock, resource):
        config = TokenConfig(strict_binding=True)
        issuer = TokenIssuer(store, config, clock=clock)
        validator = TokenValidator(store, config, clock=clock)
        issued = await issuer.issue("user-1", resource, client=ClientInfo("1.1.1.1", "ua"))

        with pytest.raises(TokenInvalidError) as exc_info:
            await validator.validate_and_consume(issued.secret, ClientInfo("2.2.2.2", "ua"))
        assert exc_info.value.code == ErrorCode.TOKEN_BINDING_MISMATCH

    @pytest.mark.asyncio
    async def test_strict_binding_match(self, store, clock, resource):
        config = TokenConfig(strict_binding=True)
        issuer = TokenIssuer(store, config, clock=clock)
        validator = TokenValidator(store, config, clock=clock)
        issued = await issuer.issue("user-1", resource, client=ClientInfo("1.1.1.1", "ua"))

        claim = await validator.validate_and_consume(issued.secret, ClientInfo("1.1.1.1", "ua"))
        assert claim.owner_id == "user-1"

    @pytest.mark.asyncio
    async def test_lenient_binding_ignores_client(self, issuer, validator, resource):
        issued = await issuer.issue("user-1", resource, client=ClientInfo("1.1.1.1", "ua"))
        claim = await validator.validate_and_consume(issued.secret, ClientInfo("9.9.9.9", "x"))
        assert claim.token_id == issued.token_id

    @pytest.mark.asyncio
    async def test_store_failure_is_wrapped(self, clock):
        store = AsyncMock()
        store.claim.side_effect = RuntimeError("connection reset")
        validator = TokenValidator(store, clock=clock)

        with pytest.raises(StoreOperationError):
            await validator.validate_and_consume("0" * 64)
