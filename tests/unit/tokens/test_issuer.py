from unittest.mock import AsyncMock

import pytest

from stream_gate.config import TokenConfig
from stream_gate.exceptions import StoreConnectionError, StoreOperationError
from stream_gate.observability.constants import STORE_ERRORS_TOTAL
from stream_gate.tokens.codec import hash_secret
from stream_gate.tokens.issuer import TokenIssuer
from stream_gate.types.results import ClientInfo


class TestTokenIssuer:
    @pytest.fixture
    def issuer(self, store, clock):
        return TokenIssuer(store, clock=clock)

    @pytest.mark.asyncio
    async def test_issue_stores_hash_only(self, issuer, store, resource, clock):
        issued = await issuer.issue("user-1", resource)

        token = await store.get(issued.token_id)
        assert token is not None
        assert token.secret_hash == hash_secret(issued.secret)
        assert issued.secret not in token.model_dump_json()
        assert token.owner_id == "user-1"
        assert token.resource == resource
        assert token.created_at == clock.now

    @pytest.mark.asyncio
    async def test_default_ttl(self, issuer, clock, resource):
        issued = await issuer.issue("user-1", resource)
        assert issued.expires_at == clock.now + 1800.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("ttl", "lifetime"), [(-5, 60.0), (0, 60.0), (1, 60.0), (600, 600.0), (99999, 21600.0)])
    async def test_ttl_is_clamped(self, issuer, clock, resource, ttl, lifetime):
        issued = await issuer.issue("user-1", resource, ttl=ttl)
        assert issued.expires_at == clock.now + lifetime

    @pytest.mark.asyncio
    async def test_resource_handle(self, issuer, resource):
        issued = await issuer.issue("user-1", resource)
        assert issued.resource_handle == f"/stream/{issued.secret}"

    @pytest.mark.asyncio
    async def test_records_client_binding(self, issuer, store, resource):
        issued = await issuer.issue("user-1", resource, client=ClientInfo("1.2.3.4", "ua"))
        token = await store.get(issued.token_id)
        assert token.client_binding.ip_address == "1.2.3.4"
        assert token.client_binding.user_agent == "ua"

    @pytest.mark.asyncio
    async def test_binding_disabled(self, store, clock, resource):
        issuer = TokenIssuer(store, TokenConfig(bind_client=False), clock=clock)
        issued = await issuer.issue("user-1", resource, client=ClientInfo("1.2.3.4", "ua"))
        token = await store.get(issued.token_id)
        assert token.client_binding is None

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, resource, metrics):
        store = AsyncMock()
        store.insert.side_effect = StoreConnectionError("down")
        issuer = TokenIssuer(store, metrics=metrics)

        with pytest.raises(StoreConnectionError):
            await issuer.issue("user-1", resource)
        assert metrics.get_counter(STORE_ERRORS_TOTAL, {"operation": "insert"}) == 1

    @pytest.mark.asyncio
    async def test_unexpected_store_error_is_wrapped(self, resource):
        store = AsyncMock()
        store.insert.side_effect = RuntimeError("disk full")
        issuer = TokenIssuer(store)

        with pytest.raises(StoreOperationError) as exc_info:
            await issuer.issue("user-1", resource)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
