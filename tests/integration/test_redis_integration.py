"""
Redis token store against fakeredis.

The Lua scripts need the ``lupa`` runtime; the module is skipped when
either fakeredis or lupa is missing.
"""

from __future__ import annotations

import asyncio
import importlib.util

import pytest

from stream_gate.stores.redis import RedisTokenStore
from stream_gate.tokens.codec import generate_secret, hash_secret
from stream_gate.types.token import ClientBinding, ResourceDescriptor, StreamToken

pytestmark = pytest.mark.skipif(
    importlib.util.find_spec("fakeredis") is None or importlib.util.find_spec("lupa") is None,
    reason="fakeredis with lua support is not installed",
)

NOW = 1_700_000_000.0


def make_token(owner="user-1", created_at=NOW, ttl=600.0, **kw) -> StreamToken:
    return StreamToken(
        owner_id=owner,
        secret_hash=hash_secret(generate_secret()),
        resource=ResourceDescriptor(
            source_url="https://cdn.example.com/v.mp4", format_id="mp4-720", title="Demo"
        ),
        created_at=created_at,
        expires_at=created_at + ttl,
        **kw,
    )


@pytest.fixture
async def store():
    import fakeredis.aioredis

    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    redis_store = RedisTokenStore(redis_client=client, namespace="it")
    yield redis_store
    await redis_store.cleanup()
    await client.aclose()


class TestRedisTokenStoreIntegration:
    @pytest.mark.asyncio
    async def test_insert_get_round_trip(self, store):
        token = make_token(client_binding=ClientBinding(ip_address="1.2.3.4", user_agent="ua"))
        await store.insert(token)

        fetched = await store.get(token.id)

        assert fetched == token

    @pytest.mark.asyncio
    async def test_claim_exactly_once(self, store):
        token = make_token()
        await store.insert(token)

        results = await asyncio.gather(*(store.claim(token.secret_hash, NOW + 1) for _ in range(20)))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].used is True
        assert winners[0].access_count == 1
        assert winners[0].used_at == NOW + 1

    @pytest.mark.asyncio
    async def test_claim_unknown(self, store):
        assert await store.claim("0" * 64, NOW) is None

    @pytest.mark.asyncio
    async def test_counts(self, store):
        await store.insert(make_token(created_at=NOW - 7200))
        await store.insert(make_token(created_at=NOW - 60))
        claimed = make_token(created_at=NOW - 30)
        await store.insert(claimed)
        await store.claim(claimed.secret_hash, NOW - 10)

        assert await store.count_issued_since("user-1", NOW - 3600) == 2
        assert await store.count_issued_since("user-1", 0) == 3
        assert await store.count_active("user-1", NOW) == 1

    @pytest.mark.asyncio
    async def test_list_active_newest_first(self, store):
        older = make_token(created_at=NOW - 100)
        newer = make_token(created_at=NOW - 10)
        await store.insert(older)
        await store.insert(newer)

        active = await store.list_active("user-1", NOW)

        assert [t.id for t in active] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_extend_and_revoke(self, store):
        token = make_token()
        await store.insert(token)

        assert await store.extend_expiry(token.id, "user-2", NOW + 5000, NOW) is None
        extended = await store.extend_expiry(token.id, "user-1", NOW + 5000, NOW)
        assert extended.expires_at == NOW + 5000
        assert await store.count_active("user-1", NOW + 4000) == 1

        assert await store.revoke(token.id, "user-1", NOW + 1) is True
        assert await store.revoke(token.id, "user-1", NOW + 1) is False
        assert await store.claim(token.secret_hash, NOW + 2) is None

    @pytest.mark.asyncio
    async def test_revoke_owner(self, store):
        for _ in range(3):
            await store.insert(make_token())
        assert await store.revoke_owner("user-1", NOW) == 3
        assert await store.count_active("user-1", NOW) == 0

    @pytest.mark.asyncio
    async def test_statistics_and_health(self, store):
        used = make_token()
        await store.insert(used)
        await store.insert(make_token(ttl=5))
        await store.claim(used.secret_hash, NOW + 1)

        stats = await store.get_statistics(NOW + 10)
        assert stats.total_consumed == 1
        assert stats.total_expired == 1

        health = await store.health_check()
        assert health.healthy is True
