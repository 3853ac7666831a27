import pytest

from stream_gate.guards.concurrency import ConcurrencyGuard
from stream_gate.tokens.codec import hash_secret
from stream_gate.tokens.issuer import TokenIssuer
from stream_gate.types.tiers import SubscriptionTier


class TestConcurrencyGuard:
    @pytest.fixture
    def guard(self, store, clock, quota_config):
        return ConcurrencyGuard(store, quota_config, clock=clock)

    @pytest.fixture
    def issuer(self, store, clock):
        return TokenIssuer(store, clock=clock)

    @pytest.mark.asyncio
    async def test_free_tier_cap(self, guard, issuer, resource):
        for _ in range(2):
            assert (await guard.check("user-1", SubscriptionTier.FREE)).allowed
            await issuer.issue("user-1", resource)

        decision = await guard.check("user-1", SubscriptionTier.FREE)

        assert not decision.allowed
        assert decision.active_count == 2
        assert decision.max_concurrent == 2
        assert decision.reason == "Maximum of 2 active tokens reached"

    @pytest.mark.asyncio
    async def test_pro_tier_cap(self, guard, issuer, resource):
        for _ in range(5):
            await issuer.issue("user-1", resource)

        decision = await guard.check("user-1", SubscriptionTier.PRO)

        assert not decision.allowed
        assert decision.max_concurrent == 5

    @pytest.mark.asyncio
    async def test_consumed_token_frees_slot(self, guard, issuer, store, resource, clock):
        issued = [await issuer.issue("user-1", resource) for _ in range(2)]
        assert not (await guard.check("user-1", SubscriptionTier.FREE)).allowed

        await store.claim(hash_secret(issued[0].secret), clock.now)

        decision = await guard.check("user-1", SubscriptionTier.FREE)
        assert decision.allowed
        assert decision.active_count == 1

    @pytest.mark.asyncio
    async def test_expired_token_frees_slot(self, guard, issuer, resource, clock):
        await issuer.issue("user-1", resource, ttl=60)
        await issuer.issue("user-1", resource, ttl=600)
        clock.advance(60)

        assert (await guard.check("user-1", SubscriptionTier.FREE)).allowed
