"""
Unit tests for the access decision cache backends.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_entitlements.app.access.models import AccessDecision, DecisionReason
from service_entitlements.app.cache.decision_cache import InMemoryDecisionCache, org_segment
from service_entitlements.app.cache.redis_cache import RedisDecisionCache
from conftest import FakeClock, ORG_A, ORG_B


def make_decision(org_id=ORG_A, allowed=True, reason=DecisionReason.ENABLED, module_key="products_bom"):
    return AccessDecision(
        module_key=module_key,
        org_id=org_id,
        is_platform_admin=False,
        allowed=allowed,
        reason=reason
    )


def key_for(user_id, org_id, module_key="products_bom"):
    return f"{user_id}|{module_key}|{org_id}|member|bypass"


class TestInMemoryDecisionCache:
    """Test cases for InMemoryDecisionCache."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache):
        decision = make_decision()
        await cache.set(key_for("u1", ORG_A), decision)
        assert await cache.get(key_for("u1", ORG_A)) == decision

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, cache, clock):
        await cache.set(key_for("u1", ORG_A), make_decision())
        clock.advance(29)
        assert await cache.get(key_for("u1", ORG_A)) is not None
        clock.advance(1)
        assert await cache.get(key_for("u1", ORG_A)) is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_sweep_runs_when_over_capacity(self):
        clock = FakeClock()
        cache = InMemoryDecisionCache(ttl_seconds=10, max_entries=3, stripes=2, clock=clock)
        for i in range(3):
            await cache.set(key_for(f"old-{i}", ORG_A), make_decision())
        clock.advance(11)

        await cache.set(key_for("fresh-1", ORG_A), make_decision())

        assert len(cache) == 1
        assert (await cache.stats())["sweeps"] == 1

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_entries(self):
        clock = FakeClock()
        cache = InMemoryDecisionCache(ttl_seconds=10, max_entries=2, stripes=2, clock=clock)
        for i in range(4):
            await cache.set(key_for(f"u{i}", ORG_A), make_decision())
        # Nothing has expired, so the map may exceed its soft cap.
        assert len(cache) == 4

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.set(key_for("u1", ORG_A), make_decision())
        await cache.set(key_for("u2", ORG_B), make_decision(org_id=ORG_B))
        assert await cache.clear() == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_invalidate_org_only_touches_that_org(self, cache):
        await cache.set(key_for("u1", ORG_A), make_decision())
        await cache.set(key_for("u1", ORG_A, "cutlist_optimizer"), make_decision(module_key="cutlist_optimizer"))
        await cache.set(key_for("u1", ORG_B), make_decision(org_id=ORG_B))

        assert await cache.invalidate_org(ORG_A) == 2
        assert await cache.get(key_for("u1", ORG_B)) is not None

    @pytest.mark.asyncio
    async def test_stats_track_hits_and_misses(self, cache):
        await cache.set(key_for("u1", ORG_A), make_decision())
        await cache.get(key_for("u1", ORG_A))
        await cache.get(key_for("u2", ORG_A))
        stats = await cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["backend"] == "memory"

    @pytest.mark.asyncio
    async def test_concurrent_writers(self, cache):
        async def writer(n):
            for i in range(50):
                await cache.set(key_for(f"user-{n}-{i}", ORG_A), make_decision())

        await asyncio.gather(*(writer(n) for n in range(10)))
        assert len(cache) == 500

    def test_rejects_zero_stripes(self):
        with pytest.raises(ValueError):
            InMemoryDecisionCache(stripes=0)

    def test_org_segment(self):
        assert org_segment(key_for("u1", ORG_A)) == ORG_A
        assert org_segment("custom-key") is None


class TestRedisDecisionCache:
    """Test cases for RedisDecisionCache with a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        client.ping.return_value = True
        return client

    @pytest.fixture
    def redis_cache(self, redis_client):
        return RedisDecisionCache("redis://unused", ttl_seconds=30, client=redis_client)

    @pytest.mark.asyncio
    async def test_set_uses_setex_with_prefix(self, redis_cache, redis_client):
        await redis_cache.set(key_for("u1", ORG_A), make_decision())
        key, ttl, payload = redis_client.setex.call_args.args
        assert key == f"module_access:{key_for('u1', ORG_A)}"
        assert ttl == 30
        assert json.loads(payload)["reason"] == "enabled"

    @pytest.mark.asyncio
    async def test_get_hit(self, redis_cache, redis_client):
        redis_client.get.return_value = json.dumps(make_decision(allowed=False, reason=DecisionReason.NOT_ENTITLED).to_dict())
        decision = await redis_cache.get(key_for("u1", ORG_A))
        assert decision.allowed is False
        assert decision.reason == DecisionReason.NOT_ENTITLED

    @pytest.mark.asyncio
    async def test_get_miss(self, redis_cache, redis_client):
        redis_client.get.return_value = None
        assert await redis_cache.get(key_for("u1", ORG_A)) is None

    @pytest.mark.asyncio
    async def test_backend_error_is_a_miss(self, redis_cache, redis_client):
        redis_client.get.side_effect = RedisConnectionError("down")
        assert await redis_cache.get(key_for("u1", ORG_A)) is None
        assert (await redis_cache.stats())["errors"] == 1

    @pytest.mark.asyncio
    async def test_sweep_is_a_no_op(self, redis_cache):
        assert await redis_cache.sweep() == 0

    @pytest.mark.asyncio
    async def test_health_check(self, redis_cache, redis_client):
        assert await redis_cache.health_check() is True
        redis_client.ping.side_effect = RedisConnectionError("down")
        assert await redis_cache.health_check() is False
