"""
Redis caching layer for Entitlements Service.

Shares access decisions between service instances. Redis expires keys
itself, so ``sweep`` has nothing to do here.
"""

import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import BackendError
from ..access.models import AccessDecision
from .decision_cache import DEFAULT_TTL_SECONDS, DecisionCache


class RedisDecisionCache(DecisionCache):
    """Redis-backed decision cache."""

    def __init__(self, redis_url: str, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 key_prefix: str = "module_access:", client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.logger = get_logger("entitlements.cache.redis")
        self.redis: Optional[redis.Redis] = client
        self._hits = 0
        self._misses = 0
        self._errors = 0

    async def start(self):
        """Start the Redis cache."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache started")

        except (RedisError, OSError) as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise BackendError(str(e), code="REDIS_START_FAILED")

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[AccessDecision]:
        """Get a cached decision; backend errors count as a miss."""
        try:
            cached_data = await self.redis.get(self._key(key))
        except RedisError as e:
            self._errors += 1
            self.logger.error("Error getting cached decision", error=str(e))
            return None

        if not cached_data:
            self._misses += 1
            return None

        try:
            decision = AccessDecision.from_dict(json.loads(cached_data))
        except (ValueError, KeyError) as e:
            self._misses += 1
            self.logger.warning("Discarding unreadable cached decision", error=str(e))
            return None

        self._hits += 1
        return decision

    async def set(self, key: str, decision: AccessDecision) -> None:
        """Cache a decision for the configured TTL."""
        try:
            await self.redis.setex(
                self._key(key),
                max(1, int(self.ttl_seconds)),
                json.dumps(decision.to_dict())
            )
        except RedisError as e:
            self._errors += 1
            self.logger.error("Error caching decision", error=str(e))

    async def _delete_matching(self, pattern: str) -> int:
        keys: List[str] = [k async for k in self.redis.scan_iter(match=pattern)]
        if keys:
            await self.redis.delete(*keys)
        return len(keys)

    async def clear(self) -> int:
        """Clear all cached decisions."""
        try:
            removed = await self._delete_matching(f"{self.key_prefix}*")
        except RedisError as e:
            self._errors += 1
            self.logger.error("Error clearing cache", error=str(e))
            return 0
        self.logger.info("Cache cleared", removed=removed)
        return removed

    async def sweep(self) -> int:
        return 0

    async def invalidate_org(self, org_id: str) -> int:
        """Invalidate all cached decisions for an organization."""
        try:
            removed = await self._delete_matching(f"{self.key_prefix}*|{org_id}|*")
        except RedisError as e:
            self._errors += 1
            self.logger.error("Error invalidating org decisions", org_id=org_id, error=str(e))
            return 0
        if removed:
            self.logger.info("Invalidated org decisions", org_id=org_id, count=removed)
        return removed

    async def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._hits + self._misses
        stats: Dict[str, Any] = {
            "backend": "redis",
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "errors": self._errors,
            "hit_rate": self._hits / total if total else 0.0,
        }
        try:
            info = await self.redis.info()
            stats["used_memory"] = info.get("used_memory_human")
            stats["connected_clients"] = info.get("connected_clients")
        except RedisError as e:
            self.logger.error("Error getting cache stats", error=str(e))
        return stats

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except RedisError:
            return False
