"""
Cache package for Entitlements Service.

Provides the access decision cache: a lock-striped in-memory backend for
a single process and a Redis backend shared between instances.
"""

from .decision_cache import DecisionCache, InMemoryDecisionCache
from .redis_cache import RedisDecisionCache

__all__ = ["DecisionCache", "InMemoryDecisionCache", "RedisDecisionCache"]
