"""
Decision cache for module access evaluations.

Entries are keyed ``user|module|org|platform-or-member|bypass-or-strict``
and live for a short TTL. The in-memory backend is per process; an
entitlement change becomes visible on other instances only once their
own entries expire.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from shared.logging import get_logger
from ..access.models import AccessDecision

DEFAULT_TTL_SECONDS = 30.0
DEFAULT_MAX_ENTRIES = 1500
DEFAULT_STRIPES = 16


def org_segment(cache_key: str) -> Optional[str]:
    """Org part of a standard decision key, if the key has one."""
    parts = cache_key.split("|")
    if len(parts) != 5:
        return None
    return parts[2]


class DecisionCache(ABC):
    """Interface shared by the cache backends."""

    async def start(self) -> None:
        """Connect to the backend, if any."""

    async def stop(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def get(self, key: str) -> Optional[AccessDecision]:
        ...

    @abstractmethod
    async def set(self, key: str, decision: AccessDecision) -> None:
        ...

    @abstractmethod
    async def clear(self) -> int:
        """Drop every entry; returns how many were removed."""

    @abstractmethod
    async def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""

    @abstractmethod
    async def invalidate_org(self, org_id: str) -> int:
        """Drop every entry evaluated under ``org_id``."""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        ...

    async def health_check(self) -> bool:
        return True


class InMemoryDecisionCache(DecisionCache):
    """Lock-striped TTL map.

    Keys are spread over ``stripes`` dicts, each guarded by its own lock,
    so concurrent requests touching different keys rarely contend.
    Expired entries are dropped lazily on read and swept in bulk whenever
    an insert pushes the total size over ``max_entries``.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 max_entries: int = DEFAULT_MAX_ENTRIES,
                 stripes: int = DEFAULT_STRIPES,
                 clock: Callable[[], float] = time.monotonic):
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self.logger = get_logger("entitlements.cache.memory")
        self._stripes: List[Tuple[threading.Lock, Dict[str, Tuple[float, AccessDecision]]]] = [
            (threading.Lock(), {}) for _ in range(stripes)
        ]
        self._counters_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._sweeps = 0

    def _stripe(self, key: str) -> Tuple[threading.Lock, Dict[str, Tuple[float, AccessDecision]]]:
        return self._stripes[hash(key) % len(self._stripes)]

    def __len__(self) -> int:
        total = 0
        for lock, entries in self._stripes:
            with lock:
                total += len(entries)
        return total

    async def get(self, key: str) -> Optional[AccessDecision]:
        now = self.clock()
        lock, entries = self._stripe(key)
        with lock:
            entry = entries.get(key)
            if entry is not None and entry[0] <= now:
                del entries[key]
                entry = None
        with self._counters_lock:
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
        return entry[1] if entry is not None else None

    async def set(self, key: str, decision: AccessDecision) -> None:
        expires_at = self.clock() + self.ttl_seconds
        lock, entries = self._stripe(key)
        with lock:
            entries[key] = (expires_at, decision)
        if len(self) > self.max_entries:
            await self.sweep()

    async def clear(self) -> int:
        removed = 0
        for lock, entries in self._stripes:
            with lock:
                removed += len(entries)
                entries.clear()
        self.logger.info("Decision cache cleared", removed=removed)
        return removed

    async def sweep(self) -> int:
        now = self.clock()
        removed = 0
        for lock, entries in self._stripes:
            with lock:
                expired = [k for k, (expires_at, _) in entries.items() if expires_at <= now]
                for k in expired:
                    del entries[k]
                removed += len(expired)
        with self._counters_lock:
            self._sweeps += 1
        if removed:
            self.logger.debug("Expired decisions swept", removed=removed)
        return removed

    async def invalidate_org(self, org_id: str) -> int:
        removed = 0
        for lock, entries in self._stripes:
            with lock:
                stale = [
                    k for k, (_, decision) in entries.items()
                    if decision.org_id == org_id or org_segment(k) == org_id
                ]
                for k in stale:
                    del entries[k]
                removed += len(stale)
        if removed:
            self.logger.info("Cached decisions invalidated", org_id=org_id, removed=removed)
        return removed

    async def stats(self) -> Dict[str, Any]:
        with self._counters_lock:
            hits, misses, sweeps = self._hits, self._misses, self._sweeps
        total = hits + misses
        return {
            "backend": "memory",
            "entries": len(self),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "stripes": len(self._stripes),
            "hits": hits,
            "misses": misses,
            "sweeps": sweeps,
            "hit_rate": hits / total if total else 0.0,
        }
