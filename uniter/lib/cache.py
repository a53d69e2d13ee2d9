"""
Two-tier key/value cache with per-entry TTL.

Lookups try an optional external store first (anything with a redis-style
get/set/exists/delete interface) and fall back to an in-process map. Writes
always land in the in-process map so the cache keeps working when the external
tier is missing or broken. Cache failures are logged and never raised.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


logger = logging.getLogger(__name__)

# TTL classes in seconds
TTL_SHORT = 5 * 60
TTL_LONG = 24 * 60 * 60


def stablecoin_key(chain_id: int) -> str:
    return f"stablecoin:{chain_id}"


def metadata_key(chain_id: int) -> str:
    return f"metadata:{chain_id}"


def native_price_key(chain_id: int) -> str:
    return f"native_price:{chain_id}"


def failed_search_key(search_type: str, chain_id: int, query: str) -> str:
    return f"failed:{search_type}:{chain_id}:{query}"


def rate_limited_key(endpoint: str) -> str:
    return f"rate:{endpoint}"


class KeyValueStore(ABC):
    """
    Interface for the optional external cache tier.

    A redis.Redis client satisfies it as-is. Values are JSON strings.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str, ex: Optional[int] = None) -> Any:
        pass

    @abstractmethod
    def exists(self, key: str) -> int:
        pass

    @abstractmethod
    def delete(self, key: str) -> Any:
        pass


@dataclass
class CacheEntry:
    """A cached value with its insertion time and lifetime, both in seconds."""

    value: Any
    inserted_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.inserted_at < self.ttl


class TieredCache:
    """
    Cache shared by the gateway, the client and the valuation engine.

    Entries expire lazily: an expired entry is evicted on the read that finds
    it stale. There is no background eviction.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            store: Optional external store tried before the in-process map
            clock: Time source in seconds, injectable for tests
        """
        self.store = store
        self.clock = clock
        self._memory: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None when absent or expired."""
        if self.store is not None:
            try:
                raw = self.store.get(key)
                if raw is not None:
                    return json.loads(raw)
            except Exception as e:
                logger.warning("External cache get failed for %s: %s", key, e)

        entry = self._memory.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self.clock()):
            del self._memory[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: float = TTL_LONG) -> None:
        """Store value under key for ttl seconds in every available tier."""
        if self.store is not None:
            try:
                self.store.set(key, json.dumps(value), ex=max(1, int(ttl)))
            except Exception as e:
                logger.warning("External cache set failed for %s: %s", key, e)

        self._memory[key] = CacheEntry(value=value, inserted_at=self.clock(), ttl=ttl)

    def exists(self, key: str) -> bool:
        """Return True if key holds a live entry in either tier."""
        if self.store is not None:
            try:
                if self.store.exists(key):
                    return True
            except Exception as e:
                logger.warning("External cache exists failed for %s: %s", key, e)

        entry = self._memory.get(key)
        if entry is None:
            return False
        if not entry.is_valid(self.clock()):
            del self._memory[key]
            return False
        return True

    def delete(self, key: str) -> None:
        """Remove key from every tier."""
        if self.store is not None:
            try:
                self.store.delete(key)
            except Exception as e:
                logger.warning("External cache delete failed for %s: %s", key, e)

        self._memory.pop(key, None)

    def clear(self) -> None:
        """Drop every in-process entry. The external tier is left alone."""
        self._memory.clear()
