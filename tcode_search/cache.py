from __future__ import annotations

"""
Two-tier TTL cache.

* ``MemoryCache``: bounded in-process LRU with lazy expiry. Always written.
* Redis: optional shared tier, written through when configured and preferred
  on reads.

Keys are ``{prefix}{namespace}:{normalized query}[:{extra}]``. Values are
stored as JSON text in both tiers so every read hands back a fresh copy.
Redis errors are logged and the memory tier is used instead; the cache never
raises to its callers.
"""

import asyncio
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import redis
from loguru import logger

from . import config
from .normalize import normalize_query


def make_key(prefix: str, namespace: str, query: str, extra: Optional[str] = None) -> str:
    key = f"{prefix}{namespace}:{normalize_query(query)}"
    if extra is not None and str(extra) != "":
        key = f"{key}:{extra}"
    return key


class MemoryCache:
    """Thread-safe LRU of ``key -> (expires_at, payload)``."""

    def __init__(self, max_entries: int = config.CACHE_MEMORY_MAX_ENTRIES, clock=time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            expires_at, payload = item
            if expires_at <= self._clock():
                # lazy eviction
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return payload

    def set(self, key: str, payload: str, ttl: float) -> None:
        with self._lock:
            self._data[key] = (self._clock() + ttl, payload)
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            n = len(self._data)
            self._data.clear()
            return n

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SearchCache:
    """Namespaced cache facade used by every stage."""

    def __init__(
        self,
        memory: Optional[MemoryCache] = None,
        redis_client: Optional["redis.Redis"] = None,
        key_prefix: str = config.CACHE_KEY_PREFIX,
    ):
        self.memory = memory or MemoryCache()
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    @property
    def backend(self) -> str:
        return "redis+memory" if self.redis_client is not None else "memory"

    def _key(self, namespace: str, query: str, extra: Optional[str]) -> str:
        return make_key(self.key_prefix, namespace, query, extra)

    # ---- sync API ----

    def get(self, namespace: str, query: str, extra: Optional[str] = None) -> Any:
        """Return the cached value or ``None``."""
        key = self._key(namespace, query, extra)
        payload: Optional[str] = None

        if self.redis_client is not None:
            try:
                raw = self.redis_client.get(key)
                if raw is not None:
                    payload = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            except redis.RedisError as e:
                logger.warning("Redis get failed for {}: {}; using memory tier", key, e)

        if payload is None:
            payload = self.memory.get(key)
        if payload is None:
            logger.debug("Cache miss: {}", key)
            return None

        try:
            return json.loads(payload)
        except ValueError as e:
            logger.warning("Discarding undecodable cache entry {}: {}", key, e)
            self.delete(namespace, query, extra)
            return None

    def set(
        self,
        namespace: str,
        query: str,
        value: Any,
        ttl: float = config.TTL_SEARCH,
        extra: Optional[str] = None,
    ) -> None:
        key = self._key(namespace, query, extra)
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning("Value for {} is not JSON serialisable: {}", key, e)
            return

        self.memory.set(key, payload, ttl)
        if self.redis_client is not None:
            try:
                self.redis_client.setex(key, max(1, int(ttl)), payload)
            except redis.RedisError as e:
                logger.warning("Redis set failed for {}: {}", key, e)

    def delete(self, namespace: str, query: str, extra: Optional[str] = None) -> None:
        key = self._key(namespace, query, extra)
        self.memory.delete(key)
        if self.redis_client is not None:
            try:
                self.redis_client.delete(key)
            except redis.RedisError as e:
                logger.warning("Redis delete failed for {}: {}", key, e)

    def flush_all(self) -> Dict[str, int]:
        """Drop every entry under this cache's prefix in both tiers."""
        counts = {"memory": self.memory.clear(), "redis": 0}
        if self.redis_client is not None:
            try:
                keys = list(self.redis_client.scan_iter(match=f"{self.key_prefix}*", count=500))
                if keys:
                    counts["redis"] = int(self.redis_client.delete(*keys))
            except redis.RedisError as e:
                logger.warning("Redis flush failed: {}", e)
        logger.info("Cache flushed: {}", counts)
        return counts

    def stats(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "backend": self.backend,
            "memory_entries": len(self.memory),
            "memory_max_entries": self.memory.max_entries,
        }
        if self.redis_client is not None:
            try:
                out["redis_connected"] = bool(self.redis_client.ping())
            except redis.RedisError as e:
                logger.warning("Redis ping failed: {}", e)
                out["redis_connected"] = False
        return out

    # ---- async wrappers ----

    async def aget(self, namespace: str, query: str, extra: Optional[str] = None) -> Any:
        if self.redis_client is None:
            return self.get(namespace, query, extra)
        return await asyncio.to_thread(self.get, namespace, query, extra)

    async def aset(
        self,
        namespace: str,
        query: str,
        value: Any,
        ttl: float = config.TTL_SEARCH,
        extra: Optional[str] = None,
    ) -> None:
        if self.redis_client is None:
            self.set(namespace, query, value, ttl, extra)
            return
        await asyncio.to_thread(self.set, namespace, query, value, ttl, extra)

    async def adelete(self, namespace: str, query: str, extra: Optional[str] = None) -> None:
        if self.redis_client is None:
            self.delete(namespace, query, extra)
            return
        await asyncio.to_thread(self.delete, namespace, query, extra)


def build_cache(settings: config.SearchSettings) -> SearchCache:
    """
    Connect the shared tier if ``settings.redis_url`` is set.

    An unreachable Redis at startup is not fatal: the cache runs memory-only.
    """
    memory = MemoryCache(max_entries=settings.cache_max_entries)
    if not settings.redis_url:
        logger.info("REDIS_URL not set; using in-process cache only")
        return SearchCache(memory=memory, key_prefix=settings.cache_key_prefix)

    try:
        client = redis.Redis.from_url(
            settings.redis_url,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        client.ping()
        logger.info("Redis cache connected")
    except redis.RedisError as e:
        logger.warning("Redis unavailable, using in-memory cache only: {}", e)
        client = None
    return SearchCache(memory=memory, redis_client=client, key_prefix=settings.cache_key_prefix)
