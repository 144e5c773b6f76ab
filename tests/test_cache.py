import asyncio

import redis

from tcode_search.cache import MemoryCache, SearchCache, build_cache, make_key
from tcode_search.config import SearchSettings


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class BrokenRedis:
    """Every call fails like a dropped connection."""

    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def setex(self, key, ttl, payload):
        raise redis.ConnectionError("connection refused")

    def delete(self, *keys):
        raise redis.ConnectionError("connection refused")

    def scan_iter(self, match=None, count=None):
        raise redis.ConnectionError("connection refused")

    def ping(self):
        raise redis.ConnectionError("connection refused")


class DictRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, payload):
        self.store[key] = payload.encode("utf-8")

    def delete(self, *keys):
        n = 0
        for k in keys:
            n += self.store.pop(k, None) is not None
        return n

    def scan_iter(self, match=None, count=None):
        prefix = (match or "*").rstrip("*")
        return [k for k in list(self.store) if k.startswith(prefix)]

    def ping(self):
        return True


def test_make_key_normalizes_query_and_appends_extra():
    assert make_key("tcode:", "ai-search", "  Create  PO ", "5") == "tcode:ai-search:create po:5"
    assert make_key("tcode:", "embed", "ME21N") == "tcode:embed:me21n"


def test_memory_cache_expires_lazily():
    clock = FakeClock()
    mem = MemoryCache(max_entries=10, clock=clock)
    mem.set("k", '"v"', ttl=60)
    assert mem.get("k") == '"v"'
    clock.now += 61
    assert mem.get("k") is None
    assert len(mem) == 0


def test_memory_cache_evicts_least_recently_used():
    mem = MemoryCache(max_entries=2)
    mem.set("a", "1", ttl=60)
    mem.set("b", "2", ttl=60)
    assert mem.get("a") == "1"  # a is now most recent
    mem.set("c", "3", ttl=60)
    assert mem.get("b") is None
    assert mem.get("a") == "1"
    assert mem.get("c") == "3"


def test_search_cache_round_trips_json_values():
    cache = SearchCache(memory=MemoryCache())
    cache.set("ai-search", "Create PO", [{"tcode": "ME21N"}], ttl=60, extra="5")
    assert cache.get("ai-search", "create   po", extra="5") == [{"tcode": "ME21N"}]
    assert cache.get("ai-search", "create po", extra="10") is None


def test_search_cache_falls_back_to_memory_when_redis_fails():
    cache = SearchCache(memory=MemoryCache(), redis_client=BrokenRedis())
    cache.set("embed", "hello", [0.1, 0.2], ttl=60)
    assert cache.get("embed", "hello") == [0.1, 0.2]
    cache.delete("embed", "hello")
    assert cache.get("embed", "hello") is None
    assert cache.flush_all() == {"memory": 0, "redis": 0}


def test_search_cache_prefers_redis_and_flushes_both_tiers():
    client = DictRedis()
    cache = SearchCache(memory=MemoryCache(), redis_client=client)
    cache.set("molga-map", "all", [1, 2], ttl=60)
    # another instance wrote a newer value to the shared tier
    client.store["tcode:molga-map:all"] = b"[3]"
    assert cache.get("molga-map", "all") == [3]

    counts = cache.flush_all()
    assert counts == {"memory": 1, "redis": 1}
    assert cache.get("molga-map", "all") is None


def test_async_wrappers_use_the_same_tiers():
    cache = SearchCache(memory=MemoryCache(), redis_client=DictRedis())

    async def run():
        await cache.aset("query-expand", "po", "purchase order", ttl=60)
        value = await cache.aget("query-expand", "PO")
        await cache.adelete("query-expand", "po")
        return value, await cache.aget("query-expand", "po")

    assert asyncio.run(run()) == ("purchase order", None)


def test_build_cache_without_redis_url_is_memory_only():
    cache = build_cache(SearchSettings(redis_url=None))
    assert cache.backend == "memory"
    assert cache.stats()["memory_entries"] == 0


def test_build_cache_degrades_when_redis_unreachable(monkeypatch):
    monkeypatch.setattr("tcode_search.cache.redis.Redis.from_url", lambda *a, **kw: BrokenRedis())
    cache = build_cache(SearchSettings(redis_url="redis://localhost:1"))
    assert cache.backend == "memory"
