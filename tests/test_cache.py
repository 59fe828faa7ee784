import json

import pytest
import redis

from cma_engine.core.cache import ResultCache, fingerprint


class BrokenRedis:
    """Every call fails the way a dead Redis does."""
    def get(self, key):
        raise redis.ConnectionError("down")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("down")

    def scan_iter(self, match=None):
        raise redis.ConnectionError("down")


class DictRedis:
    """Just enough of the redis client surface for the cache."""
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value

    def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        return [k for k in list(self.data) if k.startswith(prefix)]

    def delete(self, *keys):
        for k in keys:
            self.data.pop(k, None)


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        a = fingerprint({"lat": 1, "lng": 2, "beds": 3}, {"radius": 3, "statuses": ["Closed", "Active"]})
        b = fingerprint({"beds": 3, "lng": 2, "lat": 1}, {"statuses": ["Active", "Closed"], "radius": 3})
        assert a == b

    def test_any_value_change_changes_the_key(self):
        base = fingerprint({"lat": 1}, {"radius": 3})
        assert fingerprint({"lat": 1}, {"radius": 4}) != base
        assert fingerprint({"lat": 1.0001}, {"radius": 3}) != base

    def test_is_sha256_hex(self):
        fp = fingerprint({}, {})
        assert len(fp) == 64
        int(fp, 16)


class TestLocalBackend:
    def test_roundtrip_and_miss(self, local_cache):
        assert local_cache.get("abc") is None
        local_cache.set("abc", {"value": 1})
        assert local_cache.get("abc") == {"value": 1}

    def test_callers_cannot_mutate_cached_payload(self, local_cache):
        payload = {"items": [1, 2]}
        local_cache.set("k", payload)
        payload["items"].append(3)
        got = local_cache.get("k")
        got["items"].append(4)
        assert local_cache.get("k") == {"items": [1, 2]}

    def test_purge_drops_everything(self, local_cache):
        local_cache.set("a", {})
        local_cache.set("b", {})
        assert local_cache.purge() == 2
        assert local_cache.get("a") is None


class TestRedisBackend:
    def test_entries_are_namespaced_json(self):
        backend = DictRedis()
        cache = ResultCache(namespace="cma", ttl_seconds=30, backend=backend)
        cache.set("fp1", {"v": 1})
        entry = json.loads(backend.data["cma:fp1"])
        assert entry["fingerprint"] == "fp1"
        assert entry["ttl"] == 30
        assert cache.get("fp1") == {"v": 1}
        assert cache.purge() == 1
        assert backend.data == {}

    def test_backend_failures_degrade_to_miss(self):
        cache = ResultCache(namespace="cma", backend=BrokenRedis())
        assert cache.get("fp") is None
        assert cache.set("fp", {"v": 1}) is False
        assert cache.purge() == 0
