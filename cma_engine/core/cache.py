import copy
import hashlib
import json
import logging
import time
from typing import Any, Mapping

import redis
from cachetools import TTLCache

from .config import settings
from .errors import CacheUnavailable
from .metrics import CACHE_LOOKUPS

logger = logging.getLogger(__name__)


def _canonical(value: Any) -> Any:
    """
    Canonical form for hashing: mappings become key-sorted dicts, sets and
    lists of scalars are sorted (a status whitelist is a set, not a sequence).
    """
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_canonical(v) for v in value]
        if all(isinstance(v, (str, int, float, bool)) or v is None for v in items):
            return sorted(items, key=lambda v: (v is None, str(type(v)), str(v)))
        return items
    if hasattr(value, "value") and isinstance(getattr(value, "value"), (str, int)):
        # Enums
        return value.value
    return value


def fingerprint(subject_identity: Mapping[str, Any], filters: Mapping[str, Any]) -> str:
    """
    Stable cache key for (subject, filters). Independent of key order at every
    nesting level, so two logically identical payloads hit the same entry.
    """
    doc = {"subject": _canonical(subject_identity), "filters": _canonical(filters)}
    raw = json.dumps(doc, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResultCache:
    """
    Thin abstraction over Redis/in-memory so swapping is one flag away.

    Backend failures never escape: reads degrade to a miss, writes and purges
    to a no-op, and every failure is logged.
    """
    def __init__(
        self,
        namespace: str = "cma",
        ttl_seconds: int | None = None,
        maxsize: int | None = None,
        backend: Any = None,
        use_redis: bool | None = None,
    ):
        self.namespace = namespace
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.CACHE_TTL_SECONDS
        self._local = TTLCache(maxsize=maxsize or settings.CACHE_MAXSIZE, ttl=self.ttl)
        self.backend = backend
        if self.backend is None and (settings.USE_REDIS if use_redis is None else use_redis):
            self.backend = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=settings.CACHE_TIMEOUT_SECONDS,
                socket_connect_timeout=settings.CACHE_TIMEOUT_SECONDS,
            )

    def _key(self, fp: str) -> str:
        return f"{self.namespace}:{fp}"

    def _read(self, key: str) -> dict | None:
        try:
            if self.backend is not None:
                raw = self.backend.get(key)
                return json.loads(raw) if raw else None
            return self._local.get(key)
        except (redis.RedisError, ValueError, TypeError) as exc:
            raise CacheUnavailable(str(exc)) from exc

    def _write(self, key: str, entry: dict) -> None:
        try:
            if self.backend is not None:
                self.backend.setex(key, self.ttl, json.dumps(entry, separators=(",", ":"), default=str))
            else:
                self._local[key] = copy.deepcopy(entry)
        except (redis.RedisError, ValueError, TypeError) as exc:
            raise CacheUnavailable(str(exc)) from exc

    def get(self, fp: str) -> dict | None:
        try:
            entry = self._read(self._key(fp))
        except CacheUnavailable:
            logger.warning("cache read failed; computing", exc_info=True, extra={"fingerprint": fp})
            CACHE_LOOKUPS.labels(namespace=self.namespace, outcome="error").inc()
            return None
        if entry is None:
            CACHE_LOOKUPS.labels(namespace=self.namespace, outcome="miss").inc()
            return None
        CACHE_LOOKUPS.labels(namespace=self.namespace, outcome="hit").inc()
        return copy.deepcopy(entry["payload"])

    def set(self, fp: str, payload: dict) -> bool:
        """Idempotent write: identical fingerprint means identical payload, so last write wins."""
        entry = {"fingerprint": fp, "payload": payload, "written_at": time.time(), "ttl": self.ttl}
        try:
            self._write(self._key(fp), entry)
        except CacheUnavailable:
            logger.warning("cache write failed", exc_info=True, extra={"fingerprint": fp})
            return False
        return True

    def purge(self) -> int:
        """Drop every entry in this namespace (inventory changed)."""
        try:
            if self.backend is not None:
                keys = list(self.backend.scan_iter(match=f"{self.namespace}:*"))
                if keys:
                    self.backend.delete(*keys)
                removed = len(keys)
            else:
                removed = len(self._local)
                self._local.clear()
        except redis.RedisError:
            logger.warning("cache purge failed", exc_info=True)
            return 0
        logger.info("cache purged", extra={"component": self.namespace})
        return removed
