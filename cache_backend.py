"""Short-lived cache for computed analytics views.

``get_cache()`` returns whichever backend ``init_cache`` picked: Redis when
REDIS_URL answers a ping, an in-process store otherwise. Values are stored
as JSON text, so both backends hand back plain dicts and lists.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300


def _encode(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


def _decode(raw: str | bytes) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw.decode() if isinstance(raw, bytes) else raw


class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None: ...
    def delete(self, key: str) -> None: ...
    def clear(self) -> None: ...
    def cleanup(self) -> int: ...


# ── Process-local store ────────────────────────────────────

class TTLCache:
    """Thread-safe map of key -> (text, deadline).

    When full, the entry closest to its deadline makes room for a new key.
    """

    MAX_ENTRIES = 1000

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            if hit[1] < time.time():
                self._entries.pop(key)
                return None
            return hit[0]

    def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.MAX_ENTRIES:
                soonest = min(self._entries, key=lambda k: self._entries[k][1])
                self._entries.pop(soonest)
            self._entries[key] = (value, time.time() + ttl_seconds)

    def pop(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def cleanup(self) -> int:
        """Drop expired entries and return how many went."""
        cutoff = time.time()
        with self._lock:
            stale = [k for k, (_, deadline) in self._entries.items() if deadline < cutoff]
            for k in stale:
                self._entries.pop(k)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class InMemoryCache:
    def __init__(self) -> None:
        self._store = TTLCache()

    def get(self, key: str) -> Any | None:
        raw = self._store.get(key)
        return None if raw is None else _decode(raw)

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None:
        self._store.set(key, _encode(value), ttl)

    def delete(self, key: str) -> None:
        self._store.pop(key)

    def clear(self) -> None:
        self._store.clear()

    def cleanup(self) -> int:
        return self._store.cleanup()


# ── Redis ──────────────────────────────────────────────────

class RedisCache:
    """Namespaced Redis access. Connection problems read as cache misses."""

    def __init__(self, redis_client, prefix: str = "classroom:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def get(self, key: str) -> Any | None:
        try:
            raw = self._redis.get(self._prefix + key)
        except redis.RedisError as e:
            logger.warning("Redis GET error for %s: %s", key, e)
            return None
        return None if raw is None else _decode(raw)

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None:
        try:
            self._redis.setex(self._prefix + key, ttl, _encode(value))
        except redis.RedisError as e:
            logger.warning("Redis SET error for %s: %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self._redis.delete(self._prefix + key)
        except redis.RedisError as e:
            logger.warning("Redis DELETE error for %s: %s", key, e)

    def clear(self) -> None:
        """Remove this app's keys only; other tenants of the server keep theirs."""
        try:
            keys = list(self._redis.scan_iter(match=self._prefix + "*"))
            if keys:
                self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Redis CLEAR error under %s: %s", self._prefix, e)

    def cleanup(self) -> int:
        return 0  # keys carry their own TTL


_cache: CacheBackend | None = None


def init_cache(app) -> None:
    global _cache

    url = app.config.get("REDIS_URL", "")
    if url:
        try:
            client = redis.Redis.from_url(url, decode_responses=False)
            client.ping()
        except redis.RedisError as e:
            app.logger.warning("Redis at %s unreachable (%s); analytics cache stays in-process", url, e)
        else:
            _cache = RedisCache(client)
            app.logger.info("Analytics cache: Redis at %s", url)
            return

    _cache = InMemoryCache()
    app.logger.info("Analytics cache: in-process")


def get_cache() -> CacheBackend:
    global _cache
    if _cache is None:
        _cache = InMemoryCache()
    return _cache
