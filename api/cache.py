import fnmatch
import json
import threading
import time
from typing import Any, List, Optional, Tuple

import redis

from api.config import CACHE_BACKEND, REDIS_URL
from api.event_log import log_api_event


_INCR_WITH_TTL_LUA = """
local key = KEYS[1]
local ttl = tonumber(ARGV[1])
local new_count = redis.call("INCR", key)
if new_count == 1 then
  redis.call("EXPIRE", key, ttl)
end
local remaining = redis.call("TTL", key)
if remaining < 0 then
  redis.call("EXPIRE", key, ttl)
  remaining = ttl
end
return {new_count, remaining}
"""


class Cache:
    """Advisory key-value cache. A miss or a failure never changes results."""

    name = "base"

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def incr(self, key: str, amount: int = 1) -> Optional[int]:
        raise NotImplementedError

    def expire(self, key: str, ttl: int) -> None:
        raise NotImplementedError

    def keys(self, pattern: str) -> List[str]:
        raise NotImplementedError

    def incr_with_ttl(self, key: str, ttl: int) -> Optional[Tuple[int, int]]:
        """Atomically count a hit in a fixed window; returns (count, seconds left)."""
        raise NotImplementedError

    def available(self) -> bool:
        return True

    def get_json(self, key: str) -> Any:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.set(key, json.dumps(value, ensure_ascii=True, default=str), ttl)

    def delete_pattern(self, pattern: str) -> int:
        matched = self.keys(pattern)
        for key in matched:
            self.delete(key)
        return len(matched)


class NullCache(Cache):
    name = "none"

    def get(self, key):
        return None

    def set(self, key, value, ttl=None):
        return None

    def delete(self, key):
        return None

    def incr(self, key, amount=1):
        return None

    def expire(self, key, ttl):
        return None

    def keys(self, pattern):
        return []

    def incr_with_ttl(self, key, ttl):
        return None

    def available(self) -> bool:
        return False


class MemoryCache(Cache):
    name = "memory"

    def __init__(self):
        self._store = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[dict]:
        data = self._store.get(key)
        if not data:
            return None
        expires_ts = data.get("expires_at_ts") or 0
        if expires_ts and time.time() >= expires_ts:
            self._store.pop(key, None)
            return None
        return data

    def get(self, key):
        with self._lock:
            data = self._live(key)
            return None if data is None else data["value"]

    def set(self, key, value, ttl=None):
        with self._lock:
            self._store[key] = {
                "value": value,
                "expires_at_ts": time.time() + ttl if ttl else 0,
            }

    def delete(self, key):
        with self._lock:
            self._store.pop(key, None)

    def incr(self, key, amount=1):
        with self._lock:
            data = self._live(key)
            if data is None:
                data = {"value": "0", "expires_at_ts": 0}
                self._store[key] = data
            count = int(data["value"]) + amount
            data["value"] = str(count)
            return count

    def expire(self, key, ttl):
        with self._lock:
            data = self._live(key)
            if data is not None:
                data["expires_at_ts"] = time.time() + ttl

    def keys(self, pattern):
        with self._lock:
            return [k for k in list(self._store) if self._live(k) and fnmatch.fnmatchcase(k, pattern)]

    def incr_with_ttl(self, key, ttl):
        with self._lock:
            now = time.time()
            data = self._live(key)
            if data is None:
                data = {"value": "0", "expires_at_ts": now + ttl}
                self._store[key] = data
            count = int(data["value"]) + 1
            data["value"] = str(count)
            remaining = max(int(data["expires_at_ts"] - now), 0)
            return count, remaining

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class RedisCache(Cache):
    """Redis-backed cache that falls back to process memory when Redis is down."""

    name = "redis"

    def __init__(self, url: str = REDIS_URL):
        self.url = url
        self._client = None
        self._redis_available = True
        self._fallback = MemoryCache()

    def _get_redis(self):
        if not self._redis_available:
            return None
        if self._client is None:
            client = redis.Redis.from_url(self.url, decode_responses=True)
            try:
                client.ping()
            except redis.RedisError:
                self._redis_available = False
                log_api_event("cache_unavailable", {"backend": "redis"})
                return None
            self._client = client
        return self._client

    def _failed(self, op: str) -> None:
        log_api_event("cache_error", {"backend": "redis", "op": op})

    def get(self, key):
        client = self._get_redis()
        if client is None:
            return self._fallback.get(key)
        try:
            return client.get(key)
        except redis.RedisError:
            self._failed("get")
            return None

    def set(self, key, value, ttl=None):
        client = self._get_redis()
        if client is None:
            return self._fallback.set(key, value, ttl)
        try:
            if ttl:
                client.setex(key, ttl, value)
            else:
                client.set(key, value)
        except redis.RedisError:
            self._failed("set")

    def delete(self, key):
        client = self._get_redis()
        if client is None:
            return self._fallback.delete(key)
        try:
            client.delete(key)
        except redis.RedisError:
            self._failed("delete")

    def incr(self, key, amount=1):
        client = self._get_redis()
        if client is None:
            return self._fallback.incr(key, amount)
        try:
            return int(client.incrby(key, amount))
        except redis.RedisError:
            self._failed("incr")
            return None

    def expire(self, key, ttl):
        client = self._get_redis()
        if client is None:
            return self._fallback.expire(key, ttl)
        try:
            client.expire(key, ttl)
        except redis.RedisError:
            self._failed("expire")

    def keys(self, pattern):
        client = self._get_redis()
        if client is None:
            return self._fallback.keys(pattern)
        try:
            return list(client.scan_iter(match=pattern))
        except redis.RedisError:
            self._failed("keys")
            return []

    def incr_with_ttl(self, key, ttl):
        client = self._get_redis()
        if client is None:
            return self._fallback.incr_with_ttl(key, ttl)
        try:
            result = client.eval(_INCR_WITH_TTL_LUA, 1, key, ttl)
        except redis.RedisError:
            self._failed("incr_with_ttl")
            return None
        if not result:
            return None
        return int(result[0]), int(result[1])

    def available(self) -> bool:
        return self._get_redis() is not None


_CACHE: Optional[Cache] = None


def build_cache(backend: str = CACHE_BACKEND) -> Cache:
    backend = (backend or "").strip().lower()
    if backend == "memory":
        return MemoryCache()
    if backend in {"none", "null", "off"}:
        return NullCache()
    return RedisCache()


def get_cache() -> Cache:
    global _CACHE
    if _CACHE is None:
        _CACHE = build_cache()
    return _CACHE


def cache_status() -> dict:
    cache = get_cache()
    return {"backend": cache.name, "available": cache.available()}
