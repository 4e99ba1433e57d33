"""Cache store implementations.

Implementations:
- KeySetCache: in-process, time-bounded memo of the remote JWKS (one slot)
- RedisCache: JSON cache over redis with tag invalidation, used by non-auth
  routes (menu, categories) and the health endpoint

Failure policy:
    RedisCache fails OPEN. Store errors are logged; reads fall back to the
    loader (or None) and writes are skipped. This is only acceptable because
    nothing security-relevant is cached here; the session store fails closed.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from jwt import PyJWKSet

    from .protocols import Clock

logger = structlog.get_logger(__name__)

_KEYSET_SLOT: Final[str] = "jwks"
"""Only one key set is supported, so the cache has a single constant slot."""


@dataclass(slots=True)
class _CacheItem:
    """Internal cache entry with TTL tracking."""

    value: PyJWKSet
    expires_at: float


class KeySetCache:
    """In-memory cache for the remote signing key set.

    Owned by a key provider instance rather than the process, so its lifetime
    is the provider's. Expired entries are lazily removed on access.

    Attributes:
        _ttl: Lifetime of a cached key set in seconds.
        _clock: Time source, injectable for tests.
        _store: Slot name -> _CacheItem.
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Clock = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._store: dict[str, _CacheItem] = {}

    def get(self) -> PyJWKSet | None:
        """Return the cached key set, or None if absent or expired."""
        with self._lock:
            item = self._store.get(_KEYSET_SLOT)
            if item is None:
                return None
            if self._clock() >= item.expires_at:
                self._store.pop(_KEYSET_SLOT, None)
                return None
            return item.value

    def set(self, keyset: PyJWKSet) -> None:
        with self._lock:
            self._store[_KEYSET_SLOT] = _CacheItem(
                value=keyset, expires_at=self._clock() + self._ttl
            )

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class RedisCache:
    """Redis-backed JSON cache with tag-based group invalidation.

    Storage Format:
        - Values: JSON under ``<prefix><key>`` with SETEX
        - Tags: redis sets under ``<prefix>tag:<tag>`` listing member keys

    Example:
        ```python
        cache = RedisCache(redis.Redis.from_url(url, decode_responses=True))
        menu = cache.get("menu:all", fallback=load_menu, tags=["menu"])
        cache.invalidate_tag("menu")
        ```

    Attributes:
        _client: Redis client instance (redis-py or compatible).
    """

    def __init__(self, redis_client: Any, key_prefix: str = "cache:", default_ttl: int = 3600) -> None:
        self._client = redis_client
        self._prefix = key_prefix
        self._default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}tag:{tag}"

    def get(
        self,
        key: str,
        fallback: Callable[[], Any] | None = None,
        *,
        ttl: int | None = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """Return the cached value, loading and caching it through ``fallback`` on a miss."""
        try:
            cached = self._client.get(self._key(key))
        except RedisError as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return fallback() if fallback else None

        if cached is not None:
            try:
                return json.loads(cached)
            except ValueError:
                logger.error("cache_parse_failed", key=key)

        if fallback is None:
            return None

        value = fallback()
        self.set(key, value, ttl=ttl, tags=tags)
        return value

    def set(self, key: str, value: Any, *, ttl: int | None = None, tags: Iterable[str] = ()) -> None:
        ttl = ttl or self._default_ttl
        try:
            self._client.setex(self._key(key), ttl, json.dumps(value))
            for tag in tags:
                tag_key = self._tag_key(tag)
                self._client.sadd(tag_key, key)
                self._client.expire(tag_key, self._default_ttl)
        except RedisError as e:
            logger.warning("cache_set_failed", key=key, error=str(e))

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._client.delete(*(self._key(k) for k in keys))
        except RedisError as e:
            logger.warning("cache_delete_failed", keys=list(keys), error=str(e))

    def invalidate_tag(self, tag: str) -> int:
        """Delete every key registered under ``tag``. Returns the number of keys removed."""
        tag_key = self._tag_key(tag)
        try:
            members = self._client.smembers(tag_key)
            if not members:
                return 0
            self._client.delete(*(self._key(m) for m in members))
            self._client.delete(tag_key)
        except RedisError as e:
            logger.warning("cache_tag_invalidation_failed", tag=tag, error=str(e))
            return 0

        logger.info("cache_tag_invalidated", tag=tag, keys_invalidated=len(members))
        return len(members)

    def health_check(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError:
            return False
