"""Refresh-session registry and access-token blacklist.

Implementations:
- RedisSessionStore: redis-py backed, shared across workers (production)
- InMemorySessionStore: thread-safe dict with TTLs (development and tests)

Key layout (shared with the Node service that used to own this data):
    refresh_token:<sessionId>  -> JSON {userId, email, refreshToken}
    blacklist_<access token>   -> "true"

Failure policy:
    Store errors are never reported as "absent". RedisSessionStore raises
    SessionStoreUnavailable and the request gate fails closed.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog
from redis.exceptions import RedisError

from .errors import SessionStoreUnavailable

if TYPE_CHECKING:
    from .protocols import Clock

logger = structlog.get_logger(__name__)

_SESSION_PREFIX: Final[str] = "refresh_token:"
_BLACKLIST_PREFIX: Final[str] = "blacklist_"
_BLACKLIST_SENTINEL: Final[str] = "true"


def _session_key(session_id: str) -> str:
    return f"{_SESSION_PREFIX}{session_id}"


def _blacklist_key(token: str) -> str:
    return f"{_BLACKLIST_PREFIX}{token}"


def _decode_record(raw: Any) -> dict[str, Any] | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        record = json.loads(raw)
    except ValueError:
        logger.error("session_record_corrupt")
        return None
    return record if isinstance(record, dict) else None


class RedisSessionStore:
    """Session store over a redis-py client.

    ``take_session`` uses GETDEL so that of two concurrent refreshes with the
    same token only one sees the record.

    Attributes:
        _client: Redis client instance (redis-py or compatible).
    """

    def __init__(self, redis_client: Any) -> None:
        self._client = redis_client

    def put_session(self, session_id: str, record: Mapping[str, Any], ttl_seconds: int) -> None:
        try:
            self._client.setex(_session_key(session_id), ttl_seconds, json.dumps(dict(record)))
        except RedisError as e:
            logger.error("session_store_write_failed", session_id=session_id, error=str(e))
            raise SessionStoreUnavailable("Session store unavailable") from e

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        try:
            raw = self._client.get(_session_key(session_id))
        except RedisError as e:
            logger.error("session_store_read_failed", session_id=session_id, error=str(e))
            raise SessionStoreUnavailable("Session store unavailable") from e
        return _decode_record(raw)

    def take_session(self, session_id: str) -> dict[str, Any] | None:
        try:
            raw = self._client.getdel(_session_key(session_id))
        except RedisError as e:
            logger.error("session_store_read_failed", session_id=session_id, error=str(e))
            raise SessionStoreUnavailable("Session store unavailable") from e
        return _decode_record(raw)

    def delete_session(self, session_id: str) -> None:
        try:
            self._client.delete(_session_key(session_id))
        except RedisError as e:
            logger.error("session_store_write_failed", session_id=session_id, error=str(e))
            raise SessionStoreUnavailable("Session store unavailable") from e

    def blacklist(self, token: str, ttl_seconds: int) -> None:
        try:
            self._client.setex(_blacklist_key(token), ttl_seconds, _BLACKLIST_SENTINEL)
        except RedisError as e:
            logger.error("blacklist_write_failed", error=str(e))
            raise SessionStoreUnavailable("Session store unavailable") from e

    def is_blacklisted(self, token: str) -> bool:
        try:
            return self._client.get(_blacklist_key(token)) is not None
        except RedisError as e:
            logger.error("blacklist_read_failed", error=str(e))
            raise SessionStoreUnavailable("Session store unavailable") from e


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class InMemorySessionStore:
    """Process-local session store.

    Only suitable for a single worker. Expired entries are removed lazily on
    access.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, _Entry] = {}

    def _get_live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    def _put(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    def put_session(self, session_id: str, record: Mapping[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            self._put(_session_key(session_id), dict(record), ttl_seconds)

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._get_live(_session_key(session_id))
            return dict(entry.value) if entry else None

    def take_session(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._get_live(_session_key(session_id))
            if entry is None:
                return None
            del self._data[_session_key(session_id)]
            return dict(entry.value)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(_session_key(session_id), None)

    def blacklist(self, token: str, ttl_seconds: int) -> None:
        with self._lock:
            self._put(_blacklist_key(token), _BLACKLIST_SENTINEL, ttl_seconds)

    def is_blacklisted(self, token: str) -> bool:
        with self._lock:
            return self._get_live(_blacklist_key(token)) is not None
