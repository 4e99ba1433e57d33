"""
Remote JWKS key provider.

Resolves JWT verification keys from an identity provider's JWKS endpoint
with an owned, time-bounded key-set cache and refresh throttling.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog
from jwt import PyJWK, PyJWKClient, PyJWKSet
from jwt.exceptions import PyJWKClientError, PyJWKSetError

from ..cache_stores import KeySetCache
from ..errors import ExternalVerificationError, InvalidToken
from ..refresh_gate import RefreshGate

if TYPE_CHECKING:
    from ..protocols import Clock

logger = structlog.get_logger(__name__)


class JWKSKeyProvider:
    """
    Resolves JWT signing keys from a JWKS endpoint.

    Resolution Strategy
    -------------------
    For each requested `kid`:

    1) Cached key set (fast path)
        - If a cached set exists and contains `kid` -> return it.

    2) Fresh fetch
        - No cached set: fetch once.
        - Cached set without `kid`: fetch again if the RefreshGate allows,
          otherwise fail fast.
        - Concurrent misses are coalesced: only one thread fetches, the
          others reuse its result.

    3) Failure
        - Raises ExternalVerificationError if the endpoint is unreachable or
          the `kid` is still unknown after a fresh fetch.

    Parameters
    ----------
    jwks_uri : str
        Key-set endpoint of the identity provider.

    ttl_seconds : float
        Lifetime of a cached key set (default one hour).

    fetch : Callable[[], PyJWKSet] | None
        Key-set loader. Defaults to ``PyJWKClient.get_jwk_set`` with PyJWT's
        own caching disabled, since caching happens here.

    gate : RefreshGate | None
        Throttle for forced refreshes on unknown key ids.

    clock : Clock
        Time source for the key-set cache and the default gate.
    """

    def __init__(
        self,
        jwks_uri: str,
        *,
        ttl_seconds: float = 3600,
        timeout: float = 10.0,
        fetch: Callable[[], PyJWKSet] | None = None,
        gate: RefreshGate | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._uri = jwks_uri
        self._cache = KeySetCache(ttl_seconds, clock=clock)
        self._gate = gate or RefreshGate(clock=clock)
        if fetch is None:
            client = PyJWKClient(
                jwks_uri, cache_keys=False, cache_jwk_set=False, timeout=timeout
            )
            fetch = client.get_jwk_set
        self._fetch = fetch
        self._fetch_lock = threading.Lock()

    @property
    def cache(self) -> KeySetCache:
        return self._cache

    def get_key_for_token(self, kid: str | None) -> PyJWK:
        if not kid:
            raise InvalidToken("Token header missing required 'kid'")

        cached = self._cache.get()
        if cached is not None:
            key = _find_key(cached, kid)
            if key is not None:
                return key
            if not self._gate.allow():
                raise ExternalVerificationError("Key refresh throttled")

        keyset = self._fetch_fresh(stale=cached)
        key = _find_key(keyset, kid)
        if key is None:
            logger.warning("jwks_kid_not_found", kid=kid, jwks_uri=self._uri)
            raise ExternalVerificationError("Signing key not found in key set")
        return key

    def _fetch_fresh(self, stale: PyJWKSet | None) -> PyJWKSet:
        with self._fetch_lock:
            current = self._cache.get()
            if current is not None and current is not stale:
                return current

            try:
                keyset = self._fetch()
            except (PyJWKClientError, PyJWKSetError, ValueError) as e:
                logger.error("jwks_fetch_failed", jwks_uri=self._uri, error=str(e))
                raise ExternalVerificationError("Key set unavailable") from e

            self._cache.set(keyset)
            logger.info("jwks_fetched", jwks_uri=self._uri, key_count=len(keyset.keys))
            return keyset


def _find_key(keyset: PyJWKSet, kid: str) -> PyJWK | None:
    for key in keyset.keys:
        if key.key_id == kid:
            return key
    return None
