import time

import jwt
import pytest
from jwt import PyJWKSet
from jwt.exceptions import PyJWKClientError

import foodflow_auth as m


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingFetch:
    """Stands in for PyJWKClient.get_jwk_set; serves whatever key set is current."""

    def __init__(self, *jwks: dict):
        self.jwks = list(jwks)
        self.calls = 0
        self.error: Exception | None = None

    def __call__(self) -> PyJWKSet:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return PyJWKSet.from_dict({"keys": self.jwks})


def sign(private_key, kid: str | None = "kid1", **claims) -> str:
    payload = {"userId": "ext-1", "email": "ext@example.com", "exp": int(time.time()) + 300}
    payload.update(claims)
    headers = {"kid": kid} if kid else None
    return jwt.encode(payload, private_key, algorithm="RS256", headers=headers)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetch(make_rsa_jwk):
    return CountingFetch(make_rsa_jwk(kid="kid1"))


@pytest.fixture
def provider(fetch, clock):
    return m.JWKSKeyProvider(
        "https://idp.example/jwks",
        ttl_seconds=3600,
        fetch=fetch,
        gate=m.RefreshGate(min_interval=10, clock=clock),
        clock=clock,
    )


@pytest.fixture
def remote_codec(provider, session_store, jwt_config):
    cfg = m.AuthConfig(
        jwt=jwt_config,
        sso=m.SSOConfig(
            enabled=True,
            provider="authentik",
            base_url="https://idp.example",
            client_id="client",
            jwks_uri="https://idp.example/jwks",
        ),
    )
    return m.TokenCodec(cfg, session_store, remote_provider=provider)


class TestRemoteVerification:
    def test_verify_dispatches_to_remote_keys(self, remote_codec, rsa_private_key):
        token = sign(rsa_private_key, aud="whatever-the-idp-uses", iss="https://idp.example/")

        claims = remote_codec.verify(token)

        assert remote_codec.remote_verification is True
        assert claims["userId"] == "ext-1"

    def test_missing_kid_rejected(self, remote_codec, rsa_private_key):
        with pytest.raises(m.InvalidToken):
            remote_codec.verify_with_remote_keys(sign(rsa_private_key, kid=None))

    def test_hs256_token_rejected(self, remote_codec):
        token = jwt.encode(
            {"userId": "u1"}, "x" * 64, algorithm="HS256", headers={"kid": "kid1"}
        )
        with pytest.raises(m.InvalidToken):
            remote_codec.verify_with_remote_keys(token)

    def test_unknown_kid_is_external_error(self, remote_codec, rsa_private_key):
        with pytest.raises(m.ExternalVerificationError):
            remote_codec.verify(sign(rsa_private_key, kid="nope"))

    def test_unreachable_key_set_is_external_error(self, remote_codec, fetch, rsa_private_key):
        fetch.error = PyJWKClientError("connection refused")
        with pytest.raises(m.ExternalVerificationError):
            remote_codec.verify(sign(rsa_private_key))


class TestKeySetCaching:
    def test_cache_hit_within_ttl_avoids_refetch(self, provider, fetch, clock):
        provider.get_key_for_token("kid1")
        clock.now += 3599
        provider.get_key_for_token("kid1")

        assert fetch.calls == 1

    def test_refetch_after_ttl(self, provider, fetch, clock):
        provider.get_key_for_token("kid1")
        clock.now += 3600
        provider.get_key_for_token("kid1")

        assert fetch.calls == 2

    def test_unknown_kid_forces_refetch(self, provider, fetch, make_rsa_jwk):
        provider.get_key_for_token("kid1")
        fetch.jwks.append(make_rsa_jwk(kid="kid2"))

        key = provider.get_key_for_token("kid2")

        assert key.key_id == "kid2"
        assert fetch.calls == 2

    def test_forced_refetch_is_throttled(self, provider, fetch, clock):
        provider.get_key_for_token("kid1")

        with pytest.raises(m.ExternalVerificationError):
            provider.get_key_for_token("rotated-1")
        with pytest.raises(m.ExternalVerificationError, match="throttled"):
            provider.get_key_for_token("rotated-2")
        assert fetch.calls == 2

        clock.now += 10
        with pytest.raises(m.ExternalVerificationError, match="not found"):
            provider.get_key_for_token("rotated-3")
        assert fetch.calls == 3

    def test_cache_is_owned_by_provider(self, provider, fetch):
        provider.get_key_for_token("kid1")
        provider.cache.clear()
        provider.get_key_for_token("kid1")

        assert fetch.calls == 2


class TestKeySetCache:
    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            m.KeySetCache(ttl_seconds=0)

    def test_expiry(self, make_rsa_jwk):
        clock = FakeClock()
        cache = m.KeySetCache(ttl_seconds=5, clock=clock)
        keyset = PyJWKSet.from_dict({"keys": [make_rsa_jwk()]})

        cache.set(keyset)
        assert cache.get() is keyset

        clock.now += 5
        assert cache.get() is None
