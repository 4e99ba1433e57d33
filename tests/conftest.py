import json
import time

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import foodflow_auth as m

SECRET = "unit-test-secret-0123456789abcdef-unit-test-secret-0123456789abcdef"


class FakeRedis:
    """
    Minimal redis stub with decode_responses=True semantics.
    Values are strings; TTLs use wall-clock seconds.
    Set ``fail = True`` to make every call raise a connection error.
    """

    def __init__(self):
        self._store: dict[str, tuple[object, float | None]] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis is down")

    def _live(self, key: str):
        item = self._store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and time.time() >= expires_at:
            self._store.pop(key, None)
            return None
        return value

    def get(self, key: str):
        self._check()
        return self._live(key)

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        self._check()
        if nx and self._live(key) is not None:
            return None
        self._store[key] = (value, time.time() + ex if ex else None)
        return True

    def setex(self, key: str, ttl_seconds: int, value: str):
        self._check()
        self._store[key] = (value, time.time() + int(ttl_seconds))
        return True

    def getdel(self, key: str):
        self._check()
        value = self._live(key)
        self._store.pop(key, None)
        return value

    def delete(self, *keys: str):
        self._check()
        removed = 0
        for key in keys:
            if self._store.pop(key, None) is not None:
                removed += 1
        return removed

    def sadd(self, key: str, *members: str):
        self._check()
        current = self._live(key) or set()
        current = set(current) | set(members)
        expires_at = self._store.get(key, (None, None))[1]
        self._store[key] = (current, expires_at)
        return len(members)

    def smembers(self, key: str):
        self._check()
        return set(self._live(key) or set())

    def expire(self, key: str, ttl_seconds: int):
        self._check()
        if key not in self._store:
            return False
        value, _ = self._store[key]
        self._store[key] = (value, time.time() + ttl_seconds)
        return True

    def ping(self):
        self._check()
        return True

    def ttl(self, key: str) -> int:
        item = self._store.get(key)
        if item is None or item[1] is None:
            return -1
        return int(item[1] - time.time())


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def jwt_config() -> m.JWTConfig:
    return m.JWTConfig(secret=SECRET)


@pytest.fixture
def auth_config(jwt_config: m.JWTConfig) -> m.AuthConfig:
    return m.AuthConfig(jwt=jwt_config, flask_secret_key="flask-test-secret")


@pytest.fixture
def session_store() -> m.InMemorySessionStore:
    return m.InMemorySessionStore()


@pytest.fixture
def codec(auth_config: m.AuthConfig, session_store: m.InMemorySessionStore) -> m.TokenCodec:
    return m.TokenCodec(auth_config, session_store)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> m.SQLAlchemyUserStore:
    store = m.SQLAlchemyUserStore(engine)
    store.create_tables()
    return store


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_pem(rsa_private_key) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def make_rsa_jwk(rsa_private_key):
    """
    Factory fixture returning a public JWK dict for the session RSA key.

    Usage in tests:
        jwk = make_rsa_jwk(kid="k1")
    """

    def _make(*, kid: str = "kid1") -> dict:
        jwk = json.loads(RSAAlgorithm.to_jwk(rsa_private_key.public_key()))
        jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
        return jwk

    return _make


@pytest.fixture
def app(auth_config, fake_redis, engine):
    flask_app = m.create_app(auth_config, redis_client=fake_redis, engine=engine)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
