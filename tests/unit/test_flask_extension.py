"""
Tests for the AuthExtension request gate.

Covers extraction, blacklist (fail-closed), verification and role checks.
"""

import pytest
from flask import Flask, g

import foodflow_auth as m
from foodflow_auth.error_handling import register_error_handlers


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def gate_app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    register_error_handlers(app)
    return app


@pytest.fixture
def auth(codec, user_store):
    return m.AuthExtension(codec, m.RoleResolver(codec, user_store))


@pytest.fixture
def protected(gate_app, auth):
    auth.init_app(gate_app)

    @gate_app.get("/x")
    @auth.require()
    def x():
        return {"userId": g.jwt["userId"]}

    @gate_app.get("/admin")
    @auth.require_role(*m.ADMIN_ROLES)
    def admin():
        return {"role": g.user.role}

    @gate_app.get("/staff")
    @auth.require_minimum_role("staff")
    def staff():
        return {"role": g.user.role}

    @gate_app.get("/maybe")
    @auth.optional()
    def maybe():
        return {"userId": g.jwt["userId"] if g.jwt else None}

    return gate_app.test_client()


class TestRequire:
    def test_missing_token_returns_401(self, protected):
        r = protected.get("/x")

        assert r.status_code == 401
        body = r.get_json()["error"]
        assert body["code"] == "MISSING_TOKEN"
        assert body["statusCode"] == 401
        assert body["path"] == "/x"
        assert body["requestId"]
        assert body["timestamp"]

    def test_wrong_scheme_returns_401(self, protected):
        r = protected.get("/x", headers={"Authorization": "Basic abc"})
        assert r.status_code == 401

    def test_invalid_token_returns_401(self, protected):
        r = protected.get("/x", headers=bearer("garbage"))

        assert r.status_code == 401
        assert r.get_json()["error"]["code"] == "INVALID_TOKEN"

    def test_valid_token_sets_claims(self, protected, codec):
        pair = codec.issue("u1", "u1@example.com")

        r = protected.get("/x", headers=bearer(pair.access_token))

        assert r.status_code == 200
        assert r.get_json() == {"userId": "u1"}

    def test_refresh_token_is_not_an_access_token(self, protected, codec):
        pair = codec.issue("u1", "u1@example.com")

        r = protected.get("/x", headers=bearer(pair.refresh_token))

        assert r.status_code == 401

    def test_blacklisted_token_rejected_other_token_accepted(self, protected, codec):
        first = codec.issue("u1", "u1@example.com")
        second = codec.issue("u1", "u1@example.com")

        codec.blacklist(first.access_token)

        r1 = protected.get("/x", headers=bearer(first.access_token))
        r2 = protected.get("/x", headers=bearer(second.access_token))
        assert r1.status_code == 401
        assert r1.get_json()["error"]["code"] == "TOKEN_REVOKED"
        assert r2.status_code == 200

    def test_store_outage_fails_closed(self, gate_app, auth_config, fake_redis):
        codec = m.TokenCodec(auth_config, m.RedisSessionStore(fake_redis))
        auth = m.AuthExtension(codec)

        @gate_app.get("/x")
        @auth.require()
        def x():
            return {"ok": True}

        token = codec.issue("u1", "u1@example.com").access_token
        fake_redis.fail = True

        r = gate_app.test_client().get("/x", headers=bearer(token))

        assert r.status_code == 401

    def test_unexpected_gate_error_is_generic_401(self, gate_app, codec):
        class BrokenExtractor:
            def extract(self):
                raise RuntimeError("boom")

        auth = m.AuthExtension(codec, extractor=BrokenExtractor())

        @gate_app.get("/x")
        @auth.require()
        def x():
            return {"ok": True}

        r = gate_app.test_client().get("/x")

        assert r.status_code == 401
        assert r.get_json()["error"]["message"] == "Authentication failed"

    def test_cookie_extractor(self, gate_app, codec):
        auth = m.AuthExtension(codec, extractor=m.CookieExtractor("access_token"))

        @gate_app.get("/x")
        @auth.require()
        def x():
            return {"userId": g.jwt["userId"]}

        client = gate_app.test_client()
        assert client.get("/x").status_code == 401

        client.set_cookie("access_token", codec.issue("u9", "u9@example.com").access_token)
        assert client.get("/x").get_json() == {"userId": "u9"}

    def test_cookie_extractor_rejects_empty_name(self):
        with pytest.raises(ValueError):
            m.CookieExtractor(" ")


class TestRequireRole:
    def test_allowed_role(self, protected, codec, user_store):
        owner = user_store.create_user("owner@example.com", "hash", role="owner")
        token = codec.issue(owner.id, owner.email).access_token

        r = protected.get("/admin", headers=bearer(token))

        assert r.status_code == 200
        assert r.get_json() == {"role": "owner"}

    def test_insufficient_role_exposes_required_and_current(self, protected, codec, user_store):
        customer = user_store.create_user("c@example.com", "hash")
        token = codec.issue(customer.id, customer.email).access_token

        r = protected.get("/admin", headers=bearer(token))

        assert r.status_code == 403
        body = r.get_json()["error"]
        assert body["code"] == "INSUFFICIENT_PRIVILEGES"
        assert body["details"] == {"required": ["admin", "owner"], "current": "customer"}

    def test_minimum_role(self, protected, codec, user_store):
        staff = user_store.create_user("s@example.com", "hash", role="staff")
        customer = user_store.create_user("c@example.com", "hash")

        ok = protected.get("/staff", headers=bearer(codec.issue(staff.id, staff.email).access_token))
        denied = protected.get(
            "/staff", headers=bearer(codec.issue(customer.id, customer.email).access_token)
        )

        assert ok.status_code == 200
        assert denied.status_code == 403

    def test_unknown_user_is_401(self, protected, codec):
        token = codec.issue("ghost", "ghost@example.com").access_token
        assert protected.get("/admin", headers=bearer(token)).status_code == 401

    def test_blacklisted_token_rejected(self, protected, codec, user_store):
        owner = user_store.create_user("owner@example.com", "hash", role="owner")
        token = codec.issue(owner.id, owner.email).access_token
        codec.blacklist(token)

        assert protected.get("/admin", headers=bearer(token)).status_code == 401

    def test_require_role_needs_resolver(self, codec):
        with pytest.raises(RuntimeError):
            m.AuthExtension(codec).require_role("admin")


class TestOptional:
    def test_anonymous(self, protected):
        assert protected.get("/maybe").get_json() == {"userId": None}

    def test_authenticated(self, protected, codec):
        token = codec.issue("u1", "u1@example.com").access_token
        assert protected.get("/maybe", headers=bearer(token)).get_json() == {"userId": "u1"}

    def test_invalid_token_is_anonymous(self, protected):
        r = protected.get("/maybe", headers=bearer("garbage"))
        assert r.status_code == 200
        assert r.get_json() == {"userId": None}
