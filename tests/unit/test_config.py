import pytest

import foodflow_auth as m
from foodflow_auth.config import derive_sso_endpoints


class TestParseDuration:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("30s", 30), ("15m", 900), ("1h", 3600), ("7d", 604800), ("120", 120), (45, 45)],
    )
    def test_valid(self, raw, expected):
        assert m.parse_duration(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "1w", "-5m", "0"])
    def test_invalid(self, raw):
        with pytest.raises(m.ConfigurationError):
            m.parse_duration(raw)


class TestLoadAuthConfig:
    def test_defaults(self):
        cfg = m.load_auth_config({"JWT_SECRET": "s" * 64})

        assert cfg.jwt.algorithm == "HS256"
        assert cfg.jwt.expires_in == 3600
        assert cfg.jwt.refresh_expires_in == 7 * 86400
        assert cfg.jwt.issuer == "foodflow-api"
        assert cfg.jwt.audience == "foodflow-app"
        assert cfg.sso.enabled is False
        assert cfg.session.same_site == "Lax"
        assert cfg.session.secure is False
        assert cfg.is_production is False

    def test_development_generates_secret(self):
        cfg = m.load_auth_config({})
        assert len(cfg.jwt.secret) == 128

    def test_production_requires_secret(self):
        with pytest.raises(m.ConfigurationError, match="JWT_SECRET"):
            m.load_auth_config({"APP_ENV": "production"})

    def test_production_cookie_settings(self):
        cfg = m.load_auth_config({"APP_ENV": "production", "JWT_SECRET": "x" * 64})
        assert cfg.session.secure is True
        assert cfg.session.same_site == "Strict"

    def test_sso_enabled_without_base_url_fails(self):
        with pytest.raises(m.ConfigurationError, match="SSO_BASE_URL"):
            m.load_auth_config(
                {"JWT_SECRET": "s" * 64, "SSO_ENABLED": "true", "SSO_CLIENT_ID": "client"}
            )

    def test_sso_enabled_without_client_id_fails(self):
        with pytest.raises(m.ConfigurationError, match="SSO_CLIENT_ID"):
            m.load_auth_config(
                {"JWT_SECRET": "s" * 64, "SSO_ENABLED": "true", "SSO_BASE_URL": "https://idp"}
            )

    def test_rs256_requires_key_material(self):
        with pytest.raises(m.ConfigurationError, match="RS256"):
            m.load_auth_config({"JWT_SECRET": "s" * 64, "JWT_ALGORITHM": "RS256"})

    def test_rs256_with_jwks_uri_is_accepted(self):
        cfg = m.load_auth_config(
            {
                "JWT_SECRET": "s" * 64,
                "JWT_ALGORITHM": "RS256",
                "SSO_JWKS_URI": "https://idp/jwks",
            }
        )
        assert cfg.sso.jwks_uri == "https://idp/jwks"
        # Remote verification is only active with SSO enabled.
        assert cfg.sso.remote_verification is False

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(m.ConfigurationError):
            m.load_auth_config({"JWT_SECRET": "s" * 64, "JWT_ALGORITHM": "none"})

    def test_unknown_provider_rejected(self):
        with pytest.raises(m.ConfigurationError):
            m.load_auth_config({"JWT_SECRET": "s" * 64, "SSO_PROVIDER": "okta"})

    def test_cors_origins_are_split(self):
        cfg = m.load_auth_config(
            {"JWT_SECRET": "s" * 64, "CORS_ORIGINS": "https://a.example, https://b.example,"}
        )
        assert cfg.cors_origins == ("https://a.example", "https://b.example")


class TestDeriveSSOEndpoints:
    def test_keycloak(self):
        sso = derive_sso_endpoints(
            m.SSOConfig(enabled=True, provider="keycloak", base_url="https://kc/", realm="food")
        )
        assert sso.token_endpoint == "https://kc/realms/food/protocol/openid-connect/token"
        assert sso.userinfo_endpoint == "https://kc/realms/food/protocol/openid-connect/userinfo"
        assert sso.authorization_endpoint == "https://kc/realms/food/protocol/openid-connect/auth"
        assert sso.jwks_uri is None

    def test_authentik(self):
        sso = derive_sso_endpoints(
            m.SSOConfig(enabled=True, provider="authentik", base_url="https://ak")
        )
        assert sso.token_endpoint == "https://ak/application/o/token/"
        assert sso.authorization_endpoint == "https://ak/application/o/authorize/"

    def test_explicit_endpoint_wins(self):
        sso = derive_sso_endpoints(
            m.SSOConfig(
                enabled=True,
                provider="auth0",
                base_url="https://tenant.auth0.com",
                token_endpoint="https://custom/token",
            )
        )
        assert sso.token_endpoint == "https://custom/token"
        assert sso.userinfo_endpoint == "https://tenant.auth0.com/userinfo"
