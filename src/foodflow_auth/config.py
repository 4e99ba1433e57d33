"""Auth configuration loaded from the environment.

Values come from ``os.environ`` (after ``load_dotenv()``), are parsed into
frozen dataclasses and validated once at startup. An invalid configuration
raises ConfigurationError so the process never starts serving traffic.
"""

from __future__ import annotations

import os
import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Final

import structlog
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = structlog.get_logger(__name__)

SUPPORTED_ALGORITHMS: Final[frozenset[str]] = frozenset({"HS256", "RS256"})
ASYMMETRIC_ALGORITHMS: Final[frozenset[str]] = frozenset({"RS256"})
SSO_PROVIDERS: Final[frozenset[str]] = frozenset({"authentik", "keycloak", "auth0", "none"})

_DURATION_RE: Final = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS: Final[dict[str, int]] = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


def parse_duration(value: str | int) -> int:
    """Parse ``"30s"``, ``"15m"``, ``"1h"``, ``"7d"`` or plain seconds.

    Raises:
        ConfigurationError: If the value is not a positive duration.
    """
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(value)
        if not match:
            raise ConfigurationError(f"Invalid duration: {value!r}")
        seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ConfigurationError(f"Duration must be positive: {value!r}")
    return seconds


def _flag(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True, slots=True)
class JWTConfig:
    """Token signing and verification settings.

    Attributes:
        secret: HMAC shared secret for HS256, or the PEM private key for RS256.
        public_key: PEM public key used to verify RS256 tokens locally.
        algorithm: Signing algorithm, "HS256" or "RS256".
        expires_in: Access-token lifetime in seconds.
        refresh_expires_in: Refresh-token and session lifetime in seconds.
        issuer: Value of the ``iss`` claim.
        audience: Value of the ``aud`` claim.
        leeway: Clock skew tolerance in seconds.
    """

    secret: str
    public_key: str | None = None
    algorithm: str = "HS256"
    expires_in: int = 3600
    refresh_expires_in: int = 7 * 86400
    issuer: str = "foodflow-api"
    audience: str = "foodflow-app"
    leeway: int = 0


@dataclass(frozen=True, slots=True)
class SSOConfig:
    """Federated identity provider settings (Authentik compatible)."""

    enabled: bool = False
    provider: str = "none"
    base_url: str | None = None
    realm: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    jwks_uri: str | None = None
    userinfo_endpoint: str | None = None
    token_endpoint: str | None = None
    authorization_endpoint: str | None = None
    introspection_endpoint: str | None = None

    @property
    def remote_verification(self) -> bool:
        """Whether bearer tokens are verified against the remote key set."""
        return self.enabled and bool(self.jwks_uri)


@dataclass(frozen=True, slots=True)
class SessionCookieConfig:
    cookie_name: str = "foodflow_session"
    secure: bool = False
    http_only: bool = True
    same_site: str = "Lax"
    max_age: int = 7 * 86400


@dataclass(frozen=True, slots=True)
class AuthConfig:
    """Top-level configuration for the auth core and its Flask app."""

    jwt: JWTConfig
    sso: SSOConfig = field(default_factory=SSOConfig)
    session: SessionCookieConfig = field(default_factory=SessionCookieConfig)
    environment: str = "development"
    redis_url: str = "redis://localhost:6379/0"
    database_url: str = "sqlite:///foodflow.db"
    flask_secret_key: str | None = None
    cors_origins: tuple[str, ...] = ()
    jwks_cache_ttl: int = 3600
    http_timeout: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def derive_sso_endpoints(sso: SSOConfig) -> SSOConfig:
    """Fill in unset token/userinfo/authorization endpoints for known providers.

    Explicit endpoints always win. The JWKS URI is never derived: remote token
    verification stays opt-in through ``SSO_JWKS_URI``.
    """
    if not sso.base_url:
        return sso

    base = sso.base_url.rstrip("/")
    derived: dict[str, str]
    if sso.provider == "keycloak" and sso.realm:
        oidc = f"{base}/realms/{sso.realm}/protocol/openid-connect"
        derived = {
            "token_endpoint": f"{oidc}/token",
            "userinfo_endpoint": f"{oidc}/userinfo",
            "authorization_endpoint": f"{oidc}/auth",
            "introspection_endpoint": f"{oidc}/token/introspect",
        }
    elif sso.provider == "authentik":
        derived = {
            "token_endpoint": f"{base}/application/o/token/",
            "userinfo_endpoint": f"{base}/application/o/userinfo/",
            "authorization_endpoint": f"{base}/application/o/authorize/",
            "introspection_endpoint": f"{base}/application/o/introspect/",
        }
    elif sso.provider == "auth0":
        derived = {
            "token_endpoint": f"{base}/oauth/token",
            "userinfo_endpoint": f"{base}/userinfo",
            "authorization_endpoint": f"{base}/authorize",
        }
    else:
        return sso

    updates = {name: url for name, url in derived.items() if not getattr(sso, name)}
    return replace(sso, **updates)


def validate_auth_config(config: AuthConfig) -> None:
    """Fail fast on configurations that cannot work.

    Raises:
        ConfigurationError: On any violated rule.
    """
    jwt_cfg = config.jwt
    sso = config.sso

    if jwt_cfg.algorithm not in SUPPORTED_ALGORITHMS:
        raise ConfigurationError(f"Unsupported JWT_ALGORITHM: {jwt_cfg.algorithm}")
    if sso.provider not in SSO_PROVIDERS:
        raise ConfigurationError(f"Unsupported SSO_PROVIDER: {sso.provider}")
    if not jwt_cfg.secret:
        raise ConfigurationError("JWT_SECRET must not be empty")

    if sso.enabled:
        if not sso.base_url:
            raise ConfigurationError("SSO_BASE_URL is required when SSO is enabled")
        if not sso.client_id:
            raise ConfigurationError("SSO_CLIENT_ID is required when SSO is enabled")
        if sso.provider == "authentik" and not sso.jwks_uri and not jwt_cfg.public_key:
            logger.warning(
                "sso_key_material_missing",
                provider=sso.provider,
                hint="Neither SSO_JWKS_URI nor JWT_PUBLIC_KEY is set; token validation may fail",
            )

    if jwt_cfg.algorithm in ASYMMETRIC_ALGORITHMS and not jwt_cfg.public_key and not sso.jwks_uri:
        raise ConfigurationError(
            f"{jwt_cfg.algorithm} algorithm requires either JWT_PUBLIC_KEY or SSO_JWKS_URI"
        )


def _jwt_secret(env: Mapping[str, str], production: bool) -> str:
    secret = env.get("JWT_SECRET")
    if secret:
        return secret
    if production:
        raise ConfigurationError("JWT_SECRET must be set in production environment")
    logger.warning("jwt_secret_generated", hint="Set JWT_SECRET outside development")
    return secrets.token_hex(64)


def load_auth_config(env: Mapping[str, str] | None = None) -> AuthConfig:
    """Build and validate an AuthConfig.

    Args:
        env: Mapping to read from. Defaults to ``os.environ`` after loading a
            ``.env`` file if present.

    Raises:
        ConfigurationError: If a value is malformed or a validation rule fails.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    environment = env.get("APP_ENV", "development")
    production = environment == "production"

    jwt_cfg = JWTConfig(
        secret=_jwt_secret(env, production),
        public_key=env.get("JWT_PUBLIC_KEY") or None,
        algorithm=env.get("JWT_ALGORITHM", "HS256"),
        expires_in=parse_duration(env.get("JWT_EXPIRES_IN", "1h")),
        refresh_expires_in=parse_duration(env.get("JWT_REFRESH_EXPIRES_IN", "7d")),
        issuer=env.get("JWT_ISSUER", "foodflow-api"),
        audience=env.get("JWT_AUDIENCE", "foodflow-app"),
    )

    sso = derive_sso_endpoints(
        SSOConfig(
            enabled=_flag(env.get("SSO_ENABLED")),
            provider=env.get("SSO_PROVIDER", "none"),
            base_url=env.get("SSO_BASE_URL") or None,
            realm=env.get("SSO_REALM") or None,
            client_id=env.get("SSO_CLIENT_ID") or None,
            client_secret=env.get("SSO_CLIENT_SECRET") or None,
            redirect_uri=env.get("SSO_REDIRECT_URI") or None,
            jwks_uri=env.get("SSO_JWKS_URI") or None,
            userinfo_endpoint=env.get("SSO_USERINFO_ENDPOINT") or None,
            token_endpoint=env.get("SSO_TOKEN_ENDPOINT") or None,
            authorization_endpoint=env.get("SSO_AUTHORIZATION_ENDPOINT") or None,
            introspection_endpoint=env.get("SSO_INTROSPECTION_ENDPOINT") or None,
        )
    )

    session = SessionCookieConfig(
        cookie_name=env.get("SESSION_COOKIE_NAME", "foodflow_session"),
        secure=production,
        http_only=True,
        same_site="Strict" if production else "Lax",
        max_age=7 * 86400,
    )

    origins = tuple(o.strip() for o in env.get("CORS_ORIGINS", "").split(",") if o.strip())

    config = AuthConfig(
        jwt=jwt_cfg,
        sso=sso,
        session=session,
        environment=environment,
        redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
        database_url=env.get("DATABASE_URL", "sqlite:///foodflow.db"),
        flask_secret_key=env.get("FLASK_SECRET_KEY") or None,
        cors_origins=origins,
        jwks_cache_ttl=parse_duration(env.get("JWKS_CACHE_TTL", "1h")),
        http_timeout=float(env.get("HTTP_TIMEOUT", "10")),
    )
    validate_auth_config(config)
    return config
