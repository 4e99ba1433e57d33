"""
FoodFlow authentication and authorization core for Flask.

High-level flow (per request)
-----------------------------
1. `AuthExtension.require()` (or `require_role(...)`) decorator runs.
2. `BearerExtractor` pulls the raw JWT from `Authorization: Bearer <token>`.
3. The token is checked against the logout blacklist. If the store is down
   the request is rejected (fail-closed).
4. `TokenCodec.verify(token)`:
   - local mode: configured secret / public key, issuer, audience, algorithm
   - remote mode (SSO with `SSO_JWKS_URI`): identity provider's JWKS, RS256
5. Role-gated routes re-read the user's role from the database through
   `RoleResolver`; the role in the token is never trusted.
6. On success: claims are in `flask.g.jwt`, the user in `flask.g.user`.

Sessions
--------
Every token pair shares a `sessionId`. The refresh token is stored under
`refresh_token:<sessionId>` and consumed when it is used, so each refresh
token works once. Logout blacklists the access token and deletes the session.

Example usage
-------------

.. code-block:: python

    from flask import g
    from foodflow_auth import ADMIN_ROLES, create_app, get_services

    app = create_app()          # reads the environment / .env
    auth = get_services(app).auth

    @app.get("/admin/orders")
    @auth.require_role(*ADMIN_ROLES)
    def orders():
        return {"requestedBy": g.user.email}
"""

# Application
from .app import AuthServices, create_app, get_services

# Cache stores
from .cache_stores import KeySetCache, RedisCache

# Configuration
from .config import (
    AuthConfig,
    JWTConfig,
    SessionCookieConfig,
    SSOConfig,
    load_auth_config,
    parse_duration,
    validate_auth_config,
)

# CSRF
from .csrf import CSRFGuard

# Errors
from .errors import (
    AuthError,
    ConfigurationError,
    CSRFTokenMismatch,
    CSRFTokenMissing,
    ExpiredToken,
    ExternalVerificationError,
    InsufficientPrivilege,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidToken,
    MissingToken,
    SessionStoreUnavailable,
    SSOAuthenticationFailed,
    SSODisabled,
    TokenRevoked,
    Unauthenticated,
)

# Extractors
from .extractors import BearerExtractor, CookieExtractor

# Flask extension
from .flask_extension import AuthExtension, get_auth

# Key providers
from .key_providers import JWKSKeyProvider, StaticKeyProvider

# Logging
from .logging_config import configure_logging

# Protocols
from .protocols import (
    Claims,
    Extractor,
    KeyProvider,
    SessionStore,
    TokenVerifier,
    UserStore,
    ViewFunc,
)

# Refresh gate
from .refresh_gate import RefreshGate

# Roles
from .roles import (
    ADMIN_ROLES,
    ALL_ROLES,
    OWNER_ROLES,
    STAFF_ROLES,
    Role,
    RoleResolver,
    UserView,
    has_minimum_role,
    has_role,
    role_level,
)

# Session store
from .session_store import InMemorySessionStore, RedisSessionStore

# SSO
from .sso import SSOBridge, SSOLoginResult, SSOProfile

# Token codec
from .token_codec import TokenCodec, TokenPair

# User store
from .user_store import SQLAlchemyUserStore

# Verifier
from .verifier import JWTVerifier, JWTVerifyOptions

__all__ = [
    # Application
    "AuthServices",
    "create_app",
    "get_services",
    # Configuration
    "AuthConfig",
    "JWTConfig",
    "SSOConfig",
    "SessionCookieConfig",
    "load_auth_config",
    "parse_duration",
    "validate_auth_config",
    "configure_logging",
    # Errors
    "AuthError",
    "ConfigurationError",
    "CSRFTokenMismatch",
    "CSRFTokenMissing",
    "ExpiredToken",
    "ExternalVerificationError",
    "InsufficientPrivilege",
    "InvalidCredentials",
    "InvalidRefreshToken",
    "InvalidToken",
    "MissingToken",
    "SessionStoreUnavailable",
    "SSOAuthenticationFailed",
    "SSODisabled",
    "TokenRevoked",
    "Unauthenticated",
    # Protocols
    "Claims",
    "Extractor",
    "KeyProvider",
    "SessionStore",
    "TokenVerifier",
    "UserStore",
    "ViewFunc",
    # Token codec
    "TokenCodec",
    "TokenPair",
    "JWTVerifier",
    "JWTVerifyOptions",
    "JWKSKeyProvider",
    "StaticKeyProvider",
    "RefreshGate",
    "KeySetCache",
    # Sessions
    "InMemorySessionStore",
    "RedisSessionStore",
    # Roles
    "ADMIN_ROLES",
    "ALL_ROLES",
    "OWNER_ROLES",
    "STAFF_ROLES",
    "Role",
    "RoleResolver",
    "UserView",
    "has_minimum_role",
    "has_role",
    "role_level",
    "SQLAlchemyUserStore",
    # SSO
    "SSOBridge",
    "SSOLoginResult",
    "SSOProfile",
    # Request layer
    "BearerExtractor",
    "CookieExtractor",
    "CSRFGuard",
    "AuthExtension",
    "get_auth",
    "RedisCache",
]
