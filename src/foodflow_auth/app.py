"""Application factory wiring the auth core into a Flask app."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import redis
import structlog
from flask import Flask, request
from flask_cors import CORS
from sqlalchemy import create_engine

from .cache_stores import RedisCache
from .config import AuthConfig, load_auth_config
from .csrf import CSRFGuard
from .error_handling import register_error_handlers, request_id
from .flask_extension import AuthExtension
from .logging_config import configure_logging
from .roles import RoleResolver
from .routes import create_auth_blueprint, create_health_blueprint
from .session_store import RedisSessionStore
from .sso import SSOBridge
from .token_codec import TokenCodec
from .user_store import SQLAlchemyUserStore

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from .protocols import KeyProvider, SessionStore
    from .sso import SessionFactory

logger = structlog.get_logger(__name__)

_EXT_KEY: Final[str] = "foodflow_auth"


@dataclass(frozen=True, slots=True)
class AuthServices:
    """Components shared by every request, stored in ``app.extensions``."""

    config: AuthConfig
    codec: TokenCodec
    sessions: SessionStore
    users: SQLAlchemyUserStore
    resolver: RoleResolver
    sso: SSOBridge
    csrf: CSRFGuard
    cache: RedisCache
    auth: AuthExtension


def get_services(app: Flask) -> AuthServices:
    return app.extensions[_EXT_KEY]


def _bind_request_context() -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id(), method=request.method, path=request.path
    )


def _tag_response(response: Any) -> Any:
    response.headers["X-Request-ID"] = request_id()
    return response


def create_app(
    config: AuthConfig | None = None,
    *,
    redis_client: Any = None,
    engine: Engine | None = None,
    session_store: SessionStore | None = None,
    remote_key_provider: KeyProvider | None = None,
    sso_session_factory: SessionFactory | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Collaborators default to clients built from ``config``; tests inject
    fakes instead.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    configure_logging()
    if config is None:
        config = load_auth_config()

    if redis_client is None:
        redis_client = redis.Redis.from_url(
            config.redis_url,
            decode_responses=True,
            socket_timeout=config.http_timeout,
            socket_connect_timeout=config.http_timeout,
        )
    if engine is None:
        engine = create_engine(config.database_url, pool_pre_ping=True)

    app = Flask(__name__)
    if config.flask_secret_key:
        app.secret_key = config.flask_secret_key
    else:
        logger.warning("flask_secret_key_generated", hint="Set FLASK_SECRET_KEY to keep sessions across restarts")
        app.secret_key = secrets.token_hex(32)

    app.config.update(
        SESSION_COOKIE_NAME=config.session.cookie_name,
        SESSION_COOKIE_SECURE=config.session.secure,
        SESSION_COOKIE_HTTPONLY=config.session.http_only,
        SESSION_COOKIE_SAMESITE=config.session.same_site,
        PERMANENT_SESSION_LIFETIME=config.session.max_age,
    )

    if config.cors_origins:
        CORS(
            app,
            origins=list(config.cors_origins),
            supports_credentials=True,
            allow_headers=["Content-Type", "Authorization", "X-CSRF-Token", "X-Request-ID"],
            expose_headers=["X-CSRF-Token", "X-Request-ID"],
            methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            max_age=3600,
        )

    register_error_handlers(app, production=config.is_production)
    app.before_request(_bind_request_context)
    app.after_request(_tag_response)

    users = SQLAlchemyUserStore(engine)
    users.create_tables()

    sessions = session_store or RedisSessionStore(redis_client)
    codec = TokenCodec(config, sessions, remote_provider=remote_key_provider)
    resolver = RoleResolver(codec, users)
    sso = SSOBridge(
        config.sso,
        codec,
        users,
        session_factory=sso_session_factory,
        timeout=config.http_timeout,
        expose_errors=not config.is_production,
    )
    csrf = CSRFGuard(secure=config.is_production)
    csrf.init_app(app)
    auth = AuthExtension(codec, resolver)
    auth.init_app(app)
    cache = RedisCache(redis_client)

    app.extensions[_EXT_KEY] = AuthServices(
        config=config,
        codec=codec,
        sessions=sessions,
        users=users,
        resolver=resolver,
        sso=sso,
        csrf=csrf,
        cache=cache,
        auth=auth,
    )

    app.register_blueprint(create_auth_blueprint(auth, codec, users, sso, csrf))
    app.register_blueprint(create_health_blueprint(cache, engine))

    logger.info(
        "app_configured",
        environment=config.environment,
        algorithm=config.jwt.algorithm,
        sso_enabled=config.sso.enabled,
        remote_verification=codec.remote_verification,
    )
    return app
