"""HTTP surface of the auth core: ``/auth`` blueprint and ``/health``.

Blueprints are built by factory functions because the route decorators need
the configured AuthExtension instance.
"""

from __future__ import annotations

import hmac
import secrets
from typing import TYPE_CHECKING, Any

import structlog
from flask import Blueprint, g, jsonify, redirect, request, session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import BadRequest, Conflict
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import InvalidCredentials, SSOAuthenticationFailed
from .roles import ALL_ROLES
from .user_store import SSO_PASSWORD_SENTINEL, EmailAlreadyExists

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from .cache_stores import RedisCache
    from .csrf import CSRFGuard
    from .flask_extension import AuthExtension
    from .sso import SSOBridge
    from .token_codec import TokenCodec
    from .user_store import SQLAlchemyUserStore

logger = structlog.get_logger(__name__)

SSO_STATE_KEY = "sso_state"
MIN_PASSWORD_LENGTH = 8


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def _required_str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise BadRequest(f"'{name}' is required")
    return value.strip()


def create_auth_blueprint(
    auth: AuthExtension,
    codec: TokenCodec,
    users: SQLAlchemyUserStore,
    sso: SSOBridge,
    csrf: CSRFGuard,
) -> Blueprint:
    bp = Blueprint("auth", __name__, url_prefix="/auth")

    @bp.post("/register")
    def register():
        data = _json_body()
        email = _required_str(data, "email").lower()
        password = _required_str(data, "password")
        name = _required_str(data, "name")
        phone = data.get("phone") if isinstance(data.get("phone"), str) else None

        if "@" not in email:
            raise BadRequest("'email' must be a valid email address")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise BadRequest(f"'password' must be at least {MIN_PASSWORD_LENGTH} characters")

        first_name, _, last_name = name.partition(" ")
        try:
            user = users.create_user(
                email,
                generate_password_hash(password),
                first_name=first_name,
                last_name=last_name.strip() or None,
                phone=phone,
            )
        except EmailAlreadyExists:
            raise Conflict("Email already exists") from None

        tokens = codec.issue(user.id, user.email)
        return jsonify({"user": user.to_dict(), **tokens.as_dict()}), 201

    @bp.post("/login")
    def login():
        data = _json_body()
        email = _required_str(data, "email").lower()
        password = _required_str(data, "password")

        creds = users.get_credentials(email)
        if (
            creds is None
            or not creds.is_active
            or creds.password_hash == SSO_PASSWORD_SENTINEL
            or not check_password_hash(creds.password_hash, password)
        ):
            logger.info("login_failed")
            raise InvalidCredentials()

        tokens = codec.issue(creds.user.id, creds.user.email)
        logger.info("login_succeeded", user_id=creds.user.id)
        return jsonify({"user": creds.user.to_dict(), **tokens.as_dict()})

    @bp.post("/refresh")
    def refresh():
        data = _json_body()
        refresh_token = data.get("refreshToken")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise BadRequest("Refresh token is required")
        return jsonify(codec.refresh(refresh_token).as_dict())

    @bp.post("/logout")
    @auth.require(local=True)
    def logout():
        codec.blacklist(g.access_token, g.jwt)
        session_id = g.jwt.get("sessionId")
        if isinstance(session_id, str) and session_id:
            codec.revoke(session_id)
        return jsonify({"message": "Logged out successfully"})

    @bp.get("/me")
    @auth.require_role(*ALL_ROLES)
    def me():
        return jsonify({"user": g.user.to_dict()})

    @bp.get("/csrf-token")
    def csrf_token():
        return jsonify({"csrfToken": csrf.rotate()})

    @bp.get("/sso/login")
    def sso_login():
        state = secrets.token_urlsafe(32)
        url = sso.authorization_url(state)
        session[SSO_STATE_KEY] = state
        return redirect(url)

    @bp.get("/sso/callback")
    def sso_callback():
        expected = session.pop(SSO_STATE_KEY, None)
        state = request.args.get("state", "")
        code = request.args.get("code")

        if request.args.get("error"):
            logger.warning("sso_provider_error", error=request.args.get("error"))
            raise SSOAuthenticationFailed()
        if not expected or not hmac.compare_digest(expected, state):
            logger.warning("sso_state_mismatch")
            raise SSOAuthenticationFailed("Invalid SSO state")
        if not code:
            raise BadRequest("Missing authorization code")

        result = sso.handle_callback(code, state)
        return jsonify({"user": result.user.to_dict(), **result.tokens.as_dict()})

    return bp


def create_health_blueprint(cache: RedisCache, engine: Engine) -> Blueprint:
    bp = Blueprint("health", __name__, url_prefix="/health")

    @bp.get("")
    def health():
        checks = {"redis": "up" if cache.health_check() else "down"}
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = "up"
        except SQLAlchemyError as e:
            logger.error("health_database_down", error=str(e))
            checks["database"] = "down"

        healthy = all(v == "up" for v in checks.values())
        status = 200 if healthy else 503
        return jsonify({"status": "healthy" if healthy else "unhealthy", "checks": checks}), status

    @bp.get("/live")
    def live():
        return jsonify({"status": "alive"})

    return bp
