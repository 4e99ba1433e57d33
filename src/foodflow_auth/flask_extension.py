"""Flask request gate for JWT authentication and role authorization.

Security Model:
1. Extract the bearer token (header by default)
2. Reject blacklisted tokens; a store outage counts as revoked (fail-closed)
3. Verify signature and claims through the Token Codec
4. Reject refresh tokens presented as access tokens
5. Store verified claims in ``flask.g.jwt`` for the view
6. For role-gated routes, re-read the user's role from the user store and
   store the user in ``flask.g.user``

Errors are raised as AuthError and rendered by the handlers installed in
``error_handling``. Unexpected failures inside the gate become a generic 401.
"""

from __future__ import annotations

from functools import wraps
from typing import TYPE_CHECKING, Any, Final

import structlog
from flask import Flask, g

from .errors import (
    AuthError,
    InvalidToken,
    SessionStoreUnavailable,
    TokenRevoked,
    Unauthenticated,
)
from .extractors import BearerExtractor
from .roles import roles_at_least
from .token_codec import REFRESH_TOKEN_TYPE

if TYPE_CHECKING:
    from collections.abc import Callable

    from .protocols import Claims, Extractor, ViewFunc
    from .roles import RoleResolver
    from .token_codec import TokenCodec

logger = structlog.get_logger(__name__)

_EXT_KEY: Final[str] = "auth_extension"
"""Flask extensions registry key for AuthExtension."""


class AuthExtension:
    """
    Flask decorator glue for the auth core.

    Responsibilities:
    - Extract token from request
    - Check the blacklist (fail-closed)
    - Verify token (TokenCodec)
    - Store verified claims in `flask.g.jwt`
    - Optionally authorize by current role (RoleResolver)

    Usage:
        auth = AuthExtension(codec, resolver)
        auth.init_app(app)

        @app.get("/me")
        @auth.require()
        def me(): ...

        @app.get("/admin/orders")
        @auth.require_role(*ADMIN_ROLES)
        def orders(): ...
    """

    def __init__(
        self,
        codec: TokenCodec,
        resolver: RoleResolver | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        self._codec = codec
        self._resolver = resolver
        self._extractor: Extractor = extractor or BearerExtractor()

    def init_app(
        self,
        app: Flask,
        *,
        codec: TokenCodec | None = None,
        resolver: RoleResolver | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        """Register the extension on ``app``, optionally replacing collaborators."""
        if codec is not None:
            self._codec = codec
        if resolver is not None:
            self._resolver = resolver
        if extractor is not None:
            self._extractor = extractor

        app.extensions[_EXT_KEY] = self

    def _check_not_revoked(self, token: str) -> None:
        try:
            revoked = self._codec.is_revoked(token)
        except SessionStoreUnavailable:
            logger.error("blacklist_check_unavailable")
            raise Unauthenticated()
        if revoked:
            raise TokenRevoked()

    def authenticate(self, *, local: bool = False) -> Claims:
        """Run the gate for the current request and return verified claims.

        With ``local=True`` the token is checked against the service's own
        key even when remote verification is configured. Use it for routes
        that only accept tokens minted here, such as logout.
        """
        token = self._extractor.extract()
        self._check_not_revoked(token)

        claims = self._codec.verify_local(token) if local else self._codec.verify(token)
        if claims.get("type") == REFRESH_TOKEN_TYPE:
            raise InvalidToken("Refresh tokens cannot be used for authentication")

        g.jwt = claims
        g.access_token = token
        return claims

    def _guard(self, step: Callable[[], Any]) -> None:
        try:
            step()
        except AuthError:
            raise
        except Exception:
            logger.exception("authentication_unexpected_error")
            raise Unauthenticated()

    def require(self, *, local: bool = False):
        """Decorator: the view runs only for a valid, unrevoked access token.

        ``local`` is passed to ``authenticate``.

        Side Effects:
            Writes ``flask.g.jwt`` and ``flask.g.access_token``.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                self._guard(lambda: self.authenticate(local=local))
                return view(*args, **kwargs)

            return wrapper

        return decorator

    def require_role(self, *roles: str):
        """Decorator: authenticate, then admit only users whose current role is in ``roles``.

        Side Effects:
            Writes ``flask.g.user`` (UserView) and ``flask.g.access_token``.
        """
        if self._resolver is None:
            raise RuntimeError("require_role needs a RoleResolver")
        if not roles:
            raise ValueError("require_role needs at least one role")
        allowed = frozenset(roles)

        def authorize() -> None:
            token = self._extractor.extract()
            self._check_not_revoked(token)
            g.user = self._resolver.authorize(token, allowed)
            g.access_token = token

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                self._guard(authorize)
                return view(*args, **kwargs)

            return wrapper

        return decorator

    def require_minimum_role(self, min_role: str):
        """Decorator: like ``require_role`` with every role ranked at or above ``min_role``."""
        return self.require_role(*roles_at_least(min_role))

    def optional(self):
        """Decorator: authenticate if possible, never reject.

        ``flask.g.jwt`` is None for anonymous or invalid callers.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                g.jwt = None
                try:
                    self.authenticate()
                except AuthError as e:
                    g.jwt = None
                    logger.debug("optional_authentication_skipped", code=e.code)
                return view(*args, **kwargs)

            return wrapper

        return decorator


def get_auth(app: Flask) -> AuthExtension:
    return app.extensions[_EXT_KEY]
