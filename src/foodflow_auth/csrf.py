"""Double-submit cookie CSRF protection.

Safe requests (GET/HEAD/OPTIONS) receive a token in an HTTP-only
``csrf-token`` cookie and the ``X-CSRF-Token`` response header. Clients echo
it back in the ``x-csrf-token`` header on state-changing requests; the guard
only checks that cookie and header agree. No server-side state.

Paths under the exempt prefixes (login, register, refresh) are skipped
entirely since the caller has no token yet.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable
from typing import Final

import structlog
from flask import Flask, Response, g, request

from .errors import CSRFTokenMismatch, CSRFTokenMissing

logger = structlog.get_logger(__name__)

CSRF_COOKIE: Final[str] = "csrf-token"
CSRF_HEADER: Final[str] = "x-csrf-token"
CSRF_RESPONSE_HEADER: Final[str] = "X-CSRF-Token"
TOKEN_BYTES: Final[int] = 32

SAFE_METHODS: Final[frozenset[str]] = frozenset({"GET", "HEAD", "OPTIONS"})
DEFAULT_EXEMPT_PATHS: Final[tuple[str, ...]] = ("/auth/login", "/auth/register", "/auth/refresh")

_EXT_KEY: Final[str] = "csrf_guard"


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


class CSRFGuard:
    """Flask before/after-request hooks implementing the double-submit check.

    Usage:
        csrf = CSRFGuard(secure=config.is_production)
        csrf.init_app(app)
    """

    def __init__(self, exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS, *, secure: bool = False) -> None:
        self._exempt = tuple(exempt_paths)
        self._secure = secure

    def init_app(self, app: Flask) -> None:
        app.before_request(self._protect)
        app.after_request(self._provision)
        app.extensions[_EXT_KEY] = self

    def is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self._exempt)

    def rotate(self) -> str:
        """Issue a fresh token for the current response."""
        token = generate_token()
        g.csrf_token = token
        return token

    def _protect(self) -> None:
        if self.is_exempt(request.path):
            return

        if request.method in SAFE_METHODS:
            g.csrf_token = request.cookies.get(CSRF_COOKIE) or generate_token()
            return

        cookie_token = request.cookies.get(CSRF_COOKIE)
        header_token = request.headers.get(CSRF_HEADER)

        if not cookie_token or not header_token:
            logger.warning(
                "csrf_token_missing",
                path=request.path,
                method=request.method,
                has_cookie=bool(cookie_token),
                has_header=bool(header_token),
                remote_addr=request.remote_addr,
            )
            raise CSRFTokenMissing()

        if cookie_token != header_token:
            logger.warning(
                "csrf_token_mismatch",
                path=request.path,
                method=request.method,
                remote_addr=request.remote_addr,
            )
            raise CSRFTokenMismatch()

    def _provision(self, response: Response) -> Response:
        token = g.pop("csrf_token", None)
        if token:
            response.set_cookie(
                CSRF_COOKIE,
                token,
                path="/",
                httponly=True,
                samesite="Strict",
                secure=self._secure,
            )
            response.headers[CSRF_RESPONSE_HEADER] = token
        return response
