"""Token extraction strategies from HTTP requests.

Implementations:
- BearerExtractor: ``Authorization: Bearer <token>`` (API clients, default)
- CookieExtractor: an HTTP cookie (browser clients; requires CSRFGuard)

Tokens are never read from query parameters.
"""

from __future__ import annotations

from flask import request

from .errors import MissingToken


class BearerExtractor:
    """Extracts the JWT from the Authorization header.

    Expects:
        Authorization: Bearer <token>

    The scheme is matched case-insensitively. Anything else is treated as a
    missing token so the gate fails before any verification work.
    """

    def extract(self) -> str:
        auth_header = request.headers.get("Authorization", "").strip()

        if not auth_header:
            raise MissingToken("Missing Authorization header")

        parts = auth_header.split(" ", 1)
        if len(parts) != 2:
            raise MissingToken("Invalid Authorization header format (expected 'Bearer <token>')")

        scheme, token = parts
        if scheme.lower() != "bearer":
            raise MissingToken("Invalid authorization scheme (expected 'Bearer')")

        token = token.strip()
        if not token:
            raise MissingToken("Bearer token is empty")

        return token


class CookieExtractor:
    """Extracts the JWT from a named cookie.

    Attributes:
        _name: Name of the cookie containing the JWT.
    """

    def __init__(self, cookie_name: str = "access_token") -> None:
        if not cookie_name or not cookie_name.strip():
            raise ValueError("cookie_name cannot be empty")
        self._name = cookie_name

    def extract(self) -> str:
        token = request.cookies.get(self._name)
        if not token:
            raise MissingToken(f"Missing cookie '{self._name}'")
        return token
