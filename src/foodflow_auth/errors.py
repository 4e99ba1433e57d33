"""Authentication and authorization errors.

This module defines the exception hierarchy for the auth core. Every error a
client can see inherits from AuthError and carries the HTTP status, a stable
machine-readable code and a generic description.

Security Note:
    Descriptions are intentionally generic to avoid leaking which check
    failed. Detailed causes are logged server-side, not returned to clients.
"""

from __future__ import annotations

from typing import Any, ClassVar


class AuthError(Exception):
    """Base exception for all authentication and authorization failures.

    Application code can catch this single exception type to handle any auth
    failure generically. The Flask boundary renders it as a JSON envelope.

    Attributes:
        status_code: HTTP status returned to the client.
        code: Stable error code for the response envelope.
        description: Client-safe message.
        details: Optional diagnostic payload.
        expose_details: Whether ``details`` may be sent to clients in
            production.
    """

    status_code: ClassVar[int] = 401
    code: ClassVar[str] = "AUTHENTICATION_ERROR"
    default_description: ClassVar[str] = "Authentication failed"
    expose_details: ClassVar[bool] = False

    def __init__(
        self, description: str | None = None, *, details: dict[str, Any] | None = None
    ) -> None:
        self.description = description or self.default_description
        self.details = details
        super().__init__(self.description)


class Unauthenticated(AuthError):  # noqa: N818
    """Raised when the caller's identity cannot be established.

    Covers missing or invalid tokens and users that no longer exist or are
    inactive. Always a 401.
    """


class MissingToken(Unauthenticated):  # noqa: N818
    """Raised when no usable token is found in the request.

    This occurs when:
    - The Authorization header is missing
    - The Authorization header is not "Bearer <token>"
    - The configured cookie is missing (cookie-based extraction)
    """

    code = "MISSING_TOKEN"
    default_description = "Authentication required"


class InvalidToken(Unauthenticated):  # noqa: N818
    """Raised when a token is present but cannot be verified.

    This occurs when:
    - Token is malformed (not a valid JWT structure)
    - Signature verification fails (wrong key or tampered token)
    - Issuer (iss) or audience (aud) doesn't match
    - Algorithm (alg) is not in the allowed list

    Security Note:
        Subclasses exist for observability; all of them return the same 401
        to clients.
    """

    code = "INVALID_TOKEN"
    default_description = "Invalid or expired token"


class ExpiredToken(InvalidToken):  # noqa: N818
    """Raised when a token's exp claim has passed."""


class ExternalVerificationError(InvalidToken):
    """Raised when a token cannot be checked against the remote key set.

    This occurs when the JWKS endpoint is unreachable, or when the token's
    key id is absent from the key set even after a fresh fetch.
    """

    default_description = "Token verification failed"


class TokenRevoked(Unauthenticated):  # noqa: N818
    """Raised when an access token is on the logout blacklist."""

    code = "TOKEN_REVOKED"
    default_description = "Token has been revoked"


class InvalidRefreshToken(Unauthenticated):  # noqa: N818
    """Raised for every refresh failure.

    Wrong token type, missing session record and value mismatch all produce
    this same error so the response is no oracle for which check failed.
    """

    code = "INVALID_REFRESH_TOKEN"
    default_description = "Invalid refresh token"


class InvalidCredentials(Unauthenticated):  # noqa: N818
    """Raised by password login for an unknown email or a wrong password."""

    code = "INVALID_CREDENTIALS"
    default_description = "Invalid credentials"


class InsufficientPrivilege(AuthError):  # noqa: N818
    """Raised when an authenticated user's role is not allowed.

    This is the only authorization failure and the only 403 outside CSRF.
    The response carries the required roles and the user's current role.
    """

    status_code = 403
    code = "INSUFFICIENT_PRIVILEGES"
    default_description = "Insufficient privileges"
    expose_details = True

    def __init__(self, required: frozenset[str], current: str) -> None:
        self.required = required
        self.current = current
        super().__init__(details={"required": sorted(required), "current": current})


class SSODisabled(AuthError):  # noqa: N818
    """Raised when an SSO operation is attempted while SSO is not enabled."""

    status_code = 400
    code = "SSO_DISABLED"
    default_description = "SSO is not enabled"


class SSOAuthenticationFailed(AuthError):  # noqa: N818
    """Raised when the remote identity provider exchange fails.

    The upstream detail travels in ``details`` and is only rendered outside
    production.
    """

    code = "SSO_AUTHENTICATION_FAILED"
    default_description = "SSO authentication failed"


class CSRFError(AuthError):
    """Base for double-submit cookie failures (403)."""

    status_code = 403
    code = "CSRF_ERROR"


class CSRFTokenMissing(CSRFError):  # noqa: N818
    """Raised when the CSRF cookie or header is absent."""

    code = "CSRF_TOKEN_MISSING"
    default_description = "CSRF token missing"


class CSRFTokenMismatch(CSRFError):  # noqa: N818
    """Raised when the CSRF cookie and header differ."""

    code = "CSRF_TOKEN_INVALID"
    default_description = "CSRF token invalid"


class SessionStoreUnavailable(Exception):  # noqa: N818
    """Raised when the key-value store backing sessions cannot be reached.

    Not an AuthError: whether this becomes a 401 or a 500 depends on where
    it happens. The request gate converts it to a 401.
    """


class ConfigurationError(Exception):
    """Raised at startup when the auth configuration is unusable.

    The process must not start serving traffic.
    """
