"""Protocol definitions for the auth core.

This module defines structural interfaces using Protocol (PEP 544) for:
- Token verification
- Key resolution
- Session storage
- The user system of record
- Token extraction

Using protocols allows for duck-typing and easier testing/mocking without
requiring explicit inheritance.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from jwt import PyJWK

    from .roles import UserView
    from .sso import SSOProfile

# ============================================================================
# Type Aliases
# ============================================================================

type Claims = Mapping[str, Any]
"""Represents the decoded JWT payload as an immutable mapping."""

type ViewFunc = Callable[..., Any]
"""Type alias for Flask view functions."""

type Clock = Callable[[], float]
"""Returns the current time in seconds. Injected where TTLs are tracked."""

type VerificationKey = str | bytes | PyJWK
"""Anything PyJWT can verify a signature with."""


# ============================================================================
# Core Protocols
# ============================================================================


class TokenVerifier(Protocol):
    """Protocol for JWT verification implementations."""

    def verify(self, token: str) -> Claims:
        """Verify a JWT and return its decoded claims.

        Raises:
            InvalidToken: Token is malformed, signature invalid, or claims invalid
            ExpiredToken: Token's exp claim has passed
        """
        ...


class KeyProvider(Protocol):
    """Protocol for resolving JWT verification keys.

    Common implementations:
    - JWKS endpoint fetcher (JWKSKeyProvider)
    - Static shared secret or PEM public key (StaticKeyProvider)
    """

    def get_key_for_token(self, kid: str | None) -> VerificationKey:
        """Resolve a verification key by its ID.

        Raises:
            InvalidToken: If kid cannot be resolved.
        """
        ...


class SessionStore(Protocol):
    """Protocol for the refresh-session registry and access-token blacklist.

    Two namespaces with separate TTL disciplines:
    - sessions keyed by session id, TTL = refresh-token lifetime
    - blacklist keyed by the raw access token, TTL = remaining validity

    Implementations raise SessionStoreUnavailable when the backing store
    cannot be reached; they never silently report "absent".
    """

    def put_session(self, session_id: str, record: Mapping[str, Any], ttl_seconds: int) -> None: ...

    def get_session(self, session_id: str) -> dict[str, Any] | None: ...

    def take_session(self, session_id: str) -> dict[str, Any] | None:
        """Atomically read and delete a session record."""
        ...

    def delete_session(self, session_id: str) -> None: ...

    def blacklist(self, token: str, ttl_seconds: int) -> None: ...

    def is_blacklisted(self, token: str) -> bool: ...


class UserStore(Protocol):
    """Protocol for the user system of record.

    The auth core only reads role-bearing views and reconciles SSO users; it
    does not own the schema of the wider application.
    """

    def get_active_user(self, user_id: str) -> UserView | None:
        """Fetch an active user by id, or None if missing or inactive."""
        ...

    def find_or_create_sso_user(self, profile: SSOProfile, provider: str) -> UserView:
        """Insert or update the local user for an SSO profile, atomically."""
        ...


class Extractor(Protocol):
    """Protocol for extracting JWT tokens from the current Flask request."""

    def extract(self) -> str:
        """Extract the raw JWT string.

        Raises:
            MissingToken: Token not found or improperly formatted.
        """
        ...
