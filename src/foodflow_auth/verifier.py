"""JWT verification implementation using PyJWT.

This module provides a provider-agnostic JWT verifier that:
- Reads the key ID (kid) from the unverified token header
- Resolves the verification key via an injected KeyProvider
- Validates signature and claims using PyJWT
- Maps PyJWT exceptions to domain-specific error types

The Token Codec holds two of these: one over the locally configured key and
one over the remote JWKS.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import jwt
from jwt import PyJWK

from .errors import AuthError, ExpiredToken, InvalidToken

if TYPE_CHECKING:
    from .protocols import Claims, KeyProvider


@dataclass(frozen=True, slots=True)
class JWTVerifyOptions:
    """Configuration for JWT validation rules.

    Attributes:
        issuer: Expected ``iss`` claim. If None, issuer is not validated.
        audience: Expected ``aud`` claim. If None, audience is not validated.
        algorithms: Explicit allowlist of signing algorithms. Never ``none``.
        leeway: Clock skew tolerance in seconds for exp/nbf/iat validation.
        require_kid: Reject tokens whose header carries no ``kid``. Needed
            when the key provider selects keys by id (JWKS).

    Security Invariants:
        - The algorithm allowlist prevents algorithm confusion attacks
        - Keep leeway minimal (<30 seconds)
    """

    issuer: str | None
    audience: str | None
    algorithms: tuple[str, ...] = ("HS256",)
    leeway: int = 0
    require_kid: bool = False


class JWTVerifier:
    """Provider-agnostic JWT verification using PyJWT.

    Architecture:
        1. Read kid from token header (unverified)
        2. Resolve verification key via KeyProvider
        3. Verify signature and claims via PyJWT
        4. Map exceptions to domain errors

    Thread Safety:
        Thread-safe assuming the KeyProvider is thread-safe. The options are
        frozen.

    Attributes:
        _keys: KeyProvider responsible for resolving verification keys.
        _opt: Immutable verification options.
    """

    def __init__(self, key_provider: KeyProvider, options: JWTVerifyOptions) -> None:
        self._keys = key_provider
        self._opt = options

    @property
    def options(self) -> JWTVerifyOptions:
        return self._opt

    def verify(self, token: str) -> Claims:
        """Verify a JWT and return its decoded claims.

        Raises:
            InvalidToken: If token is malformed, signature is invalid, claims
                validation fails, or the key cannot be resolved.
            ExpiredToken: If token's exp claim has passed (accounting for leeway).
            ExternalVerificationError: If a remote key set is unreachable or
                does not contain the token's key.
        """
        # The header is only read to pick a key; nothing in it is trusted.
        try:
            header = jwt.get_unverified_header(token)
            kid = header.get("kid")

            if kid is not None and not isinstance(kid, str):
                raise InvalidToken("Token header 'kid' is not a string")
            if self._opt.require_kid and not kid:
                raise InvalidToken("Token header missing required 'kid'")

            key = self._keys.get_key_for_token(kid)

        except AuthError:
            raise
        except Exception as e:
            raise InvalidToken(f"Key resolution failed: {e}") from e

        if isinstance(key, PyJWK):
            key = key.key

        try:
            return jwt.decode(
                token,
                key,
                algorithms=list(self._opt.algorithms),
                audience=self._opt.audience,
                issuer=self._opt.issuer,
                leeway=self._opt.leeway,
                options={"verify_aud": self._opt.audience is not None},
            )

        except jwt.ExpiredSignatureError as e:
            raise ExpiredToken("Token has expired") from e

        except jwt.InvalidTokenError as e:
            # Invalid signature, iss/aud mismatch, malformed structure, or an
            # algorithm outside the allowlist.
            raise InvalidToken(f"Token validation failed: {e}") from e
