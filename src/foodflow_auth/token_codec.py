"""Token Codec: mint, verify, rotate and revoke the service's JWTs.

Every minted pair shares one ``sessionId``. The refresh token is also stored
server-side under that session id; rotating it consumes the stored record, so
a refresh token works exactly once.

Verification modes:
- local: configured secret or public key, with issuer, audience and
  algorithm checks
- remote: the identity provider's JWKS, fixed to RS256, used for bearer
  tokens when SSO is enabled and ``SSO_JWKS_URI`` is set

Refresh and role checks always use the local mode.
"""

from __future__ import annotations

import hmac
import secrets
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import jwt
import structlog

from .errors import (
    ExternalVerificationError,
    InvalidRefreshToken,
    InvalidToken,
    SessionStoreUnavailable,
)
from .key_providers import JWKSKeyProvider, StaticKeyProvider
from .verifier import JWTVerifier, JWTVerifyOptions

if TYPE_CHECKING:
    from .config import AuthConfig
    from .protocols import Claims, Clock, KeyProvider, SessionStore

logger = structlog.get_logger(__name__)

REMOTE_ALGORITHM: Final[str] = "RS256"
"""Identity providers sign with RS256; the remote path accepts nothing else."""

DEFAULT_BLACKLIST_TTL: Final[int] = 24 * 3600
"""Used when a token's remaining validity cannot be derived."""

REFRESH_TOKEN_TYPE: Final[str] = "refresh"


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str
    session_id: str

    def as_dict(self) -> dict[str, str]:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}


class TokenCodec:
    """Issues and verifies access/refresh token pairs.

    Args:
        config: Validated auth configuration.
        session_store: Registry for refresh sessions and the blacklist.
        remote_provider: Key provider for remote verification. Built from
            ``SSO_JWKS_URI`` when not given and remote verification is on.
        clock: Wall-clock time source for ``iat``/``exp``.
    """

    def __init__(
        self,
        config: AuthConfig,
        session_store: SessionStore,
        *,
        remote_provider: KeyProvider | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._jwt = config.jwt
        self._store = session_store
        self._clock = clock

        self._local = JWTVerifier(
            StaticKeyProvider.from_jwt_config(config.jwt),
            JWTVerifyOptions(
                issuer=config.jwt.issuer,
                audience=config.jwt.audience,
                algorithms=(config.jwt.algorithm,),
                leeway=config.jwt.leeway,
            ),
        )

        self._remote: JWTVerifier | None = None
        if config.sso.remote_verification:
            if remote_provider is None:
                remote_provider = JWKSKeyProvider(
                    config.sso.jwks_uri,
                    ttl_seconds=config.jwks_cache_ttl,
                    timeout=config.http_timeout,
                )
            self._remote = JWTVerifier(
                remote_provider,
                JWTVerifyOptions(
                    issuer=None,
                    audience=None,
                    algorithms=(REMOTE_ALGORITHM,),
                    leeway=config.jwt.leeway,
                    require_kid=True,
                ),
            )

    @property
    def remote_verification(self) -> bool:
        return self._remote is not None

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(
        self,
        user_id: str,
        email: str,
        roles: Sequence[str] | None = None,
        sso_provider: str | None = None,
    ) -> TokenPair:
        """Mint an access/refresh pair for a new session and register it.

        Raises:
            SessionStoreUnavailable: If the session record cannot be written.
        """
        session_id = secrets.token_hex(32)
        now = int(self._clock())

        claims: dict[str, Any] = {
            "userId": user_id,
            "email": email,
            "sessionId": session_id,
            "iss": self._jwt.issuer,
            "aud": self._jwt.audience,
            "iat": now,
        }
        if roles is not None:
            claims["roles"] = list(roles)
        if sso_provider is not None:
            claims["ssoProvider"] = sso_provider

        access_token = self._sign({**claims, "exp": now + self._jwt.expires_in})
        refresh_token = self._sign(
            {**claims, "type": REFRESH_TOKEN_TYPE, "exp": now + self._jwt.refresh_expires_in}
        )

        self._store.put_session(
            session_id,
            {"userId": user_id, "email": email, "refreshToken": refresh_token},
            self._jwt.refresh_expires_in,
        )

        logger.info("tokens_issued", user_id=user_id, session_id=session_id, sso_provider=sso_provider)
        return TokenPair(access_token=access_token, refresh_token=refresh_token, session_id=session_id)

    def _sign(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self._jwt.secret, algorithm=self._jwt.algorithm)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str) -> Claims:
        """Verify a bearer token with the configured mode.

        Raises:
            InvalidToken: Any verification failure (ExpiredToken and
                ExternalVerificationError are subclasses).
        """
        if self._remote is not None:
            return self.verify_with_remote_keys(token)
        return self.verify_local(token)

    def verify_local(self, token: str) -> Claims:
        try:
            return self._local.verify(token)
        except InvalidToken as e:
            logger.info("token_verification_failed", mode="local", reason=type(e).__name__, error=str(e))
            raise

    def verify_with_remote_keys(self, token: str) -> Claims:
        """Verify against the identity provider's key set (RS256 only).

        Raises:
            ExternalVerificationError: Key set unreachable or kid unknown.
            InvalidToken: Signature or claim failure.
        """
        if self._remote is None:
            raise ExternalVerificationError("Remote verification is not configured")
        try:
            return self._remote.verify(token)
        except InvalidToken as e:
            logger.info("token_verification_failed", mode="remote", reason=type(e).__name__, error=str(e))
            raise

    # ------------------------------------------------------------------
    # Rotation and revocation
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair under a new session.

        The stored session record is consumed atomically: a second refresh
        with the same token, concurrent or later, fails.

        The record is taken before the token comparison, so a validly signed
        token that does not match the stored one ends the session as well.
        That session must then log in again; its record is not restored.

        Raises:
            InvalidRefreshToken: For every failure cause.
        """
        try:
            claims = self._local.verify(refresh_token)
        except InvalidToken as e:
            logger.warning("refresh_rejected", reason=type(e).__name__, error=str(e))
            raise InvalidRefreshToken() from e

        if claims.get("type") != REFRESH_TOKEN_TYPE:
            logger.warning("refresh_rejected", reason="wrong_token_type")
            raise InvalidRefreshToken()

        session_id = claims.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            logger.warning("refresh_rejected", reason="missing_session_id")
            raise InvalidRefreshToken()

        try:
            record = self._store.take_session(session_id)
        except SessionStoreUnavailable as e:
            logger.error("refresh_rejected", reason="session_store_unavailable", session_id=session_id)
            raise InvalidRefreshToken() from e

        if record is None:
            logger.warning("refresh_rejected", reason="session_not_found", session_id=session_id)
            raise InvalidRefreshToken()

        stored = record.get("refreshToken")
        if not isinstance(stored, str) or not hmac.compare_digest(stored, refresh_token):
            logger.warning("refresh_rejected", reason="token_mismatch", session_id=session_id)
            raise InvalidRefreshToken()

        try:
            pair = self.issue(
                claims["userId"],
                claims["email"],
                claims.get("roles"),
                claims.get("ssoProvider"),
            )
        except (KeyError, SessionStoreUnavailable) as e:
            logger.error("refresh_rejected", reason=type(e).__name__, session_id=session_id)
            raise InvalidRefreshToken() from e

        logger.info("tokens_refreshed", previous_session_id=session_id, session_id=pair.session_id)
        return pair

    def revoke(self, session_id: str) -> None:
        """Delete the session record so its refresh token stops working."""
        self._store.delete_session(session_id)
        logger.info("session_revoked", session_id=session_id)

    def blacklist(self, access_token: str, claims: Claims | None = None) -> None:
        """Reject ``access_token`` for the rest of its validity."""
        ttl = self._remaining_validity(access_token, claims)
        self._store.blacklist(access_token, ttl)
        logger.info("token_blacklisted", ttl_seconds=ttl)

    def is_revoked(self, access_token: str) -> bool:
        """Blacklist lookup.

        Raises:
            SessionStoreUnavailable: The caller must treat this as revoked.
        """
        return self._store.is_blacklisted(access_token)

    def _remaining_validity(self, token: str, claims: Claims | None) -> int:
        if claims is None:
            try:
                claims = jwt.decode(token, options={"verify_signature": False})
            except jwt.InvalidTokenError:
                return DEFAULT_BLACKLIST_TTL
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return DEFAULT_BLACKLIST_TTL
        return max(1, int(exp - self._clock()))
