"""SSO Bridge: OAuth2 authorization-code login against an external IdP.

Flow:
    1. ``authorization_url(state)`` -> redirect the browser to the IdP
    2. IdP redirects back with ``code`` and ``state``
    3. ``handle_callback(code, state)``:
       - exchange the code at the token endpoint (client_secret_post)
       - fetch the user-info document with the obtained access token
       - reconcile a local user through the UserStore
       - mint our own token pair tagged with the provider name

The ``state`` round-trip check belongs to the HTTP layer, which owns the
browser session. Profiles returned by the IdP are untrusted input.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Final

import requests
import structlog
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from .errors import SSOAuthenticationFailed, SSODisabled

if TYPE_CHECKING:
    from .config import SSOConfig
    from .protocols import UserStore
    from .roles import UserView
    from .token_codec import TokenCodec, TokenPair

logger = structlog.get_logger(__name__)

SSO_SCOPE: Final[str] = "openid email profile"

type SessionFactory = Callable[[], OAuth2Session]


@dataclass(frozen=True, slots=True)
class SSOProfile:
    """User-info document returned by the identity provider.

    Known attributes are typed fields; anything else lands in ``extra``.
    ``id`` is taken from ``id`` or, for OIDC providers, ``sub``.
    """

    id: str | None = None
    email: str | None = None
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None
    email_verified: bool = False
    groups: tuple[str, ...] = ()
    roles: tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SSOProfile:
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            if key in known:
                kwargs[key] = value
            elif key != "sub":
                extra[key] = value

        if kwargs.get("id") is None and data.get("sub") is not None:
            kwargs["id"] = data["sub"]
        if kwargs.get("id") is not None:
            kwargs["id"] = str(kwargs["id"])

        kwargs["email_verified"] = kwargs.get("email_verified") is True
        kwargs["groups"] = _string_tuple(kwargs.get("groups"))
        kwargs["roles"] = _string_tuple(kwargs.get("roles"))
        for name in ("email", "name", "given_name", "family_name", "picture"):
            if not isinstance(kwargs.get(name), str):
                kwargs.pop(name, None)

        return cls(**kwargs, extra=extra)


def _string_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(v for v in value if isinstance(v, str))
    return ()


@dataclass(frozen=True, slots=True)
class SSOLoginResult:
    user: UserView
    tokens: TokenPair


class SSOBridge:
    """Runs the authorization-code grant and hands off to the Token Codec.

    Args:
        config: SSO settings with endpoints already derived.
        codec: Mints the local token pair after a successful login.
        user_store: Reconciles the IdP profile with a local user.
        session_factory: Builds the OAuth2 client. Defaults to an Authlib
            ``OAuth2Session`` configured from ``config``.
        timeout: Seconds for each outbound HTTP call.
        expose_errors: Include upstream error text in failures (non-production).
    """

    def __init__(
        self,
        config: SSOConfig,
        codec: TokenCodec,
        user_store: UserStore,
        *,
        session_factory: SessionFactory | None = None,
        timeout: float = 10.0,
        expose_errors: bool = False,
    ) -> None:
        self._config = config
        self._codec = codec
        self._users = user_store
        self._session_factory = session_factory or self._default_session
        self._timeout = timeout
        self._expose_errors = expose_errors

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def _default_session(self) -> OAuth2Session:
        return OAuth2Session(
            client_id=self._config.client_id,
            client_secret=self._config.client_secret,
            scope=SSO_SCOPE,
            redirect_uri=self._config.redirect_uri,
            token_endpoint_auth_method="client_secret_post",
        )

    def _require_enabled(self) -> None:
        if not self._config.enabled:
            raise SSODisabled()

    def authorization_url(self, state: str) -> str:
        """Build the IdP redirect URL carrying the caller's ``state``.

        Raises:
            SSODisabled: If SSO is not enabled.
        """
        self._require_enabled()
        url, _ = self._session_factory().create_authorization_url(
            self._config.authorization_endpoint, state=state
        )
        return url

    def handle_callback(self, code: str, state: str) -> SSOLoginResult:
        """Complete the login for an authorization ``code``.

        Raises:
            SSODisabled: If SSO is not enabled.
            SSOAuthenticationFailed: Code exchange, user-info fetch, or
                reconciliation failed.
        """
        self._require_enabled()
        provider = self._config.provider

        try:
            session = self._session_factory()
            session.fetch_token(
                self._config.token_endpoint,
                code=code,
                grant_type="authorization_code",
                timeout=self._timeout,
            )
            response = session.get(self._config.userinfo_endpoint, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, Mapping):
                raise ValueError("User-info response is not a JSON object")
            profile = SSOProfile.from_dict(payload)
            user = self._users.find_or_create_sso_user(profile, provider)
        except (AuthlibBaseError, requests.RequestException, ValueError) as e:
            logger.error("sso_callback_failed", provider=provider, error=str(e))
            details = {"reason": str(e)} if self._expose_errors else None
            raise SSOAuthenticationFailed(details=details) from e

        tokens = self._codec.issue(user.id, user.email, list(profile.roles) or None, provider)
        logger.info("sso_login_succeeded", user_id=user.id, provider=provider)
        return SSOLoginResult(user=user, tokens=tokens)
