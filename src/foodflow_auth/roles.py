"""Role hierarchy and request-time role resolution.

Roles form a total order::

    customer (1) < staff (2) < admin (3) < owner (4)

Unknown roles rank 0. The role is never trusted from the token: RoleResolver
re-reads it from the user store on every request, so demotions and
deactivations take effect immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

import structlog

from .errors import InsufficientPrivilege, InvalidToken, Unauthenticated

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .protocols import UserStore
    from .token_codec import TokenCodec

logger = structlog.get_logger(__name__)


class Role(StrEnum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"
    OWNER = "owner"


_ROLE_LEVELS: Final[dict[str, int]] = {
    Role.CUSTOMER: 1,
    Role.STAFF: 2,
    Role.ADMIN: 3,
    Role.OWNER: 4,
}

ALL_ROLES: Final[frozenset[str]] = frozenset(Role)
STAFF_ROLES: Final[frozenset[str]] = frozenset({Role.STAFF, Role.ADMIN, Role.OWNER})
ADMIN_ROLES: Final[frozenset[str]] = frozenset({Role.ADMIN, Role.OWNER})
OWNER_ROLES: Final[frozenset[str]] = frozenset({Role.OWNER})


@dataclass(frozen=True, slots=True)
class UserView:
    """The slice of a user record the auth core needs."""

    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: str = Role.CUSTOMER

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
            "role": str(self.role),
        }


def role_level(role: str | None) -> int:
    """Rank of ``role`` in the hierarchy, 0 if unknown."""
    if role is None:
        return 0
    return _ROLE_LEVELS.get(role, 0)


def has_minimum_role(user: UserView, min_role: str) -> bool:
    return role_level(user.role) >= role_level(min_role)


def has_role(user: UserView, *roles: str) -> bool:
    return user.role in roles


def roles_at_least(min_role: str) -> frozenset[str]:
    """All known roles ranked at or above ``min_role``."""
    floor = role_level(min_role)
    if floor == 0:
        raise ValueError(f"Unknown role: {min_role!r}")
    return frozenset(r for r, level in _ROLE_LEVELS.items() if level >= floor)


class RoleResolver:
    """Turns a bearer token into an authorized UserView.

    Security Notes:
        - Tokens are verified locally; remote IdP tokens are not accepted on
          role-gated routes.
        - Missing and inactive users are indistinguishable to the client.
        - Fail-closed: a user whose role is outside ``allowed_roles`` is
          rejected, including unknown roles.
    """

    def __init__(self, codec: TokenCodec, user_store: UserStore) -> None:
        self._codec = codec
        self._users = user_store

    def authorize(self, token: str, allowed_roles: Iterable[str]) -> UserView:
        """Verify ``token`` and admit the user if their current role is allowed.

        Raises:
            Unauthenticated: Invalid token, or user missing or inactive.
            InsufficientPrivilege: Role not in ``allowed_roles``.
        """
        allowed = frozenset(allowed_roles)
        claims = self._codec.verify_local(token)

        user_id = claims.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidToken("Token is missing userId")

        user = self._users.get_active_user(user_id)
        if user is None:
            logger.warning("authorization_user_inactive", user_id=user_id)
            raise Unauthenticated("User not found or inactive")

        if user.role not in allowed:
            logger.warning(
                "authorization_denied",
                user_id=user_id,
                role=user.role,
                required=sorted(allowed),
            )
            raise InsufficientPrivilege(allowed, user.role)

        return user
