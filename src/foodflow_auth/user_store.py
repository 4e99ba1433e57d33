"""SQLAlchemy Core adapter for the users table.

The auth core reads role-bearing user views, authenticates local
credentials, and reconciles SSO identities. Reconciliation runs in a single
transaction so two callbacks for the same email cannot create two rows.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Final

import structlog
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    insert,
    select,
    update,
)

from .roles import Role, UserView

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine, RowMapping

    from .sso import SSOProfile

logger = structlog.get_logger(__name__)

SSO_PASSWORD_SENTINEL: Final[str] = "SSO_USER"
"""Stored instead of a password hash for users created through SSO."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True, default=lambda: str(uuid.uuid4())),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("phone", String(32)),
    Column("role", String(20), nullable=False, default=Role.CUSTOMER.value),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("email_verified", Boolean, nullable=False, default=False),
    Column("sso_provider", String(50)),
    Column("sso_id", String(255)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow),
)


@dataclass(frozen=True, slots=True)
class UserCredentials:
    """A user view plus the stored password hash, for local login only."""

    user: UserView
    password_hash: str
    is_active: bool


class EmailAlreadyExists(Exception):  # noqa: N818
    """Raised by create_user when the email is taken."""


def _to_view(row: RowMapping) -> UserView:
    return UserView(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        phone=row["phone"],
        role=row["role"],
    )


def _split_name(profile: SSOProfile) -> tuple[str | None, str | None]:
    if profile.given_name or profile.family_name:
        return profile.given_name, profile.family_name
    if profile.name:
        first, _, last = profile.name.strip().partition(" ")
        return first or None, last.strip() or None
    return None, None


class SQLAlchemyUserStore:
    """UserStore over a SQLAlchemy engine.

    Attributes:
        _engine: Shared engine; each operation opens its own transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_tables(self) -> None:
        metadata.create_all(self._engine)

    def get_active_user(self, user_id: str) -> UserView | None:
        stmt = select(users).where(users.c.id == user_id, users.c.is_active.is_(True))
        with self._engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return _to_view(row) if row else None

    def get_credentials(self, email: str) -> UserCredentials | None:
        stmt = select(users).where(users.c.email == email)
        with self._engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        if row is None:
            return None
        return UserCredentials(
            user=_to_view(row), password_hash=row["password_hash"], is_active=row["is_active"]
        )

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        role: str = Role.CUSTOMER,
    ) -> UserView:
        """Insert a local (password) user.

        Raises:
            EmailAlreadyExists: If a user with ``email`` exists.
        """
        with self._engine.begin() as conn:
            if self._find_by_email(conn, email) is not None:
                raise EmailAlreadyExists(email)
            user_id = str(uuid.uuid4())
            conn.execute(
                insert(users).values(
                    id=user_id,
                    email=email,
                    password_hash=password_hash,
                    first_name=first_name,
                    last_name=last_name,
                    phone=phone,
                    role=str(role),
                )
            )
            row = self._find_by_email(conn, email)

        logger.info("user_created", user_id=user_id)
        return _to_view(row)

    def find_or_create_sso_user(self, profile: SSOProfile, provider: str) -> UserView:
        """Match the profile to a local user by email, inserting or updating it.

        Raises:
            ValueError: If the profile carries no email.
        """
        if not profile.email:
            raise ValueError("SSO profile has no email")

        verified = bool(profile.email_verified)
        with self._engine.begin() as conn:
            row = self._find_by_email(conn, profile.email)
            if row is None:
                first_name, last_name = _split_name(profile)
                user_id = str(uuid.uuid4())
                conn.execute(
                    insert(users).values(
                        id=user_id,
                        email=profile.email,
                        password_hash=SSO_PASSWORD_SENTINEL,
                        first_name=first_name,
                        last_name=last_name,
                        email_verified=verified,
                        sso_provider=provider,
                        sso_id=profile.id,
                    )
                )
                logger.info("sso_user_created", user_id=user_id, provider=provider)
            else:
                user_id = row["id"]
                conn.execute(
                    update(users)
                    .where(users.c.id == user_id)
                    .values(sso_provider=provider, sso_id=profile.id, email_verified=verified)
                )
                logger.info("sso_user_updated", user_id=user_id, provider=provider)
            row = self._find_by_email(conn, profile.email)

        return _to_view(row)

    @staticmethod
    def _find_by_email(conn: Connection, email: str) -> RowMapping | None:
        return conn.execute(select(users).where(users.c.email == email)).mappings().first()
