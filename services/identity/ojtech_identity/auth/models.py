"""
Identity service: SQLAlchemy ORM models for the auth domain.

Tables owned by this module:
  - roles       Closed role catalog (ROLE_STUDENT / ROLE_EMPLOYER / ROLE_NLO / ROLE_ADMIN)
  - users       Local and provider-linked accounts
  - user_roles  Many-to-many link; every user has at least one row here
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ojtech_shared.database.postgres import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


user_roles = sa.Table(
    "user_roles",
    Base.metadata,
    sa.Column(
        "user_id",
        sa.Uuid(),
        sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_user_roles_user_id"),
        primary_key=True,
    ),
    sa.Column(
        "role_id",
        sa.Integer(),
        sa.ForeignKey("roles.id", ondelete="RESTRICT", name="fk_user_roles_role_id"),
        primary_key=True,
    ),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(sa.Integer(), primary_key=True, autoincrement=True)
    # RoleName value, e.g. "ROLE_STUDENT"
    name: Mapped[str] = mapped_column(sa.String(30), unique=True, nullable=False)

    def __repr__(self) -> str:
        return f"Role({self.name})"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        # Provider linkage is all-or-nothing.
        sa.CheckConstraint(
            "(provider IS NULL) = (provider_id IS NULL)",
            name="ck_users_provider_pair",
        ),
        # A local account needs a password; a provider account may lack one.
        sa.CheckConstraint(
            "password_hash IS NOT NULL OR provider IS NOT NULL",
            name="ck_users_has_credential",
        ),
        # Closes the check-then-create race for concurrent first logins.
        sa.UniqueConstraint("provider", "provider_id", name="uq_users_provider_identity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid(), primary_key=True, default=uuid.uuid4)

    # ── Login identifiers ─────────────────────────────────────────────────────
    # Stored lower-cased; see utils.normalize_email.
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False, index=True)
    # nullable: provider-only accounts have no local password
    password_hash: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)

    # ── Profile ───────────────────────────────────────────────────────────────
    # Refreshed from the provider on every repeat OAuth2 login.
    display_name: Mapped[str | None] = mapped_column(sa.String(150), nullable=True)
    image_url: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)
    email_verified: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, default=False, server_default=sa.false()
    )

    # ── External provider linkage (set together, first provider wins) ────────
    provider: Mapped[str | None] = mapped_column(sa.String(30), nullable=True)
    provider_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)

    # Soft status; admins toggle it instead of deleting accounts.
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, default=True, server_default=sa.true()
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    roles: Mapped[list[Role]] = relationship(
        "Role",
        secondary=user_roles,
        lazy="selectin",
        order_by="Role.id",
    )

    @property
    def role_names(self) -> tuple[str, ...]:
        return tuple(role.name for role in self.roles)
