"""Session and session analytics models.

Sessions bridge an identity held by the external authentication
microservice to a locally issued opaque session token:
- No local user row: the external user id plus a snapshot of the profile
  (email, name, coarse role) is cached on the session at creation
- Revocation keeps the row (audit fields); only the cleanup sweep deletes
- Analytics rows are an append-mostly log kept after sessions are purged
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from regportal.db.models.base import (
    Base,
    ExternalId,
    OptionalTimestampTZ,
    RequiredTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
)


class Session(Base):
    """Locally issued session for an externally authenticated user.

    A session is valid iff ``is_active`` and ``expires`` lies in the future.
    ``token_hash`` is the SHA-256 digest of the external access token the
    session was minted with; the raw bearer token is never stored.
    """

    __tablename__ = "sessions"

    session_id: Mapped[UUIDPrimaryKey]
    session_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    # Identity snapshot taken from the decoded external token
    external_user_id: Mapped[ExternalId] = mapped_column(nullable=False)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_role: Mapped[str] = mapped_column(String(20), nullable=False, default="VIEWER")

    # Absolute expiry copied from the external token's exp claim
    expires: Mapped[RequiredTimestampTZ]
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Client information
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_info: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Revocation audit fields
    revoked_at: Mapped[OptionalTimestampTZ]
    revoked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[TimestampTZ]
    last_accessed: Mapped[TimestampTZ]

    __table_args__ = (
        Index("ix_sessions_external_user_id", "external_user_id"),
        Index("ix_sessions_expires", "expires"),
        Index(
            "ix_sessions_external_user_active",
            "external_user_id",
            "is_active",
            postgresql_where=(is_active == True),  # noqa: E712 - SQLAlchemy requires ==
        ),
    )

    def is_valid_at(self, now: datetime) -> bool:
        """Check validity at a given instant (active and not yet expired)."""
        return self.is_active and self.expires > now


class SessionAnalytics(Base):
    """Login/logout record for one session.

    Deliberately not foreign-keyed to ``sessions`` so the cleanup sweep can
    purge session rows while the analytics trail survives.
    """

    __tablename__ = "session_analytics"

    analytics_id: Mapped[UUIDPrimaryKey]
    session_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    external_user_id: Mapped[ExternalId] = mapped_column(nullable=False)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_role: Mapped[str] = mapped_column(String(20), nullable=False)

    login_time: Mapped[TimestampTZ]
    logout_time: Mapped[OptionalTimestampTZ]
    # Seconds between session creation and logout
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_type: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        Index("ix_session_analytics_session_id", "session_id"),
        Index("ix_session_analytics_external_user_id", "external_user_id"),
        Index("ix_session_analytics_login_time", "login_time"),
    )
