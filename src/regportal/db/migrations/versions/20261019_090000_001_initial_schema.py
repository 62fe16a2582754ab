"""Initial schema: sessions, session analytics, accounts.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

Creates:
- sessions: locally issued sessions bridged to external identities
- session_analytics: login/logout trail (no FK to sessions)
- accounts: local profile rows keyed by external user id
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: create the session and account tables."""
    op.create_table(
        "sessions",
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("session_token", sa.String(64), nullable=False),
        # Identity snapshot from the external auth service
        sa.Column("external_user_id", sa.String(64), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("user_role", sa.String(20), nullable=False, server_default="VIEWER"),
        sa.Column("expires", sa.DateTime(timezone=True), nullable=False),
        # SHA-256 of the external access token
        sa.Column("token_hash", sa.String(64), nullable=False),
        # Client information
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_info", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        # Revocation audit fields
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.String(255), nullable=True),
        sa.Column("revoke_reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_accessed",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("session_id", name=op.f("pk_sessions")),
        sa.UniqueConstraint("session_token", name=op.f("uq_sessions_session_token")),
    )
    op.create_index(
        op.f("ix_sessions_external_user_id"), "sessions", ["external_user_id"], unique=False
    )
    op.create_index(op.f("ix_sessions_expires"), "sessions", ["expires"], unique=False)
    op.create_index(
        op.f("ix_sessions_external_user_active"),
        "sessions",
        ["external_user_id", "is_active"],
        unique=False,
        postgresql_where=sa.text("is_active = true"),
    )

    op.create_table(
        "session_analytics",
        sa.Column(
            "analytics_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        # Plain column, no FK: analytics outlive purged sessions
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("external_user_id", sa.String(64), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("user_role", sa.String(20), nullable=False),
        sa.Column(
            "login_time",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("logout_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=False),
        sa.PrimaryKeyConstraint("analytics_id", name=op.f("pk_session_analytics")),
    )
    op.create_index(
        op.f("ix_session_analytics_session_id"), "session_analytics", ["session_id"], unique=False
    )
    op.create_index(
        op.f("ix_session_analytics_external_user_id"),
        "session_analytics",
        ["external_user_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_session_analytics_login_time"), "session_analytics", ["login_time"], unique=False
    )

    op.create_table(
        "accounts",
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("account_id", name=op.f("pk_accounts")),
    )


def downgrade() -> None:
    """Revert migration: drop the session and account tables."""
    op.drop_table("accounts")
    op.drop_index(op.f("ix_session_analytics_login_time"), table_name="session_analytics")
    op.drop_index(op.f("ix_session_analytics_external_user_id"), table_name="session_analytics")
    op.drop_index(op.f("ix_session_analytics_session_id"), table_name="session_analytics")
    op.drop_table("session_analytics")
    op.drop_index(op.f("ix_sessions_external_user_active"), table_name="sessions")
    op.drop_index(op.f("ix_sessions_expires"), table_name="sessions")
    op.drop_index(op.f("ix_sessions_external_user_id"), table_name="sessions")
    op.drop_table("sessions")
