"""Local account records for externally managed identities.

Identity truth lives in the external authentication microservice. The
account row only gives application records (downloads, searches, case
activity) a local key to reference.
"""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from regportal.db.models.base import Base, TimestampTZ


class Account(Base):
    """Lightweight profile keyed by the external user id."""

    __tablename__ = "accounts"

    account_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]
