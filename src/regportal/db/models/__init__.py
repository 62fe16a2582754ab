"""SQLAlchemy ORM models for regportal.

This package contains all database models organized by domain:
- base: Common metadata, annotated column types, and enums
- session: Locally issued sessions and their analytics trail
- account: Local profile records keyed by external user id
"""

from regportal.db.models.account import Account
from regportal.db.models.base import Base, DeviceType, metadata
from regportal.db.models.session import Session, SessionAnalytics

__all__ = [
    "Account",
    "Base",
    "DeviceType",
    "Session",
    "SessionAnalytics",
    "metadata",
]
