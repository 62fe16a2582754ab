"""Base model definitions, mixins, and common types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Common annotated column types for UUIDs and timestamps
- Enum types shared by the session models
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry
from sqlalchemy.types import TypeDecorator

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()


class UTCDateTime(TypeDecorator):
    """``timestamptz`` that always loads as an aware UTC datetime.

    Backends without a zone-aware timestamp (SQLite) hand back naive values;
    those are read as UTC, and aware values are normalised to UTC on write.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# UUID primary key with server-side default generation
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(UTCDateTime(), server_default=text("now()")),
]

# Timestamp with timezone, no default (must be supplied)
RequiredTimestampTZ = Annotated[
    datetime,
    mapped_column(UTCDateTime(), nullable=False),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(UTCDateTime(), nullable=True),
]

# External identifiers are opaque strings (the auth microservice uses integers)
ExternalId = Annotated[str, mapped_column(String(64))]


class Base(DeclarativeBase):
    """Declarative base for all regportal models."""

    metadata = metadata
    registry = type_registry


# =============================================================================
# Common Enums
# =============================================================================


class DeviceType(str, enum.Enum):
    """Coarse device classification recorded on analytics rows.

    Values:
        MOBILE: Phone-class user agent (iPad included, see classify_device_type)
        TABLET: User agent advertising a tablet
        DESKTOP: Any other known user agent
        UNKNOWN: No user agent supplied
    """

    MOBILE = "Mobile"
    TABLET = "Tablet"
    DESKTOP = "Desktop"
    UNKNOWN = "Unknown"
