"""Database foundation: declarative base, mixins, column types and repository."""

from notify_service.core.database.base import (
    NAMING_CONVENTION,
    Base,
    TenantMixin,
    TimestampMixin,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
    generate_uuid7,
    utcnow,
)
from notify_service.core.database.repository import BaseRepository
from notify_service.core.database.types import StringArray, UTCDateTime

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "StringArray",
    "TenantMixin",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDv7PKMixin",
    "UUIDv7TimestampedBase",
    "generate_uuid7",
    "utcnow",
]
