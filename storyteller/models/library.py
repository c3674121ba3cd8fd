"""SQLAlchemy model for the shared catalog rows."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB

from storyteller.models.base import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LibraryRow(Base):
    """One serialized catalog per sync key."""

    __tablename__ = "narration_library"

    key = Column(String(128), primary_key=True)
    catalog = Column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )


__all__ = ["LibraryRow", "utc_now"]
