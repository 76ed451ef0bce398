"""SQLAlchemy ORM models for the shortlink service.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for link mappings and the
append-only click log.

Data Model Layout
=================
::
    links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ alias (VARCHAR(20) NULL, INDEXED)
    ├─ clicks (INTEGER DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    ├─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)
    └─ expires_at (TIMESTAMPTZ NULL)

    clicks table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(20), INDEXED)
    ├─ ip_address (VARCHAR(45))
    └─ clicked_at (TIMESTAMPTZ, INDEXED)

How to Use
===========
**Step 1 — Create a link**::
    link = Link(short_code="abc123", original_url="https://example.com")

**Step 2 — Check expiry**::
    if link.is_expired(utcnow()):
        ...

Key Behaviours
===============
- short_code is indexed for fast lookups during redirects.
- clicks is only ever bumped by aggregated batches, never per request.
- A link whose expires_at has passed is logically deleted and never served.
- Click rows reference links by short_code; they are removed with their link
  on explicit deletion and may otherwise be pruned independently.

Classes:
    Link:  A short code to target URL mapping with an access counter.
    Click:  One recorded access for analytics detail.
"""

import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["Link", "Click", "as_utc", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    alias: Mapped[str | None] = mapped_column(String(20), index=True, nullable=True)
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=func.now(), nullable=False
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) <= now

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, short_code='{self.short_code}', clicks={self.clicks})>"


class Click(Base):
    __tablename__ = "clicks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Click(id={self.id}, short_code='{self.short_code}', ip_address='{self.ip_address}')>"
