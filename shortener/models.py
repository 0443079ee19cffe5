"""SQLAlchemy ORM models for the URL shortener application.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and uniqueness constraints for link and user records.

Data Model Layout
=================
::
    users table
    ├─ id (VARCHAR(36) PRIMARY KEY, uuid4 string)
    ├─ email (VARCHAR(320) UNIQUE, INDEXED, lower-cased)
    ├─ password_hash (VARCHAR(128) NOT NULL, bcrypt)
    ├─ role (VARCHAR(16) NOT NULL, 'User' | 'Admin')
    └─ created_at (TIMESTAMPTZ NOT NULL)

    short_links table
    ├─ id (UUID PRIMARY KEY)
    ├─ original_url (TEXT UNIQUE NOT NULL)
    ├─ short_code (VARCHAR(10) UNIQUE, INDEXED)
    ├─ owner_id (VARCHAR(36) FK users.id, INDEXED)
    ├─ created_at (TIMESTAMPTZ NOT NULL)
    └─ visit_count (INTEGER NOT NULL DEFAULT 0)

How to Use
===========
**Step 1 — Import**::
    from shortener.models import ShortLink, User

**Step 2 — Query links**::
    result = await db.execute(select(ShortLink).where(ShortLink.short_code == "aB3xY9"))
    link = result.scalar_one_or_none()

**Step 3 — Count a visit atomically**::
    await db.execute(
        update(ShortLink)
        .where(ShortLink.short_code == "aB3xY9")
        .values(visit_count=ShortLink.visit_count + 1)
    )

Key Behaviours
===============
- original_url and short_code carry unique constraints; the store maps
  violations back to the offending column.
- created_at is set application-side in UTC so every store backend agrees.
- visit_count starts at 0 and is only ever incremented in SQL.

Classes:
    User:  A registered principal with a single role.
    ShortLink:  A shortened URL owned by a user, with its visit counter.
"""

import datetime
import uuid

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base
from shortener.enums import Role

__all__ = ["ShortLink", "User", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=Role.USER.value)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', email='{self.email}', role='{self.role}')>"


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    original_url: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    short_code: Mapped[str] = mapped_column(String(10), unique=True, index=True, nullable=False)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    visit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, short_code='{self.short_code}', visit_count={self.visit_count})>"
