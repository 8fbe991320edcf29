"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .utils import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """An identity known to the authenticator."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    # Values captured at signup (username, display_name) for the bootstrapper.
    user_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    sessions: Mapped[list["AuthSession"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class AuthSession(Base):
    """Opaque bearer token issued after a successful password check."""

    __tablename__ = "auth_sessions"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user: Mapped[User] = relationship(back_populates="sessions")


class Profile(Base):
    """Public-facing identity record and visibility defaults."""

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    username: Mapped[str] = mapped_column(String(24), unique=True)
    display_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    profile_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    default_item_public: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    default_review_public: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class CollectionItem(Base):
    """A title in a user's collection."""

    __tablename__ = "collection_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    tmdb_id: Mapped[int] = mapped_column(Integer)
    media_type: Mapped[str] = mapped_column(String(8))
    status: Mapped[str] = mapped_column(String(24))
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    note: Mapped["ItemNote | None"] = relationship(
        back_populates="item", cascade="all, delete-orphan", uselist=False
    )
    override: Mapped["ItemOverride | None"] = relationship(
        back_populates="item", cascade="all, delete-orphan", uselist=False
    )


class ItemNote(Base):
    """Private rating, tags and notes attached to a collection item."""

    __tablename__ = "item_notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    collection_item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("collection_items.id", ondelete="CASCADE"),
        unique=True,
    )
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    item: Mapped[CollectionItem] = relationship(back_populates="note")


class ItemOverride(Base):
    """Display overrides that mask catalog data for one collection item."""

    __tablename__ = "item_overrides"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    collection_item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("collection_items.id", ondelete="CASCADE"),
        unique=True,
    )
    custom_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_creator: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    item: Mapped[CollectionItem] = relationship(back_populates="override")


class ItemReview(Base):
    """A user's review of a title; at most one per (user, title)."""

    __tablename__ = "item_reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "tmdb_id", "media_type", name="uq_review_user_title"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    tmdb_id: Mapped[int] = mapped_column(Integer)
    media_type: Mapped[str] = mapped_column(String(8))
    review_text: Mapped[str] = mapped_column(Text)
    star_rating: Mapped[int] = mapped_column(Integer)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
