"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class MediaItem(Base):
    """Locally mirrored catalog entry (movie or series)."""

    __tablename__ = "media_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    native_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(255))
    media_type: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    originally_available_at: Mapped[str | None] = mapped_column(String(32), nullable=True)
    guid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    tagline: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    content_rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    audience_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    poster: Mapped[str | None] = mapped_column(String(512), nullable=True)
    backdrop: Mapped[str | None] = mapped_column(String(512), nullable=True)
    added_at: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    thumbnails: Mapped[list["MediaThumbnail"]] = relationship(
        back_populates="media_item", cascade="all, delete-orphan"
    )


class MediaThumbnail(Base):
    """Locally cached artwork file for a media item."""

    __tablename__ = "media_thumbnails"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("media_items.id", ondelete="CASCADE"), index=True
    )
    path: Mapped[str] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    media_item: Mapped[MediaItem] = relationship(back_populates="thumbnails")


class HeroPoolRecord(Base):
    """Persisted hero pool payload and anti-repeat history for one kind."""

    __tablename__ = "hero_pools"
    __table_args__ = (Index("hero_pools_expires_at_idx", "expires_at"),)

    kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    policy_hash: Mapped[str] = mapped_column(String(64), default="")
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    expires_at: Mapped[int] = mapped_column(Integer)
    updated_at: Mapped[int] = mapped_column(Integer)
