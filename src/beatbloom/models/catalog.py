"""Genre, beat, and license tier models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from beatbloom.models.base import Base

if TYPE_CHECKING:
    from beatbloom.models.user import Producer


class Genre(Base):
    __tablename__ = "genres"

    genre_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    beats: Mapped[list[Beat]] = relationship(back_populates="genre")


class Beat(Base):
    __tablename__ = "beats"

    beat_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    producer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("producers.producer_id", ondelete="CASCADE"),
        nullable=False,
    )
    genre_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("genres.genre_id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bpm: Mapped[int] = mapped_column(Integer, nullable=False)
    musical_key: Mapped[str] = mapped_column(String(10), nullable=False)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cover_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    preview_audio_url: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    tags: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    plays_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    likes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_exclusive_sold: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("producer_id", "slug", name="uq_beat_producer_slug"),
        CheckConstraint(
            "status IN ('draft', 'active', 'archived', 'soldExclusive')",
            name="ck_beat_status",
        ),
    )

    producer: Mapped[Producer] = relationship(back_populates="beats")
    genre: Mapped[Optional[Genre]] = relationship(back_populates="beats")
    license_tiers: Mapped[list[LicenseTier]] = relationship(
        back_populates="beat", lazy="selectin"
    )


class LicenseTier(Base):
    __tablename__ = "license_tiers"

    license_tier_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    beat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("beats.beat_id", ondelete="CASCADE"), nullable=False
    )
    tier_type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    included_files: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    is_exclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("beat_id", "tier_type", name="uq_tier_beat_type"),
        CheckConstraint(
            "tier_type IN ('mp3', 'wav', 'stems', 'exclusive')",
            name="ck_tier_type",
        ),
        CheckConstraint("price >= 0", name="ck_tier_price_nonneg"),
    )

    beat: Mapped[Beat] = relationship(back_populates="license_tiers")
