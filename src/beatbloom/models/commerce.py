"""Cart, order, order item, and purchase models."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from beatbloom.models.base import Base

if TYPE_CHECKING:
    from beatbloom.models.user import User


class CartItem(Base):
    __tablename__ = "cart_items"

    cart_item_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=True,
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    beat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("beats.beat_id", ondelete="CASCADE"), nullable=False
    )
    license_tier_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("license_tiers.license_tier_id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "user_id IS NOT NULL OR session_id IS NOT NULL",
            name="ck_cart_owner",
        ),
    )


class Order(Base):
    __tablename__ = "orders"

    order_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="SET NULL"),
        nullable=True,
    )
    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    processing_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    payment_provider: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_metadata: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "payment_provider", "payment_reference", name="uq_order_payment_ref"
        ),
        CheckConstraint(
            "total = subtotal + processing_fee", name="ck_order_total"
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'refunded')",
            name="ck_order_status",
        ),
    )

    user: Mapped[Optional[User]] = relationship(back_populates="orders")
    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order", lazy="selectin"
    )


class OrderItem(Base):
    """Snapshot of one line at time of sale. Immutable once written."""

    __tablename__ = "order_items"

    order_item_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False
    )
    beat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("beats.beat_id", ondelete="RESTRICT"), nullable=False
    )
    license_tier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("license_tiers.license_tier_id"), nullable=False
    )
    producer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("producers.producer_id"), nullable=False
    )
    beat_title: Mapped[str] = mapped_column(String(255), nullable=False)
    license_name: Mapped[str] = mapped_column(String(100), nullable=False)
    license_type: Mapped[str] = mapped_column(String(20), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    producer_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_exclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "price = platform_fee + producer_earnings", name="ck_item_fee_split"
        ),
    )

    order: Mapped[Order] = relationship(back_populates="items")


class UserPurchase(Base):
    __tablename__ = "user_purchases"

    purchase_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    beat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("beats.beat_id"), nullable=False
    )
    order_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("order_items.order_item_id"), nullable=False
    )
    license_tier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("license_tiers.license_tier_id"), nullable=False
    )
    license_type: Mapped[str] = mapped_column(String(20), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "beat_id", "license_tier_id", name="uq_purchase_user_beat_tier"
        ),
    )

    user: Mapped[User] = relationship(back_populates="purchases")
