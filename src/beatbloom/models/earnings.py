"""Producer earnings ledger, payout methods, and payouts."""

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
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from beatbloom.models.base import Base

if TYPE_CHECKING:
    from beatbloom.models.user import Producer


class ProducerEarning(Base):
    """Append-only ledger row, one per settled order item."""

    __tablename__ = "producer_earnings"

    earning_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    producer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("producers.producer_id", ondelete="CASCADE"),
        nullable=False,
    )
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False
    )
    order_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("order_items.order_item_id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    beat_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("beats.beat_id", ondelete="SET NULL"), nullable=True
    )
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    payout_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("payouts.payout_id", ondelete="SET NULL"), nullable=True
    )
    available_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "gross_amount = platform_fee + net_amount", name="ck_earning_split"
        ),
        CheckConstraint(
            "status IN ('pending', 'available', 'processing', 'paid', 'refunded')",
            name="ck_earning_status",
        ),
    )

    producer: Mapped[Producer] = relationship(back_populates="earnings")


class PayoutMethod(Base):
    __tablename__ = "payout_methods"

    payout_method_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    producer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("producers.producer_id", ondelete="CASCADE"),
        nullable=False,
    )
    method_type: Mapped[str] = mapped_column(String(20), nullable=False)
    details: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "method_type IN ('paypal', 'bank', 'mobileMoney', 'payoneer')",
            name="ck_payout_method_type",
        ),
    )

    producer: Mapped[Producer] = relationship(back_populates="payout_methods")


class Payout(Base):
    __tablename__ = "payouts"

    payout_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    producer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("producers.producer_id", ondelete="CASCADE"),
        nullable=False,
    )
    payout_method_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payout_methods.payout_method_id", ondelete="SET NULL"),
        nullable=True,
    )
    payout_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    transaction_reference: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payout_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="ck_payout_status",
        ),
    )
