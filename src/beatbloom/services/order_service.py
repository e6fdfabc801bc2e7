"""Order creation, order history, payment settlement, and refunds.

Orders are written ``pending`` together with immutable item snapshots.
Purchases and producer earnings only appear when a payment for the order's
reference is confirmed, which happens at most once per order: settlement
takes a row lock on the order and re-checks its status under that lock.
A refund takes the same lock and only applies to completed orders.
"""

from __future__ import annotations

import json
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.config import settings
from beatbloom.services.audit_logger import AuditLogger
from beatbloom.services.cart_service import (
    CartOwner,
    clear_cart,
    remove_beat_from_all_carts,
)
from beatbloom.services.earnings_service import refund_order_earnings
from beatbloom.services.fee_calculator import split_line_item, summarize_splits
from beatbloom.services.pagination import Pagination, build_pagination, clamp_page
from beatbloom.services.settings_service import SettingsCache, get_fee_settings

log = structlog.get_logger()
audit = AuditLogger()

PaymentProvider = Literal["stripe", "paystack"]

# States from which a confirmed payment may still settle the order
SETTLEABLE_STATUSES = ("pending", "processing", "failed")
FAILABLE_STATUSES = ("pending", "processing")
REFUNDABLE_STATUSES = ("completed",)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class OrderLineRequest(BaseModel):
    beat_id: int
    license_tier_id: int


class CreateOrderRequest(BaseModel):
    items: list[OrderLineRequest]
    payment_provider: PaymentProvider = "stripe"
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Buyer(BaseModel):
    user_id: Optional[uuid.UUID] = None
    email: Optional[str] = None


class OrderItemResponse(BaseModel):
    order_item_id: int
    order_id: int
    beat_id: int
    license_tier_id: int
    producer_id: int
    beat_title: str
    license_name: str
    license_type: str
    price: Decimal
    platform_fee: Decimal
    producer_earnings: Decimal
    is_exclusive: bool
    cover_image: Optional[str] = None
    producer_name: Optional[str] = None


class OrderResponse(BaseModel):
    order_id: int
    user_id: Optional[uuid.UUID] = None
    order_number: str
    email: str
    subtotal: Decimal
    processing_fee: Decimal
    total: Decimal
    currency: str
    status: str
    payment_provider: str
    payment_reference: str
    paid_at: Optional[datetime] = None
    created_at: datetime
    items: list[OrderItemResponse] = []


class PurchaseResponse(BaseModel):
    purchase_id: int
    beat_id: int
    order_item_id: int
    license_tier_id: int
    license_type: str
    purchased_at: datetime
    title: Optional[str] = None
    cover_image: Optional[str] = None
    preview_audio_url: Optional[str] = None
    producer_name: Optional[str] = None
    producer_username: Optional[str] = None


class RefundOrderRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class SettlementResult(BaseModel):
    """Outcome of applying a payment confirmation.

    ``order`` is None for an unknown reference. ``newly_completed`` is True
    only for the call that actually settled the order.
    """

    order: Optional[OrderResponse] = None
    newly_completed: bool = False


class ResolvedLine(BaseModel):
    """A validated order line with the catalog values to snapshot."""

    beat_id: int
    producer_id: int
    beat_title: str
    license_tier_id: int
    license_name: str
    license_type: str
    price: Decimal
    is_exclusive: bool
    commission_rate: Optional[Decimal] = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_ORDER_COLUMNS = (
    "order_id, user_id, order_number, email, subtotal, processing_fee, total, "
    "currency, status, payment_provider, payment_reference, paid_at, created_at"
)

_ITEM_COLUMNS = (
    "oi.order_item_id, oi.order_id, oi.beat_id, oi.license_tier_id, "
    "oi.producer_id, oi.beat_title, oi.license_name, oi.license_type, "
    "oi.price, oi.platform_fee, oi.producer_earnings, oi.is_exclusive, "
    "b.cover_image, p.display_name"
)

_PURCHASE_COLUMNS = (
    "up.purchase_id, up.beat_id, up.order_item_id, up.license_tier_id, "
    "up.license_type, up.purchased_at, b.title, b.cover_image, "
    "b.preview_audio_url, p.display_name, p.username"
)


def _row_to_order(row) -> OrderResponse:
    return OrderResponse(
        order_id=row[0],
        user_id=row[1],
        order_number=row[2],
        email=row[3],
        subtotal=row[4],
        processing_fee=row[5],
        total=row[6],
        currency=row[7],
        status=row[8],
        payment_provider=row[9],
        payment_reference=row[10],
        paid_at=row[11],
        created_at=row[12],
    )


def _row_to_item(row) -> OrderItemResponse:
    return OrderItemResponse(
        order_item_id=row[0],
        order_id=row[1],
        beat_id=row[2],
        license_tier_id=row[3],
        producer_id=row[4],
        beat_title=row[5],
        license_name=row[6],
        license_type=row[7],
        price=row[8],
        platform_fee=row[9],
        producer_earnings=row[10],
        is_exclusive=row[11],
        cover_image=row[12],
        producer_name=row[13],
    )


def _row_to_purchase(row) -> PurchaseResponse:
    return PurchaseResponse(
        purchase_id=row[0],
        beat_id=row[1],
        order_item_id=row[2],
        license_tier_id=row[3],
        license_type=row[4],
        purchased_at=row[5],
        title=row[6],
        cover_image=row[7],
        preview_audio_url=row[8],
        producer_name=row[9],
        producer_username=row[10],
    )


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Human-readable order number, e.g. ``BB-20261019-4F9A0C``."""
    now = now or datetime.now(timezone.utc)
    return f"BB-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def generate_payment_reference() -> str:
    return f"bb_{uuid.uuid4().hex}"


def _validate_lines(items: list[OrderLineRequest]) -> None:
    if not items:
        raise HTTPException(status_code=400, detail="Order items are required")
    keys = [(i.beat_id, i.license_tier_id) for i in items]
    if len(keys) != len(set(keys)):
        raise HTTPException(status_code=400, detail="Duplicate items in order")


async def _resolve_email(db: AsyncSession, buyer: Buyer) -> str:
    if buyer.email:
        return buyer.email
    if buyer.user_id is not None:
        result = await db.execute(
            text("SELECT email FROM users WHERE user_id = :user_id"),
            {"user_id": buyer.user_id},
        )
        row = result.fetchone()
        if row is not None:
            return row[0]
    raise HTTPException(status_code=400, detail="An email address is required")


async def _resolve_line(db: AsyncSession, line: OrderLineRequest) -> ResolvedLine:
    """Load the beat and tier for one line. Raises 404 when it cannot be sold."""
    result = await db.execute(
        text(
            "SELECT b.beat_id, b.producer_id, b.title, b.status, "
            "b.is_exclusive_sold, lt.license_tier_id, lt.beat_id, lt.name, "
            "lt.tier_type, lt.price, lt.is_exclusive, lt.is_enabled, "
            "p.commission_rate "
            "FROM beats b "
            "JOIN producers p ON p.producer_id = b.producer_id "
            "LEFT JOIN license_tiers lt ON lt.license_tier_id = :tier_id "
            "WHERE b.beat_id = :beat_id AND b.deleted_at IS NULL"
        ),
        {"beat_id": line.beat_id, "tier_id": line.license_tier_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(
            status_code=404, detail=f"Beat {line.beat_id} not found",
        )
    if row[5] is None or row[6] != line.beat_id:
        raise HTTPException(
            status_code=404,
            detail=f"License tier {line.license_tier_id} not found for beat {line.beat_id}",
        )
    if not row[11]:
        raise HTTPException(
            status_code=404,
            detail=f"License tier {line.license_tier_id} is not available",
        )
    if row[4] or row[3] != "active":
        raise HTTPException(
            status_code=404, detail=f"Beat {line.beat_id} is no longer available",
        )

    return ResolvedLine(
        beat_id=row[0],
        producer_id=row[1],
        beat_title=row[2],
        license_tier_id=row[5],
        license_name=row[7],
        license_type=row[8],
        price=row[9],
        is_exclusive=row[10],
        commission_rate=row[12],
    )


async def _ensure_not_owned(
    db: AsyncSession,
    user_id: uuid.UUID,
    line: ResolvedLine,
) -> None:
    result = await db.execute(
        text(
            "SELECT 1 FROM user_purchases WHERE user_id = :user_id "
            "AND beat_id = :beat_id AND license_tier_id = :tier_id"
        ),
        {
            "user_id": user_id,
            "beat_id": line.beat_id,
            "tier_id": line.license_tier_id,
        },
    )
    if result.fetchone() is not None:
        raise HTTPException(
            status_code=409,
            detail=f"You already own the {line.license_name} license for '{line.beat_title}'",
        )


async def _fetch_items(db: AsyncSession, order_id: int) -> list[OrderItemResponse]:
    result = await db.execute(
        text(
            f"SELECT {_ITEM_COLUMNS} FROM order_items oi "
            "LEFT JOIN beats b ON b.beat_id = oi.beat_id "
            "LEFT JOIN producers p ON p.producer_id = oi.producer_id "
            "WHERE oi.order_id = :order_id ORDER BY oi.order_item_id"
        ),
        {"order_id": order_id},
    )
    return [_row_to_item(r) for r in result.fetchall()]


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------

async def create_order(
    db: AsyncSession,
    cache: SettingsCache,
    buyer: Buyer,
    body: CreateOrderRequest,
) -> OrderResponse:
    """Validate, price, and persist a pending order with its item snapshots.

    Any unresolvable line aborts the whole request before anything is
    written. Raises 400 for empty or duplicated lines, 404 for a missing or
    unsellable beat/tier, and 409 when a signed-in buyer already owns a line.
    """
    _validate_lines(body.items)
    email = await _resolve_email(db, buyer)

    lines: list[ResolvedLine] = []
    for item in body.items:
        line = await _resolve_line(db, item)
        if buyer.user_id is not None:
            await _ensure_not_owned(db, buyer.user_id, line)
        lines.append(line)

    fee_settings = await get_fee_settings(db, cache)
    splits = [
        split_line_item(line.price, fee_settings, line.commission_rate)
        for line in lines
    ]
    breakdown = summarize_splits(splits, fee_settings)

    now = datetime.now(timezone.utc)
    order_number = generate_order_number(now)
    payment_reference = generate_payment_reference()

    result = await db.execute(
        text(
            "INSERT INTO orders "
            "(user_id, order_number, email, subtotal, processing_fee, total, "
            "currency, status, payment_provider, payment_reference, "
            "payment_metadata, created_at, updated_at) "
            "VALUES (:user_id, :order_number, :email, :subtotal, "
            ":processing_fee, :total, 'USD', 'pending', :provider, "
            ":reference, CAST(:metadata AS JSONB), :now, :now) "
            "RETURNING order_id"
        ),
        {
            "user_id": buyer.user_id,
            "order_number": order_number,
            "email": email,
            "subtotal": breakdown.subtotal,
            "processing_fee": breakdown.processing_fee,
            "total": breakdown.total,
            "provider": body.payment_provider,
            "reference": payment_reference,
            "metadata": json.dumps(
                {"platform_commission_rate": str(breakdown.platform_commission_rate)}
            ),
            "now": now,
        },
    )
    order_id: int = result.scalar_one()

    items: list[OrderItemResponse] = []
    for line, split in zip(lines, splits):
        item_result = await db.execute(
            text(
                "INSERT INTO order_items "
                "(order_id, beat_id, license_tier_id, producer_id, beat_title, "
                "license_name, license_type, price, platform_fee, "
                "producer_earnings, is_exclusive, created_at) "
                "VALUES (:order_id, :beat_id, :tier_id, :producer_id, :title, "
                ":license_name, :license_type, :price, :platform_fee, "
                ":producer_earnings, :is_exclusive, :now) "
                "RETURNING order_item_id"
            ),
            {
                "order_id": order_id,
                "beat_id": line.beat_id,
                "tier_id": line.license_tier_id,
                "producer_id": line.producer_id,
                "title": line.beat_title,
                "license_name": line.license_name,
                "license_type": line.license_type,
                "price": split.price,
                "platform_fee": split.platform_fee,
                "producer_earnings": split.producer_earnings,
                "is_exclusive": line.is_exclusive,
                "now": now,
            },
        )
        items.append(
            OrderItemResponse(
                order_item_id=item_result.scalar_one(),
                order_id=order_id,
                beat_id=line.beat_id,
                license_tier_id=line.license_tier_id,
                producer_id=line.producer_id,
                beat_title=line.beat_title,
                license_name=line.license_name,
                license_type=line.license_type,
                price=split.price,
                platform_fee=split.platform_fee,
                producer_earnings=split.producer_earnings,
                is_exclusive=line.is_exclusive,
            )
        )

    log.info(
        "order_created",
        order_id=order_id,
        order_number=order_number,
        user_id=str(buyer.user_id) if buyer.user_id else None,
        items=len(items),
        total=str(breakdown.total),
        provider=body.payment_provider,
    )
    audit.log_order_event(
        order_id, order_number, "created", breakdown.total,
        user_id=buyer.user_id, reference=payment_reference,
    )

    return OrderResponse(
        order_id=order_id,
        user_id=buyer.user_id,
        order_number=order_number,
        email=email,
        subtotal=breakdown.subtotal,
        processing_fee=breakdown.processing_fee,
        total=breakdown.total,
        currency="USD",
        status="pending",
        payment_provider=body.payment_provider,
        payment_reference=payment_reference,
        created_at=now,
        items=items,
    )


async def record_payment_metadata(
    db: AsyncSession,
    order_id: int,
    metadata: dict[str, Any],
) -> None:
    """Merge provider data (e.g. checkout session id) into the order."""
    await db.execute(
        text(
            "UPDATE orders SET payment_metadata = "
            "payment_metadata || CAST(:metadata AS JSONB) "
            "WHERE order_id = :order_id"
        ),
        {"order_id": order_id, "metadata": json.dumps(metadata, default=str)},
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_user_orders(
    db: AsyncSession,
    user_id: uuid.UUID,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[OrderResponse], Pagination]:
    page, limit, offset = clamp_page(page, limit)
    count = await db.execute(
        text("SELECT COUNT(*) FROM orders WHERE user_id = :user_id"),
        {"user_id": user_id},
    )
    total = count.scalar() or 0

    result = await db.execute(
        text(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE user_id = :user_id "
            "ORDER BY created_at DESC, order_id DESC LIMIT :limit OFFSET :offset"
        ),
        {"user_id": user_id, "limit": limit, "offset": offset},
    )
    orders = [_row_to_order(r) for r in result.fetchall()]
    return orders, build_pagination(total, page, limit)


async def get_order_detail(
    db: AsyncSession,
    order_id: int,
    user_id: uuid.UUID,
) -> OrderResponse:
    """Return one of the user's orders with its items. Other users get 404."""
    result = await db.execute(
        text(
            f"SELECT {_ORDER_COLUMNS} FROM orders "
            "WHERE order_id = :order_id AND user_id = :user_id"
        ),
        {"order_id": order_id, "user_id": user_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="Order not found")

    order = _row_to_order(row)
    order.items = await _fetch_items(db, order_id)
    return order


async def get_order_by_reference(
    db: AsyncSession,
    reference: str,
) -> Optional[OrderResponse]:
    result = await db.execute(
        text(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE payment_reference = :ref"),
        {"ref": reference},
    )
    row = result.fetchone()
    if row is None:
        return None
    order = _row_to_order(row)
    order.items = await _fetch_items(db, order.order_id)
    return order


async def get_user_purchases(
    db: AsyncSession,
    user_id: uuid.UUID,
) -> list[PurchaseResponse]:
    result = await db.execute(
        text(
            f"SELECT {_PURCHASE_COLUMNS} FROM user_purchases up "
            "JOIN beats b ON b.beat_id = up.beat_id "
            "LEFT JOIN producers p ON p.producer_id = b.producer_id "
            "WHERE up.user_id = :user_id ORDER BY up.purchased_at DESC"
        ),
        {"user_id": user_id},
    )
    return [_row_to_purchase(r) for r in result.fetchall()]


async def get_purchased_tiers_for_beat(
    db: AsyncSession,
    user_id: uuid.UUID,
    beat_id: int,
) -> list[PurchaseResponse]:
    """Licenses the user already holds for one beat."""
    result = await db.execute(
        text(
            f"SELECT {_PURCHASE_COLUMNS} FROM user_purchases up "
            "JOIN beats b ON b.beat_id = up.beat_id "
            "LEFT JOIN producers p ON p.producer_id = b.producer_id "
            "WHERE up.user_id = :user_id AND up.beat_id = :beat_id "
            "ORDER BY up.purchased_at DESC"
        ),
        {"user_id": user_id, "beat_id": beat_id},
    )
    return [_row_to_purchase(r) for r in result.fetchall()]


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

async def _lock_order(
    db: AsyncSession,
    reference: Optional[str] = None,
    order_id: Optional[int] = None,
) -> Optional[OrderResponse]:
    if order_id is not None:
        where, params = "order_id = :order_id", {"order_id": order_id}
    else:
        where, params = "payment_reference = :ref", {"ref": reference}
    result = await db.execute(
        text(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE {where} FOR UPDATE"),
        params,
    )
    row = result.fetchone()
    return _row_to_order(row) if row is not None else None


async def _grant_purchase(
    db: AsyncSession,
    user_id: uuid.UUID,
    item: OrderItemResponse,
    now: datetime,
) -> None:
    await db.execute(
        text(
            "INSERT INTO user_purchases "
            "(user_id, beat_id, order_item_id, license_tier_id, license_type, "
            "purchased_at) "
            "VALUES (:user_id, :beat_id, :order_item_id, :tier_id, "
            ":license_type, :now) "
            "ON CONFLICT (user_id, beat_id, license_tier_id) DO NOTHING"
        ),
        {
            "user_id": user_id,
            "beat_id": item.beat_id,
            "order_item_id": item.order_item_id,
            "tier_id": item.license_tier_id,
            "license_type": item.license_type,
            "now": now,
        },
    )


async def _record_earning(
    db: AsyncSession,
    order: OrderResponse,
    item: OrderItemResponse,
    now: datetime,
) -> None:
    """Book the producer's share exactly as it was quoted on the item."""
    result = await db.execute(
        text(
            "INSERT INTO producer_earnings "
            "(producer_id, order_id, order_item_id, beat_id, gross_amount, "
            "platform_fee, net_amount, currency, status, available_at, created_at) "
            "VALUES (:producer_id, :order_id, :order_item_id, :beat_id, "
            ":gross, :platform_fee, :net, :currency, 'pending', "
            ":available_at, :now) "
            "ON CONFLICT (order_item_id) DO NOTHING "
            "RETURNING earning_id"
        ),
        {
            "producer_id": item.producer_id,
            "order_id": order.order_id,
            "order_item_id": item.order_item_id,
            "beat_id": item.beat_id,
            "gross": item.price,
            "platform_fee": item.platform_fee,
            "net": item.producer_earnings,
            "currency": order.currency,
            "available_at": now + timedelta(days=settings.EARNINGS_HOLD_DAYS),
            "now": now,
        },
    )
    row = result.fetchone()
    if row is not None:
        audit.log_earning_event(
            producer_id=item.producer_id,
            earning_id=row[0],
            amount=item.producer_earnings,
            event="recorded",
            reference_id=order.order_id,
        )


async def _retire_exclusive_beat(
    db: AsyncSession,
    order: OrderResponse,
    beat_id: int,
) -> None:
    await db.execute(
        text(
            "UPDATE beats SET is_exclusive_sold = true, status = 'soldExclusive' "
            "WHERE beat_id = :beat_id"
        ),
        {"beat_id": beat_id},
    )
    await remove_beat_from_all_carts(db, beat_id)
    log.info("beat_sold_exclusive", beat_id=beat_id)
    audit.log_exclusive_sale(beat_id, order.order_id, buyer_user_id=order.user_id)


async def _clear_buyer_cart(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Empty the buyer's cart in a savepoint; failure leaves settlement intact."""
    try:
        async with db.begin_nested():
            await clear_cart(db, CartOwner(user_id=user_id))
    except Exception as exc:
        log.warning("cart_clear_failed", user_id=str(user_id), error=str(exc))


async def settle_order(
    db: AsyncSession,
    reference: str,
    provider_data: dict[str, Any],
) -> SettlementResult:
    """Turn a confirmed payment into purchases and pending producer earnings.

    Runs inside the caller's transaction. An unknown reference yields an
    empty result and an already completed order is returned unchanged, so
    repeated deliveries of the same confirmation are no-ops. Errors while
    writing the order, purchases, earnings, or beat state propagate so the
    transaction rolls back and the provider retries.
    """
    order = await _lock_order(db, reference)
    if order is None:
        log.warning("settlement_unknown_reference", reference=reference)
        return SettlementResult()

    if order.status == "completed":
        log.info(
            "settlement_already_completed",
            order_id=order.order_id,
            reference=reference,
        )
        return SettlementResult(order=order)

    if order.status not in SETTLEABLE_STATUSES:
        log.warning(
            "settlement_skipped",
            order_id=order.order_id,
            status=order.status,
        )
        return SettlementResult(order=order)

    now = datetime.now(timezone.utc)
    await db.execute(
        text(
            "UPDATE orders SET status = 'completed', paid_at = :now, "
            "payment_metadata = payment_metadata || CAST(:metadata AS JSONB) "
            "WHERE order_id = :order_id"
        ),
        {
            "now": now,
            "metadata": json.dumps(provider_data, default=str),
            "order_id": order.order_id,
        },
    )

    items = await _fetch_items(db, order.order_id)
    for item in items:
        if order.user_id is not None:
            await _grant_purchase(db, order.user_id, item, now)
        await _record_earning(db, order, item, now)
        if item.is_exclusive:
            await _retire_exclusive_beat(db, order, item.beat_id)

    if order.user_id is not None:
        await _clear_buyer_cart(db, order.user_id)

    log.info(
        "order_settled",
        order_id=order.order_id,
        order_number=order.order_number,
        items=len(items),
        total=str(order.total),
    )
    audit.log_order_event(
        order.order_id, order.order_number, "settled", order.total,
        user_id=order.user_id, reference=reference,
    )

    return SettlementResult(
        order=order.model_copy(
            update={"status": "completed", "paid_at": now, "items": items},
        ),
        newly_completed=True,
    )


async def fail_order(
    db: AsyncSession,
    reference: str,
    metadata: dict[str, Any],
) -> Optional[OrderResponse]:
    """Mark a pending order as failed. Settled orders are left untouched."""
    order = await _lock_order(db, reference)
    if order is None:
        log.warning("payment_failure_unknown_reference", reference=reference)
        return None

    if order.status not in FAILABLE_STATUSES:
        return order

    await db.execute(
        text(
            "UPDATE orders SET status = 'failed', "
            "payment_metadata = payment_metadata || CAST(:metadata AS JSONB) "
            "WHERE order_id = :order_id"
        ),
        {"metadata": json.dumps(metadata, default=str), "order_id": order.order_id},
    )
    log.info("order_failed", order_id=order.order_id, reference=reference)
    audit.log_order_event(
        order.order_id, order.order_number, "failed", order.total,
        user_id=order.user_id, reference=reference,
    )
    return order.model_copy(update={"status": "failed"})


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------

async def _apply_refund(
    db: AsyncSession,
    order: OrderResponse,
    metadata: dict[str, Any],
) -> OrderResponse:
    """Refund a locked, completed order.

    Revokes the licenses it granted and refunds the producer earnings it
    booked. An exclusive beat stays retired.
    """
    await db.execute(
        text(
            "UPDATE orders SET status = 'refunded', updated_at = :now, "
            "payment_metadata = payment_metadata || CAST(:metadata AS JSONB) "
            "WHERE order_id = :order_id"
        ),
        {
            "now": datetime.now(timezone.utc),
            "metadata": json.dumps(metadata, default=str),
            "order_id": order.order_id,
        },
    )
    await db.execute(
        text(
            "DELETE FROM user_purchases WHERE order_item_id IN "
            "(SELECT order_item_id FROM order_items WHERE order_id = :order_id)"
        ),
        {"order_id": order.order_id},
    )
    earnings = await refund_order_earnings(db, order.order_id)

    log.info(
        "order_refunded",
        order_id=order.order_id,
        order_number=order.order_number,
        earnings=earnings,
    )
    audit.log_order_event(
        order.order_id, order.order_number, "refunded", order.total,
        user_id=order.user_id, reference=order.payment_reference,
    )
    return order.model_copy(update={"status": "refunded"})


async def refund_order(
    db: AsyncSession,
    reference: str,
    metadata: dict[str, Any],
) -> Optional[OrderResponse]:
    """Apply a refund reported by the payment provider.

    Unknown references yield None. Orders that are not completed, including
    ones already refunded, are returned unchanged.
    """
    order = await _lock_order(db, reference)
    if order is None:
        log.warning("refund_unknown_reference", reference=reference)
        return None

    if order.status not in REFUNDABLE_STATUSES:
        log.info("refund_skipped", order_id=order.order_id, status=order.status)
        return order

    return await _apply_refund(db, order, metadata)


async def refund_order_by_admin(
    db: AsyncSession,
    order_id: int,
    admin_user_id: uuid.UUID,
    reason: str,
) -> OrderResponse:
    """Refund a completed order on an admin's request.

    Raises 404 for an unknown order and 409 unless the order is completed.
    """
    order = await _lock_order(db, order_id=order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.status not in REFUNDABLE_STATUSES:
        raise HTTPException(
            status_code=409,
            detail=f"Only completed orders can be refunded (order is {order.status})",
        )

    return await _apply_refund(
        db, order, {"refunded_by": str(admin_user_id), "refund_reason": reason},
    )
