"""Producer earnings ledger and payouts.

Each settled order item books one ``producer_earnings`` row that moves
through ``pending -> available -> processing -> paid``. Rows that have not
been paid out can be marked ``refunded``.
"""

from __future__ import annotations

import json
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

import structlog
from fastapi import HTTPException
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.services.audit_logger import AuditLogger
from beatbloom.services.pagination import Pagination, build_pagination, clamp_page
from beatbloom.services.settings_service import SettingsCache, get_payout_settings

log = structlog.get_logger()
audit = AuditLogger()

EarningStatus = Literal["pending", "available", "processing", "paid", "refunded"]
PayoutMethodType = Literal["paypal", "bank", "mobileMoney", "payoneer"]


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class DashboardStats(BaseModel):
    total_sales: int
    gross_revenue: Decimal
    net_earnings: Decimal
    pending_balance: Decimal
    available_balance: Decimal
    paid_out: Decimal


class EarningResponse(BaseModel):
    earning_id: int
    order_id: int
    order_item_id: int
    beat_id: Optional[int] = None
    beat_title: Optional[str] = None
    gross_amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    currency: str
    status: str
    payout_id: Optional[int] = None
    available_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class PayoutMethodRequest(BaseModel):
    method_type: PayoutMethodType
    details: dict[str, Any] = {}
    currency: str = "USD"
    country: Optional[str] = None
    is_default: bool = False


class PayoutMethodResponse(BaseModel):
    payout_method_id: int
    method_type: str
    details: dict[str, Any] = {}
    currency: str
    country: Optional[str] = None
    is_default: bool
    is_verified: bool
    created_at: datetime


class PayoutRequest(BaseModel):
    payout_method_id: Optional[int] = None


class CompletePayoutRequest(BaseModel):
    transaction_reference: Optional[str] = None


class FailPayoutRequest(BaseModel):
    reason: str


class PayoutResponse(BaseModel):
    payout_id: int
    producer_id: int
    payout_method_id: Optional[int] = None
    payout_number: str
    amount: Decimal
    currency: str
    status: str
    transaction_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    requested_at: datetime
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_EARNING_COLUMNS = (
    "e.earning_id, e.order_id, e.order_item_id, e.beat_id, oi.beat_title, "
    "e.gross_amount, e.platform_fee, e.net_amount, e.currency, e.status, "
    "e.payout_id, e.available_at, e.paid_at, e.created_at"
)

_METHOD_COLUMNS = (
    "payout_method_id, method_type, details, currency, country, is_default, "
    "is_verified, created_at"
)

_PAYOUT_COLUMNS = (
    "payout_id, producer_id, payout_method_id, payout_number, amount, currency, "
    "status, transaction_reference, failure_reason, requested_at, completed_at"
)


def _row_to_earning(row) -> EarningResponse:
    return EarningResponse(
        earning_id=row[0],
        order_id=row[1],
        order_item_id=row[2],
        beat_id=row[3],
        beat_title=row[4],
        gross_amount=row[5],
        platform_fee=row[6],
        net_amount=row[7],
        currency=row[8],
        status=row[9],
        payout_id=row[10],
        available_at=row[11],
        paid_at=row[12],
        created_at=row[13],
    )


def _row_to_method(row) -> PayoutMethodResponse:
    return PayoutMethodResponse(
        payout_method_id=row[0],
        method_type=row[1],
        details=row[2] or {},
        currency=row[3],
        country=row[4],
        is_default=row[5],
        is_verified=row[6],
        created_at=row[7],
    )


def _row_to_payout(row) -> PayoutResponse:
    return PayoutResponse(
        payout_id=row[0],
        producer_id=row[1],
        payout_method_id=row[2],
        payout_number=row[3],
        amount=row[4],
        currency=row[5],
        status=row[6],
        transaction_reference=row[7],
        failure_reason=row[8],
        requested_at=row[9],
        completed_at=row[10],
    )


def generate_payout_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"PO-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


async def _lock_payout(db: AsyncSession, payout_id: int) -> PayoutResponse:
    result = await db.execute(
        text(f"SELECT {_PAYOUT_COLUMNS} FROM payouts WHERE payout_id = :payout_id FOR UPDATE"),
        {"payout_id": payout_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="Payout not found")
    return _row_to_payout(row)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

async def get_dashboard_stats(db: AsyncSession, producer_id: int) -> DashboardStats:
    """Totals for the producer dashboard. Refunded rows are excluded."""
    result = await db.execute(
        text(
            "SELECT COUNT(*), "
            "COALESCE(SUM(gross_amount), 0), "
            "COALESCE(SUM(net_amount), 0), "
            "COALESCE(SUM(net_amount) FILTER (WHERE status = 'pending'), 0), "
            "COALESCE(SUM(net_amount) FILTER (WHERE status = 'available'), 0), "
            "COALESCE(SUM(net_amount) FILTER (WHERE status = 'paid'), 0) "
            "FROM producer_earnings "
            "WHERE producer_id = :producer_id AND status <> 'refunded'"
        ),
        {"producer_id": producer_id},
    )
    row = result.fetchone()
    return DashboardStats(
        total_sales=row[0],
        gross_revenue=row[1],
        net_earnings=row[2],
        pending_balance=row[3],
        available_balance=row[4],
        paid_out=row[5],
    )


async def list_earnings(
    db: AsyncSession,
    producer_id: int,
    status: Optional[EarningStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[EarningResponse], Pagination]:
    page, limit, offset = clamp_page(page, limit)
    where = "e.producer_id = :producer_id"
    params: dict[str, Any] = {"producer_id": producer_id}
    if status is not None:
        where += " AND e.status = :status"
        params["status"] = status

    count = await db.execute(
        text(f"SELECT COUNT(*) FROM producer_earnings e WHERE {where}"),
        params,
    )
    total = count.scalar() or 0

    result = await db.execute(
        text(
            f"SELECT {_EARNING_COLUMNS} FROM producer_earnings e "
            "LEFT JOIN order_items oi ON oi.order_item_id = e.order_item_id "
            f"WHERE {where} "
            "ORDER BY e.created_at DESC, e.earning_id DESC "
            "LIMIT :limit OFFSET :offset"
        ),
        {**params, "limit": limit, "offset": offset},
    )
    earnings = [_row_to_earning(r) for r in result.fetchall()]
    return earnings, build_pagination(total, page, limit)


async def release_available_earnings(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> int:
    """Move pending earnings past their hold period to ``available``.

    Returns the number of rows released.
    """
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        text(
            "UPDATE producer_earnings SET status = 'available' "
            "WHERE status = 'pending' AND available_at <= :now "
            "RETURNING earning_id"
        ),
        {"now": now},
    )
    released = len(result.fetchall())
    log.info("earnings_released", count=released)
    return released


async def _shrink_payout(db: AsyncSession, payout_id: int, amount: Decimal) -> None:
    """Take refunded earnings back out of an open payout.

    A payout left with nothing to send is cancelled instead, since its
    amount must stay positive.
    """
    result = await db.execute(
        text(
            "UPDATE payouts SET "
            "status = CASE WHEN amount <= :amount THEN 'cancelled' ELSE status END, "
            "amount = CASE WHEN amount <= :amount THEN amount ELSE amount - :amount END "
            "WHERE payout_id = :payout_id AND status IN ('pending', 'processing') "
            "RETURNING producer_id, amount, status"
        ),
        {"payout_id": payout_id, "amount": amount},
    )
    row = result.fetchone()
    if row is None:
        return
    audit.log_payout_event(
        producer_id=row[0],
        payout_id=payout_id,
        amount=row[1],
        event="cancelled" if row[2] == "cancelled" else "reduced",
        reason=f"Refunded earnings of {amount:.2f} withdrawn",
    )


async def refund_order_earnings(db: AsyncSession, order_id: int) -> int:
    """Mark every unpaid earning of an order as refunded.

    Paid rows are left alone. Rows already bundled into an open payout are
    withdrawn from it and the payout amount shrinks to match. Returns the
    number of rows refunded.
    """
    result = await db.execute(
        text(
            "UPDATE producer_earnings pe SET status = 'refunded', payout_id = NULL "
            "FROM producer_earnings prev "
            "WHERE prev.earning_id = pe.earning_id AND pe.order_id = :order_id "
            "AND pe.status IN ('pending', 'available', 'processing') "
            "RETURNING pe.earning_id, pe.producer_id, pe.net_amount, prev.payout_id"
        ),
        {"order_id": order_id},
    )
    rows = result.fetchall()

    withdrawn: dict[int, Decimal] = {}
    for row in rows:
        audit.log_earning_event(
            producer_id=row[1],
            earning_id=row[0],
            amount=row[2],
            event="refunded",
            reference_id=order_id,
        )
        if row[3] is not None:
            withdrawn[row[3]] = withdrawn.get(row[3], Decimal("0")) + row[2]

    for payout_id, amount in withdrawn.items():
        await _shrink_payout(db, payout_id, amount)

    log.info(
        "order_earnings_refunded",
        order_id=order_id,
        count=len(rows),
        payouts_adjusted=len(withdrawn),
    )
    return len(rows)


# ---------------------------------------------------------------------------
# Payout methods
# ---------------------------------------------------------------------------

async def get_payout_methods(
    db: AsyncSession,
    producer_id: int,
) -> list[PayoutMethodResponse]:
    result = await db.execute(
        text(
            f"SELECT {_METHOD_COLUMNS} FROM payout_methods "
            "WHERE producer_id = :producer_id "
            "ORDER BY is_default DESC, created_at ASC"
        ),
        {"producer_id": producer_id},
    )
    return [_row_to_method(r) for r in result.fetchall()]


async def add_payout_method(
    db: AsyncSession,
    producer_id: int,
    body: PayoutMethodRequest,
) -> PayoutMethodResponse:
    """Store a payout method. The first method, or one flagged default,
    becomes the only default."""
    count = await db.execute(
        text("SELECT COUNT(*) FROM payout_methods WHERE producer_id = :producer_id"),
        {"producer_id": producer_id},
    )
    is_default = body.is_default or (count.scalar() or 0) == 0

    if is_default:
        await db.execute(
            text(
                "UPDATE payout_methods SET is_default = false "
                "WHERE producer_id = :producer_id"
            ),
            {"producer_id": producer_id},
        )

    result = await db.execute(
        text(
            "INSERT INTO payout_methods "
            "(producer_id, method_type, details, currency, country, is_default) "
            "VALUES (:producer_id, :method_type, CAST(:details AS JSONB), "
            ":currency, :country, :is_default) "
            f"RETURNING {_METHOD_COLUMNS}"
        ),
        {
            "producer_id": producer_id,
            "method_type": body.method_type,
            "details": json.dumps(body.details),
            "currency": body.currency,
            "country": body.country,
            "is_default": is_default,
        },
    )
    method = _row_to_method(result.fetchone())
    log.info(
        "payout_method_added",
        producer_id=producer_id,
        payout_method_id=method.payout_method_id,
        method_type=method.method_type,
    )
    return method


async def delete_payout_method(
    db: AsyncSession,
    producer_id: int,
    payout_method_id: int,
) -> None:
    result = await db.execute(
        text(
            "DELETE FROM payout_methods "
            "WHERE payout_method_id = :payout_method_id AND producer_id = :producer_id "
            "RETURNING payout_method_id"
        ),
        {"payout_method_id": payout_method_id, "producer_id": producer_id},
    )
    if result.fetchone() is None:
        raise HTTPException(status_code=404, detail="Payout method not found")


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

async def _resolve_payout_method(
    db: AsyncSession,
    producer_id: int,
    payout_method_id: Optional[int],
) -> int:
    if payout_method_id is None:
        result = await db.execute(
            text(
                "SELECT payout_method_id FROM payout_methods "
                "WHERE producer_id = :producer_id "
                "ORDER BY is_default DESC, created_at ASC LIMIT 1"
            ),
            {"producer_id": producer_id},
        )
    else:
        result = await db.execute(
            text(
                "SELECT payout_method_id FROM payout_methods "
                "WHERE producer_id = :producer_id AND payout_method_id = :payout_method_id"
            ),
            {"producer_id": producer_id, "payout_method_id": payout_method_id},
        )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=400, detail="Add a payout method first")
    return row[0]


async def list_payouts(db: AsyncSession, producer_id: int) -> list[PayoutResponse]:
    result = await db.execute(
        text(
            f"SELECT {_PAYOUT_COLUMNS} FROM payouts "
            "WHERE producer_id = :producer_id ORDER BY requested_at DESC"
        ),
        {"producer_id": producer_id},
    )
    return [_row_to_payout(r) for r in result.fetchall()]


async def request_payout(
    db: AsyncSession,
    cache: SettingsCache,
    producer_id: int,
    payout_method_id: Optional[int] = None,
) -> PayoutResponse:
    """Bundle every available earning into a new pending payout.

    Raises 400 when the available balance is below ``minimumPayoutAmount``
    or the producer has no payout method.
    """
    result = await db.execute(
        text(
            "SELECT earning_id, net_amount FROM producer_earnings "
            "WHERE producer_id = :producer_id AND status = 'available' "
            "AND payout_id IS NULL FOR UPDATE"
        ),
        {"producer_id": producer_id},
    )
    rows = result.fetchall()
    amount = sum((r[1] for r in rows), Decimal("0"))

    payout_settings = await get_payout_settings(db, cache)
    if amount <= 0 or amount < payout_settings.minimum_payout_amount:
        raise HTTPException(
            status_code=400,
            detail=(
                f"Minimum payout is {payout_settings.minimum_payout_amount:.2f}, "
                f"available balance is {amount:.2f}"
            ),
        )

    method_id = await _resolve_payout_method(db, producer_id, payout_method_id)

    now = datetime.now(timezone.utc)
    created = await db.execute(
        text(
            "INSERT INTO payouts "
            "(producer_id, payout_method_id, payout_number, amount, status, requested_at) "
            "VALUES (:producer_id, :method_id, :payout_number, :amount, 'pending', :now) "
            f"RETURNING {_PAYOUT_COLUMNS}"
        ),
        {
            "producer_id": producer_id,
            "method_id": method_id,
            "payout_number": generate_payout_number(now),
            "amount": amount,
            "now": now,
        },
    )
    payout = _row_to_payout(created.fetchone())

    await db.execute(
        text(
            "UPDATE producer_earnings SET status = 'processing', payout_id = :payout_id "
            "WHERE earning_id = ANY(:earning_ids)"
        ),
        {"payout_id": payout.payout_id, "earning_ids": [r[0] for r in rows]},
    )

    audit.log_payout_event(
        producer_id=producer_id,
        payout_id=payout.payout_id,
        amount=amount,
        event="requested",
    )
    return payout


async def complete_payout(
    db: AsyncSession,
    payout_id: int,
    admin_user_id: uuid.UUID,
    transaction_reference: Optional[str] = None,
) -> PayoutResponse:
    """Mark a payout as sent and its earnings as paid."""
    payout = await _lock_payout(db, payout_id)
    if payout.status not in ("pending", "processing"):
        raise HTTPException(
            status_code=409,
            detail=f"Payout is already {payout.status}",
        )

    now = datetime.now(timezone.utc)
    result = await db.execute(
        text(
            "UPDATE payouts SET status = 'completed', completed_at = :now, "
            "transaction_reference = :reference, processed_by = :admin "
            f"WHERE payout_id = :payout_id RETURNING {_PAYOUT_COLUMNS}"
        ),
        {
            "now": now,
            "reference": transaction_reference,
            "admin": admin_user_id,
            "payout_id": payout_id,
        },
    )
    payout = _row_to_payout(result.fetchone())

    await db.execute(
        text(
            "UPDATE producer_earnings SET status = 'paid', paid_at = :now "
            "WHERE payout_id = :payout_id AND status = 'processing'"
        ),
        {"now": now, "payout_id": payout_id},
    )

    audit.log_payout_event(
        producer_id=payout.producer_id,
        payout_id=payout_id,
        amount=payout.amount,
        event="completed",
        processed_by=admin_user_id,
    )
    return payout


async def fail_payout(
    db: AsyncSession,
    payout_id: int,
    admin_user_id: uuid.UUID,
    reason: str,
) -> PayoutResponse:
    """Mark a payout as failed and release its earnings back to ``available``."""
    payout = await _lock_payout(db, payout_id)
    if payout.status not in ("pending", "processing"):
        raise HTTPException(
            status_code=409,
            detail=f"Payout is already {payout.status}",
        )

    result = await db.execute(
        text(
            "UPDATE payouts SET status = 'failed', failure_reason = :reason, "
            "processed_by = :admin "
            f"WHERE payout_id = :payout_id RETURNING {_PAYOUT_COLUMNS}"
        ),
        {"reason": reason, "admin": admin_user_id, "payout_id": payout_id},
    )
    payout = _row_to_payout(result.fetchone())

    await db.execute(
        text(
            "UPDATE producer_earnings SET status = 'available', payout_id = NULL "
            "WHERE payout_id = :payout_id AND status = 'processing'"
        ),
        {"payout_id": payout_id},
    )

    audit.log_payout_event(
        producer_id=payout.producer_id,
        payout_id=payout_id,
        amount=payout.amount,
        event="failed",
        processed_by=admin_user_id,
        reason=reason,
    )
    return payout
