"""Admin payout processing and order refund endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import require_role
from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.earnings_service import (
    CompletePayoutRequest,
    FailPayoutRequest,
    complete_payout,
    fail_payout,
)
from beatbloom.services.order_service import RefundOrderRequest, refund_order_by_admin

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/payouts/{payout_id}/complete")
async def complete_payout_endpoint(
    payout_id: int,
    body: CompletePayoutRequest,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    payout = await complete_payout(db, payout_id, admin.user_id, body.transaction_reference)
    return ok(payout, "Payout completed")


@router.post("/payouts/{payout_id}/fail")
async def fail_payout_endpoint(
    payout_id: int,
    body: FailPayoutRequest,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    payout = await fail_payout(db, payout_id, admin.user_id, body.reason)
    return ok(payout, "Payout marked as failed")


@router.post("/orders/{order_id}/refund")
async def refund_order_endpoint(
    order_id: int,
    body: RefundOrderRequest,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Refund a completed order after the money was returned off-platform."""
    order = await refund_order_by_admin(db, order_id, admin.user_id, body.reason)
    return ok(order, "Order refunded")
