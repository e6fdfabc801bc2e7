"""Payment webhooks and verification endpoints."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import get_current_user
from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.notification_service import notify_purchase_confirmation
from beatbloom.services.order_service import SettlementResult
from beatbloom.services.payment_service import (
    handle_paystack_webhook,
    handle_stripe_webhook,
    verify_payment,
)

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


def _schedule_confirmation(result: SettlementResult, background_tasks: BackgroundTasks) -> None:
    # Background tasks run after the response, i.e. after get_db has committed
    if result.newly_completed and result.order is not None:
        background_tasks.add_task(notify_purchase_confirmation, result.order)


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Receive and process Stripe webhook events.

    Reads the raw request body and the Stripe-Signature header,
    then delegates to the payment service for verification and handling.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    result = await handle_stripe_webhook(payload, sig_header, db)
    _schedule_confirmation(result, background_tasks)
    return {"received": True}


@router.post("/webhook/paystack")
async def paystack_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    signature = request.headers.get("x-paystack-signature")
    result = await handle_paystack_webhook(payload, signature, db)
    _schedule_confirmation(result, background_tasks)
    return {"received": True}


@router.get("/verify/paystack/{reference}")
async def verify_paystack_endpoint(
    reference: str,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Confirm a Paystack payment on return from the hosted page."""
    result = await verify_payment(db, reference, current_user.user_id)
    _schedule_confirmation(result, background_tasks)
    return ok(result.order, "Payment verified")
