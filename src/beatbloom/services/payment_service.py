"""Payment providers -- checkout creation and webhook handling.

Stripe and Paystack events are verified, deduplicated, and reduced to a
provider-neutral :class:`PaymentEvent` before reaching order settlement.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal, Optional

import stripe
import structlog
from fastapi import HTTPException
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.config import settings
from beatbloom.integrations.paystack import (
    PaystackClient,
    PaystackError,
    verify_signature,
)
from beatbloom.services.order_service import (
    OrderResponse,
    SettlementResult,
    fail_order,
    get_order_by_reference,
    record_payment_metadata,
    refund_order,
    settle_order,
)

log = structlog.get_logger()

stripe.api_key = settings.STRIPE_SECRET_KEY

STRIPE_SETTLE_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}
STRIPE_FAIL_EVENTS = {
    "checkout.session.expired",
    "checkout.session.async_payment_failed",
    "payment_intent.payment_failed",
}
# Only full refunds; a partially refunded charge keeps its licenses
STRIPE_REFUND_EVENTS = {"charge.refunded"}
PAYSTACK_REFUND_EVENTS = {"refund.processed"}


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class PaymentEvent(BaseModel):
    """A verified provider confirmation reduced to what settlement needs."""

    provider: Literal["stripe", "paystack"]
    reference: str
    status: Literal["success", "failed", "refunded"]
    metadata: dict[str, Any] = {}


class CheckoutResponse(BaseModel):
    order: OrderResponse
    provider: str
    checkout_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Checkout creation
# ---------------------------------------------------------------------------

def _cents(amount) -> int:
    return int((amount * 100).to_integral_value())


def success_url() -> str:
    return f"{settings.FRONTEND_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"


def cancel_url() -> str:
    return f"{settings.FRONTEND_URL}/cart"


def create_checkout_session(order: OrderResponse) -> tuple[str, str]:
    """Create a Stripe Checkout Session for an order.

    Returns ``(checkout_url, session_id)``.
    """
    currency = order.currency.lower()
    line_items = [
        {
            "price_data": {
                "currency": currency,
                "unit_amount": _cents(item.price),
                "product_data": {
                    "name": f"{item.beat_title} ({item.license_name} License)",
                },
            },
            "quantity": 1,
        }
        for item in order.items
    ]
    if order.processing_fee > 0:
        line_items.append(
            {
                "price_data": {
                    "currency": currency,
                    "unit_amount": _cents(order.processing_fee),
                    "product_data": {"name": "Processing fee"},
                },
                "quantity": 1,
            }
        )

    metadata = {
        "order_id": str(order.order_id),
        "order_number": order.order_number,
        "payment_reference": order.payment_reference,
    }
    session = stripe.checkout.Session.create(
        line_items=line_items,
        mode="payment",
        client_reference_id=order.payment_reference,
        customer_email=order.email,
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
        success_url=success_url(),
        cancel_url=cancel_url(),
    )
    return session.url, session.id


async def start_checkout(
    db: AsyncSession,
    order: OrderResponse,
    paystack: Optional[PaystackClient] = None,
) -> CheckoutResponse:
    """Open a hosted checkout with the order's provider and remember its id."""
    if order.payment_provider == "stripe":
        url, session_id = create_checkout_session(order)
        await record_payment_metadata(
            db, order.order_id, {"stripe_session_id": session_id},
        )
    else:
        client = paystack or PaystackClient()
        try:
            txn = await client.initialize_transaction(
                email=order.email,
                amount=order.total,
                reference=order.payment_reference,
                currency=order.currency,
                callback_url=f"{settings.FRONTEND_URL}/checkout/verify",
                metadata={"order_id": order.order_id, "order_number": order.order_number},
            )
        except PaystackError as exc:
            log.error(
                "paystack_initialize_failed",
                order_id=order.order_id,
                error=str(exc),
            )
            raise HTTPException(
                status_code=502, detail="Payment provider unavailable",
            ) from exc
        url = txn.authorization_url
        await record_payment_metadata(
            db, order.order_id, {"paystack_access_code": txn.access_code},
        )

    log.info(
        "checkout_started",
        order_id=order.order_id,
        provider=order.payment_provider,
    )
    return CheckoutResponse(order=order, provider=order.payment_provider, checkout_url=url)


# ---------------------------------------------------------------------------
# Webhook helpers
# ---------------------------------------------------------------------------

def _verify_stripe_event(payload: bytes, sig_header: str) -> dict:
    """Verify the Stripe webhook signature and return the event as a dict."""
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
        )
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")
    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    if not isinstance(event, dict) or "id" not in event or "type" not in event:
        raise HTTPException(status_code=400, detail="Invalid payload")
    return event


async def _is_already_processed(db: AsyncSession, event_id: str) -> bool:
    """Return True if this webhook event has already been handled."""
    existing = await db.execute(
        text("SELECT 1 FROM processed_webhooks WHERE event_id = :event_id"),
        {"event_id": event_id},
    )
    return existing.fetchone() is not None


async def _mark_event_processed(db: AsyncSession, event_id: str, provider: str) -> None:
    """Record a webhook event ID so it is not replayed."""
    await db.execute(
        text(
            "INSERT INTO processed_webhooks (event_id, provider, processed_at) "
            "VALUES (:event_id, :provider, :processed_at) "
            "ON CONFLICT (event_id) DO NOTHING"
        ),
        {
            "event_id": event_id,
            "provider": provider,
            "processed_at": datetime.now(timezone.utc),
        },
    )


def stripe_event_to_payment(event: dict) -> Optional[PaymentEvent]:
    """Map a Stripe event to a PaymentEvent, or None when it is not relevant."""
    event_type = event["type"]
    obj = event["data"]["object"]
    metadata = obj.get("metadata") or {}
    reference = obj.get("client_reference_id") or metadata.get("payment_reference")
    if not reference:
        return None

    provider_data = {
        "stripe_event_id": event["id"],
        "stripe_event_type": event_type,
        "stripe_object_id": obj.get("id"),
        "stripe_payment_intent": obj.get("payment_intent"),
    }

    if event_type in STRIPE_SETTLE_EVENTS:
        # Delayed payment methods complete the session before the money lands
        if obj.get("payment_status") not in ("paid", "no_payment_required"):
            return None
        return PaymentEvent(
            provider="stripe", reference=reference, status="success",
            metadata=provider_data,
        )
    if event_type in STRIPE_FAIL_EVENTS:
        return PaymentEvent(
            provider="stripe", reference=reference, status="failed",
            metadata=provider_data,
        )
    if event_type in STRIPE_REFUND_EVENTS and obj.get("refunded"):
        return PaymentEvent(
            provider="stripe", reference=reference, status="refunded",
            metadata=provider_data,
        )
    return None


def paystack_event_to_payment(event: dict) -> Optional[PaymentEvent]:
    data = event.get("data") or {}
    # Refund payloads name the original charge under transaction_reference
    reference = data.get("reference") or data.get("transaction_reference")
    if not reference:
        return None

    provider_data = {
        "paystack_event": event.get("event"),
        "paystack_id": data.get("id"),
        "paystack_status": data.get("status"),
        "paystack_channel": data.get("channel"),
        "paystack_paid_at": data.get("paid_at"),
    }
    if event.get("event") == "charge.success":
        return PaymentEvent(
            provider="paystack", reference=reference, status="success",
            metadata=provider_data,
        )
    if event.get("event") in PAYSTACK_REFUND_EVENTS:
        return PaymentEvent(
            provider="paystack", reference=reference, status="refunded",
            metadata=provider_data,
        )
    return None


async def apply_payment_event(
    db: AsyncSession,
    event: PaymentEvent,
) -> SettlementResult:
    """Settle, fail, or refund the order the event refers to."""
    if event.status == "success":
        return await settle_order(db, event.reference, event.metadata)
    if event.status == "refunded":
        order = await refund_order(db, event.reference, event.metadata)
        return SettlementResult(order=order)
    order = await fail_order(db, event.reference, event.metadata)
    return SettlementResult(order=order)


# ---------------------------------------------------------------------------
# Webhook entry-points
# ---------------------------------------------------------------------------

async def handle_stripe_webhook(
    payload: bytes,
    sig_header: str,
    db: AsyncSession,
) -> SettlementResult:
    """Verify a Stripe webhook signature and process the event.

    Idempotent -- skips events that have already been processed.
    """
    event = _verify_stripe_event(payload, sig_header)
    event_id: str = event["id"]

    if await _is_already_processed(db, event_id):
        log.info("webhook_replayed", provider="stripe", event_id=event_id)
        return SettlementResult()

    payment = stripe_event_to_payment(event)
    result = SettlementResult()
    if payment is not None:
        result = await apply_payment_event(db, payment)
    else:
        log.debug("webhook_ignored", provider="stripe", event_type=event["type"])

    await _mark_event_processed(db, event_id, "stripe")
    return result


async def handle_paystack_webhook(
    payload: bytes,
    signature: Optional[str],
    db: AsyncSession,
) -> SettlementResult:
    """Verify a Paystack webhook signature and process the event.

    Paystack sends no event id, so deliveries are deduplicated by the order
    status check inside settlement.
    """
    if not verify_signature(payload, signature, settings.PAYSTACK_SECRET_KEY):
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    payment = paystack_event_to_payment(event)
    if payment is None:
        log.debug("webhook_ignored", provider="paystack", event_type=event.get("event"))
        return SettlementResult()
    return await apply_payment_event(db, payment)


async def verify_payment(
    db: AsyncSession,
    reference: str,
    user_id,
    paystack: Optional[PaystackClient] = None,
) -> SettlementResult:
    """Re-check a Paystack transaction with the provider and settle it.

    Raises 404 when the reference does not belong to one of the user's
    orders, 400 when Paystack does not report it as paid.
    """
    order = await get_order_by_reference(db, reference)
    if order is None or order.user_id != user_id:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.status == "completed":
        return SettlementResult(order=order)

    client = paystack or PaystackClient()
    try:
        verification = await client.verify_transaction(reference)
    except PaystackError as exc:
        log.error("paystack_verify_failed", reference=reference, error=str(exc))
        raise HTTPException(status_code=502, detail="Payment provider unavailable") from exc

    if not verification.succeeded:
        raise HTTPException(
            status_code=400,
            detail=f"Payment not successful (status: {verification.status})",
        )
    if verification.amount_minor != _cents(order.total):
        log.error(
            "paystack_amount_mismatch",
            reference=reference,
            expected=_cents(order.total),
            received=verification.amount_minor,
        )
        raise HTTPException(status_code=400, detail="Payment amount does not match order")

    return await settle_order(
        db,
        reference,
        {
            "paystack_status": verification.status,
            "paystack_amount": verification.amount_minor,
            "verified_via": "api",
        },
    )
