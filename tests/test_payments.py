"""Tests for Stripe and Paystack webhook handling and Paystack verification.

Signatures are computed for real against a test secret; the database and
the Paystack client are mocked.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from beatbloom.config import settings
from beatbloom.integrations.paystack import PaystackVerification, compute_signature
from beatbloom.services.payment_service import (
    PaymentEvent,
    apply_payment_event,
    paystack_event_to_payment,
    stripe_event_to_payment,
    verify_payment,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_STRIPE_SECRET = "whsec_test_secret"
_PAYSTACK_SECRET = "sk_test_paystack"
FAKE_USER = uuid.UUID("00000000-0000-0000-0000-000000000001")
REFERENCE = "bb_0123456789abcdef"
NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _stripe_signature(payload: bytes, secret: str = _STRIPE_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _stripe_event(
    event_type: str = "checkout.session.completed",
    payment_status: str = "paid",
    event_id: str = "evt_test_1",
) -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": "cs_test_1",
                "client_reference_id": REFERENCE,
                "payment_status": payment_status,
                "payment_intent": "pi_test_1",
                "metadata": {"payment_reference": REFERENCE},
            }
        },
    }


def _order_row(status: str = "pending", user_id=None, total: str = "31.16"):
    return (
        42, user_id, "BB-20261001-ABC123", "buyer@example.com",
        Decimal("29.99"), Decimal("1.17"), Decimal(total), "USD",
        status, "paystack", REFERENCE, None, NOW,
    )


def _item_row():
    return (
        420, 42, 1, 10, 7, "Midnight Drive", "Basic", "mp3",
        Decimal("29.99"), Decimal("4.50"), Decimal("25.49"), False,
        None, "Nova Beats",
    )


def _one_result(row):
    result = MagicMock()
    result.fetchone.return_value = row
    return result


def _rows_result(rows):
    result = MagicMock()
    result.fetchall.return_value = rows
    return result


# ---------------------------------------------------------------------------
# 1. Event mapping
# ---------------------------------------------------------------------------


def test_paid_checkout_session_settles():
    payment = stripe_event_to_payment(_stripe_event())

    assert payment.status == "success"
    assert payment.reference == REFERENCE
    assert payment.metadata["stripe_event_id"] == "evt_test_1"


def test_unpaid_checkout_session_is_ignored():
    assert stripe_event_to_payment(_stripe_event(payment_status="unpaid")) is None


def test_expired_session_fails_order():
    payment = stripe_event_to_payment(_stripe_event("checkout.session.expired", "unpaid"))

    assert payment.status == "failed"


def test_unrelated_stripe_event_is_ignored():
    assert stripe_event_to_payment(_stripe_event("customer.created")) is None


def test_paystack_charge_success():
    payment = paystack_event_to_payment(
        {"event": "charge.success", "data": {"reference": REFERENCE, "status": "success"}}
    )

    assert payment.provider == "paystack"
    assert payment.status == "success"


def test_paystack_event_without_reference_ignored():
    assert paystack_event_to_payment({"event": "charge.success", "data": {}}) is None


def _refunded_charge(refunded: bool = True) -> dict:
    return {
        "id": "evt_test_refund",
        "type": "charge.refunded",
        "data": {
            "object": {
                "id": "ch_test_1",
                "refunded": refunded,
                "payment_intent": "pi_test_1",
                "metadata": {"payment_reference": REFERENCE},
            }
        },
    }


def test_full_charge_refund_maps_to_refund():
    payment = stripe_event_to_payment(_refunded_charge())

    assert payment.status == "refunded"
    assert payment.reference == REFERENCE
    assert payment.metadata["stripe_object_id"] == "ch_test_1"


def test_partial_charge_refund_is_ignored():
    assert stripe_event_to_payment(_refunded_charge(refunded=False)) is None


def test_paystack_refund_uses_transaction_reference():
    payment = paystack_event_to_payment(
        {
            "event": "refund.processed",
            "data": {"transaction_reference": REFERENCE, "status": "processed"},
        }
    )

    assert payment.status == "refunded"
    assert payment.reference == REFERENCE


@pytest.mark.asyncio
async def test_refund_event_is_routed_to_refund():
    db = AsyncMock()
    event = PaymentEvent(provider="stripe", reference=REFERENCE, status="refunded")

    with patch(
        "beatbloom.services.payment_service.refund_order", new_callable=AsyncMock,
    ) as mock_refund:
        mock_refund.return_value = None
        result = await apply_payment_event(db, event)

    mock_refund.assert_awaited_once_with(db, REFERENCE, {})
    assert result.order is None
    assert result.newly_completed is False


# ---------------------------------------------------------------------------
# 2. Stripe webhook endpoint
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stripe_webhook_bad_signature_400(client, override_db):
    mock_db = override_db(AsyncMock())
    payload = json.dumps(_stripe_event()).encode()

    with patch.object(settings, "STRIPE_WEBHOOK_SECRET", _STRIPE_SECRET):
        response = await client.post(
            "/api/v1/payments/webhook/stripe",
            content=payload,
            headers={"stripe-signature": _stripe_signature(payload, "whsec_wrong")},
        )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid signature"
    mock_db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_stripe_webhook_settles_and_sends_confirmation(client, override_db):
    mock_db = override_db(AsyncMock())
    mock_db.execute.side_effect = [
        _one_result(None),             # event not yet processed
        _one_result(_order_row()),     # lock order
        MagicMock(),                   # UPDATE orders
        _rows_result([_item_row()]),   # items
        _one_result((900,)),           # earning
        MagicMock(),                   # mark event processed
    ]
    payload = json.dumps(_stripe_event()).encode()

    with (
        patch.object(settings, "STRIPE_WEBHOOK_SECRET", _STRIPE_SECRET),
        patch("beatbloom.api.payments.notify_purchase_confirmation", new_callable=AsyncMock) as mock_notify,
    ):
        response = await client.post(
            "/api/v1/payments/webhook/stripe",
            content=payload,
            headers={"stripe-signature": _stripe_signature(payload)},
        )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    mock_notify.assert_awaited_once()
    assert mock_notify.await_args.args[0].order_number == "BB-20261001-ABC123"

    statements = [str(c.args[0]) for c in mock_db.execute.await_args_list]
    assert statements[-1].startswith("INSERT INTO processed_webhooks")


@pytest.mark.asyncio
async def test_stripe_webhook_replay_is_skipped(client, override_db):
    mock_db = override_db(AsyncMock())
    mock_db.execute.return_value = _one_result((1,))
    payload = json.dumps(_stripe_event()).encode()

    with (
        patch.object(settings, "STRIPE_WEBHOOK_SECRET", _STRIPE_SECRET),
        patch("beatbloom.api.payments.notify_purchase_confirmation", new_callable=AsyncMock) as mock_notify,
    ):
        response = await client.post(
            "/api/v1/payments/webhook/stripe",
            content=payload,
            headers={"stripe-signature": _stripe_signature(payload)},
        )

    assert response.status_code == 200
    assert mock_db.execute.await_count == 1
    mock_notify.assert_not_awaited()


# ---------------------------------------------------------------------------
# 3. Paystack webhook endpoint
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_paystack_webhook_bad_signature_400(client, override_db):
    override_db(AsyncMock())
    payload = json.dumps({"event": "charge.success", "data": {"reference": REFERENCE}}).encode()

    with patch.object(settings, "PAYSTACK_SECRET_KEY", _PAYSTACK_SECRET):
        response = await client.post(
            "/api/v1/payments/webhook/paystack",
            content=payload,
            headers={"x-paystack-signature": "deadbeef"},
        )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_paystack_webhook_unknown_reference_acknowledged(client, override_db):
    mock_db = override_db(AsyncMock())
    mock_db.execute.return_value = _one_result(None)
    payload = json.dumps({"event": "charge.success", "data": {"reference": "bb_nope"}}).encode()

    with patch.object(settings, "PAYSTACK_SECRET_KEY", _PAYSTACK_SECRET):
        response = await client.post(
            "/api/v1/payments/webhook/paystack",
            content=payload,
            headers={"x-paystack-signature": compute_signature(payload, _PAYSTACK_SECRET)},
        )

    assert response.status_code == 200
    assert response.json() == {"received": True}


@pytest.mark.asyncio
async def test_paystack_webhook_non_object_payload_400(client, override_db):
    override_db(AsyncMock())
    payload = b"[1, 2, 3]"

    with patch.object(settings, "PAYSTACK_SECRET_KEY", _PAYSTACK_SECRET):
        response = await client.post(
            "/api/v1/payments/webhook/paystack",
            content=payload,
            headers={"x-paystack-signature": compute_signature(payload, _PAYSTACK_SECRET)},
        )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid payload"


# ---------------------------------------------------------------------------
# 4. Paystack verification
# ---------------------------------------------------------------------------


def _paystack_client(status: str = "success", amount_minor: int = 3116) -> MagicMock:
    client = MagicMock()
    client.verify_transaction = AsyncMock(
        return_value=PaystackVerification(
            reference=REFERENCE, status=status, amount_minor=amount_minor, currency="USD",
        )
    )
    return client


@pytest.mark.asyncio
async def test_verify_payment_other_users_order_404():
    db = AsyncMock()
    db.execute.side_effect = [_one_result(_order_row(user_id=uuid.uuid4())), _rows_result([])]

    with pytest.raises(HTTPException) as exc_info:
        await verify_payment(db, REFERENCE, FAKE_USER, paystack=_paystack_client())

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_verify_payment_amount_mismatch_400():
    db = AsyncMock()
    db.execute.side_effect = [_one_result(_order_row(user_id=FAKE_USER)), _rows_result([])]

    with pytest.raises(HTTPException) as exc_info:
        await verify_payment(db, REFERENCE, FAKE_USER, paystack=_paystack_client(amount_minor=100))

    assert exc_info.value.detail == "Payment amount does not match order"


@pytest.mark.asyncio
async def test_verify_payment_not_successful_400():
    db = AsyncMock()
    db.execute.side_effect = [_one_result(_order_row(user_id=FAKE_USER)), _rows_result([])]

    with pytest.raises(HTTPException) as exc_info:
        await verify_payment(db, REFERENCE, FAKE_USER, paystack=_paystack_client(status="abandoned"))

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_verify_payment_settles_order():
    db = AsyncMock()
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    db.begin_nested = MagicMock(return_value=nested)
    db.execute.side_effect = [
        _one_result(_order_row(user_id=FAKE_USER)),  # get_order_by_reference
        _rows_result([_item_row()]),
        _one_result(_order_row(user_id=FAKE_USER)),  # lock order
        MagicMock(),
        _rows_result([_item_row()]),
        MagicMock(),                                 # purchase
        _one_result((900,)),                         # earning
        MagicMock(),                                 # clear cart
    ]

    result = await verify_payment(db, REFERENCE, FAKE_USER, paystack=_paystack_client())

    assert result.newly_completed is True
    assert result.order.status == "completed"


@pytest.mark.asyncio
async def test_verify_already_completed_skips_provider():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result(_order_row(status="completed", user_id=FAKE_USER)),
        _rows_result([_item_row()]),
    ]
    paystack = _paystack_client()

    result = await verify_payment(db, REFERENCE, FAKE_USER, paystack=paystack)

    assert result.newly_completed is False
    paystack.verify_transaction.assert_not_awaited()
