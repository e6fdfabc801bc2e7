"""Tests for payment settlement: purchases, earnings, exclusivity, idempotency.

All database interactions are mocked -- no real DB required.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from structlog.testing import capture_logs

from beatbloom.services.order_service import (
    _lock_order,
    fail_order,
    refund_order,
    refund_order_by_admin,
    settle_order,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FAKE_USER = uuid.UUID("00000000-0000-0000-0000-000000000001")
REFERENCE = "bb_0123456789abcdef"
NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _order_row(status: str = "pending", user_id=FAKE_USER):
    return (
        42, user_id, "BB-20261001-ABC123", "buyer@example.com",
        Decimal("29.99"), Decimal("1.17"), Decimal("31.16"), "USD",
        status, "stripe", REFERENCE, None, NOW,
    )


def _item_row(order_item_id: int = 420, beat_id: int = 1, is_exclusive: bool = False):
    return (
        order_item_id, 42, beat_id, 10, 7, "Midnight Drive", "Basic", "mp3",
        Decimal("29.99"), Decimal("4.50"), Decimal("25.49"), is_exclusive,
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


def _savepoint():
    """Stand-in for ``AsyncSession.begin_nested()`` used as an async context manager."""
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=nested)


def _statements(db) -> list[str]:
    return [str(c.args[0]) for c in db.execute.await_args_list]


# ---------------------------------------------------------------------------
# 1. Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_settle_creates_purchase_and_pending_earning():
    db = AsyncMock()
    db.begin_nested = _savepoint()
    db.execute.side_effect = [
        _one_result(_order_row()),     # lock order
        MagicMock(),                   # UPDATE orders -> completed
        _rows_result([_item_row()]),   # order items
        MagicMock(),                   # INSERT user_purchases
        _one_result((900,)),           # INSERT producer_earnings RETURNING
        MagicMock(),                   # clear cart
    ]

    result = await settle_order(db, REFERENCE, {"stripe_event_id": "evt_1"})

    assert result.newly_completed is True
    assert result.order.status == "completed"
    assert result.order.paid_at is not None
    assert len(result.order.items) == 1

    statements = _statements(db)
    assert "FOR UPDATE" in statements[0]
    assert statements[3].startswith("INSERT INTO user_purchases")
    assert statements[4].startswith("INSERT INTO producer_earnings")

    earning = db.execute.await_args_list[4].args[1]
    assert earning["gross"] == Decimal("29.99")
    assert earning["platform_fee"] == Decimal("4.50")
    assert earning["net"] == Decimal("25.49")
    assert earning["producer_id"] == 7
    assert earning["available_at"] > earning["now"]


@pytest.mark.asyncio
async def test_settle_exclusive_retires_beat():
    db = AsyncMock()
    db.begin_nested = _savepoint()
    db.execute.side_effect = [
        _one_result(_order_row()),
        MagicMock(),
        _rows_result([_item_row(is_exclusive=True)]),
        MagicMock(),                   # purchase
        _one_result((900,)),           # earning
        MagicMock(),                   # UPDATE beats
        MagicMock(),                   # DELETE from every cart
        MagicMock(),                   # clear buyer cart
    ]

    with patch("beatbloom.services.order_service.audit") as mock_audit:
        await settle_order(db, REFERENCE, {})

    statements = _statements(db)
    assert "is_exclusive_sold = true" in statements[5]
    assert "status = 'soldExclusive'" in statements[5]
    assert statements[6] == "DELETE FROM cart_items WHERE beat_id = :beat_id"
    mock_audit.log_exclusive_sale.assert_called_once_with(1, 42, buyer_user_id=FAKE_USER)


@pytest.mark.asyncio
async def test_guest_order_settles_without_purchase_rows():
    db = AsyncMock()
    db.begin_nested = _savepoint()
    db.execute.side_effect = [
        _one_result(_order_row(user_id=None)),
        MagicMock(),
        _rows_result([_item_row()]),
        _one_result((900,)),  # earning only
    ]

    result = await settle_order(db, REFERENCE, {})

    assert result.newly_completed is True
    statements = _statements(db)
    assert not any(s.startswith("INSERT INTO user_purchases") for s in statements)
    db.begin_nested.assert_not_called()


# ---------------------------------------------------------------------------
# 2. Idempotency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_lock_order_by_reference_takes_row_lock():
    db = AsyncMock()
    db.execute.return_value = _one_result(_order_row())

    order = await _lock_order(db, REFERENCE)

    assert order.order_id == 42
    sql = _statements(db)[0]
    assert sql.endswith("WHERE payment_reference = :ref FOR UPDATE")
    assert db.execute.await_args.args[1] == {"ref": REFERENCE}


@pytest.mark.asyncio
async def test_lock_order_by_id_takes_row_lock():
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    assert await _lock_order(db, order_id=42) is None
    assert _statements(db)[0].endswith("WHERE order_id = :order_id FOR UPDATE")


@pytest.mark.asyncio
async def test_unknown_reference_is_a_no_op():
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    result = await settle_order(db, "bb_unknown", {})

    assert result.order is None
    assert result.newly_completed is False
    assert db.execute.await_count == 1


@pytest.mark.asyncio
async def test_completed_order_is_not_settled_twice():
    """The second of two deliveries sees the committed status and stops."""
    first = AsyncMock()
    first.begin_nested = _savepoint()
    first.execute.side_effect = [
        _one_result(_order_row()),
        MagicMock(),
        _rows_result([_item_row()]),
        MagicMock(),
        _one_result((900,)),
        MagicMock(),
    ]
    second = AsyncMock()
    second.execute.return_value = _one_result(_order_row(status="completed"))

    settled = await settle_order(first, REFERENCE, {})
    replay = await settle_order(second, REFERENCE, {})

    assert settled.newly_completed is True
    assert replay.newly_completed is False
    assert replay.order.status == "completed"
    assert second.execute.await_count == 1
    assert _statements(first)[0].endswith("FOR UPDATE")
    assert _statements(second)[0].endswith("FOR UPDATE")
    assert not any(s.startswith("INSERT") for s in _statements(second))


@pytest.mark.asyncio
async def test_duplicate_earning_insert_skips_audit():
    db = AsyncMock()
    db.begin_nested = _savepoint()
    db.execute.side_effect = [
        _one_result(_order_row()),
        MagicMock(),
        _rows_result([_item_row()]),
        MagicMock(),
        _one_result(None),  # ON CONFLICT DO NOTHING
        MagicMock(),
    ]

    with patch("beatbloom.services.order_service.audit") as mock_audit:
        await settle_order(db, REFERENCE, {})

    mock_audit.log_earning_event.assert_not_called()


@pytest.mark.asyncio
async def test_refunded_order_is_not_settled():
    db = AsyncMock()
    db.execute.return_value = _one_result(_order_row(status="refunded"))

    result = await settle_order(db, REFERENCE, {})

    assert result.newly_completed is False
    assert db.execute.await_count == 1


@pytest.mark.asyncio
async def test_failed_order_can_still_settle():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result(_order_row(status="failed", user_id=None)),
        MagicMock(),
        _rows_result([_item_row()]),
        _one_result((900,)),
    ]

    result = await settle_order(db, REFERENCE, {})

    assert result.newly_completed is True


# ---------------------------------------------------------------------------
# 3. Failure handling
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cart_clear_failure_does_not_undo_settlement():
    db = AsyncMock()
    db.begin_nested = MagicMock(side_effect=RuntimeError("savepoint failed"))
    db.execute.side_effect = [
        _one_result(_order_row()),
        MagicMock(),
        _rows_result([_item_row()]),
        MagicMock(),
        _one_result((900,)),
    ]

    result = await settle_order(db, REFERENCE, {})

    assert result.newly_completed is True


@pytest.mark.asyncio
async def test_earning_write_error_propagates():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result(_order_row()),
        MagicMock(),
        _rows_result([_item_row()]),
        MagicMock(),
        RuntimeError("connection lost"),
    ]

    with pytest.raises(RuntimeError):
        await settle_order(db, REFERENCE, {})


@pytest.mark.asyncio
async def test_fail_order_marks_pending_as_failed():
    db = AsyncMock()
    db.execute.side_effect = [_one_result(_order_row()), MagicMock()]

    order = await fail_order(db, REFERENCE, {"reason": "card_declined"})

    assert order.status == "failed"
    assert "status = 'failed'" in _statements(db)[1]


@pytest.mark.asyncio
async def test_fail_order_leaves_completed_order_alone():
    db = AsyncMock()
    db.execute.return_value = _one_result(_order_row(status="completed"))

    order = await fail_order(db, REFERENCE, {})

    assert order.status == "completed"
    assert db.execute.await_count == 1


@pytest.mark.asyncio
async def test_fail_order_unknown_reference():
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    assert await fail_order(db, "bb_unknown", {}) is None


# ---------------------------------------------------------------------------
# 4. Audit trail
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_settlement_writes_audit_events():
    """Settling through the real logger records the earning, then the order."""
    db = AsyncMock()
    db.begin_nested = _savepoint()
    db.execute.side_effect = [
        _one_result(_order_row()),
        MagicMock(),
        _rows_result([_item_row()]),
        MagicMock(),
        _one_result((900,)),
        MagicMock(),
    ]

    with capture_logs() as logs:
        result = await settle_order(db, REFERENCE, {})

    assert result.newly_completed is True
    audit_entries = [e for e in logs if e["event"] == "audit_event"]
    assert [(e["event_type"], e["action"]) for e in audit_entries] == [
        ("earning", "recorded"),
        ("order", "settled"),
    ]
    assert audit_entries[0]["earning_id"] == 900
    assert audit_entries[1]["reference"] == REFERENCE
    assert any(e["event"] == "order_settled" for e in logs)


# ---------------------------------------------------------------------------
# 5. Refunds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_refund_completed_order():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result(_order_row(status="completed")),
        MagicMock(),                                        # UPDATE orders
        MagicMock(),                                        # DELETE user_purchases
        _rows_result([(900, 7, Decimal("25.49"), None)]),   # earnings refunded
    ]

    with capture_logs() as logs:
        order = await refund_order(db, REFERENCE, {"stripe_event_id": "evt_9"})

    assert order.status == "refunded"
    statements = _statements(db)
    assert statements[0].endswith("FOR UPDATE")
    assert "SET status = 'refunded'" in statements[1]
    assert statements[2].startswith("DELETE FROM user_purchases")
    assert statements[3].startswith("UPDATE producer_earnings pe SET status = 'refunded'")
    actions = [e["action"] for e in logs if e["event"] == "audit_event"]
    assert actions == ["refunded", "refunded"]


@pytest.mark.asyncio
async def test_refund_shrinks_open_payout():
    """An earning already bundled into a payout is withdrawn from it."""
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result(_order_row(status="completed")),
        MagicMock(),
        MagicMock(),
        _rows_result([(900, 7, Decimal("25.49"), 5)]),
        _one_result((7, Decimal("51.00"), "processing")),   # UPDATE payouts
    ]

    await refund_order(db, REFERENCE, {})

    statements = _statements(db)
    assert statements[4].startswith("UPDATE payouts SET")
    assert db.execute.await_args_list[4].args[1] == {
        "payout_id": 5,
        "amount": Decimal("25.49"),
    }


@pytest.mark.asyncio
async def test_refund_of_pending_order_is_ignored():
    db = AsyncMock()
    db.execute.return_value = _one_result(_order_row(status="pending"))

    order = await refund_order(db, REFERENCE, {})

    assert order.status == "pending"
    assert db.execute.await_count == 1


@pytest.mark.asyncio
async def test_refund_replay_is_a_no_op():
    db = AsyncMock()
    db.execute.return_value = _one_result(_order_row(status="refunded"))

    order = await refund_order(db, REFERENCE, {})

    assert order.status == "refunded"
    assert db.execute.await_count == 1


@pytest.mark.asyncio
async def test_refund_unknown_reference():
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    assert await refund_order(db, "bb_unknown", {}) is None


@pytest.mark.asyncio
async def test_admin_refund_requires_completed_order():
    db = AsyncMock()
    db.execute.return_value = _one_result(_order_row(status="pending"))

    with pytest.raises(HTTPException) as exc_info:
        await refund_order_by_admin(db, 42, FAKE_USER, "Chargeback")

    assert exc_info.value.status_code == 409
    assert "order_id = :order_id" in _statements(db)[0]


@pytest.mark.asyncio
async def test_admin_refund_unknown_order_404():
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    with pytest.raises(HTTPException) as exc_info:
        await refund_order_by_admin(db, 99, FAKE_USER, "Chargeback")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_admin_refund_records_who_and_why():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result(_order_row(status="completed")),
        MagicMock(),
        MagicMock(),
        _rows_result([]),
    ]

    order = await refund_order_by_admin(db, 42, FAKE_USER, "Duplicate charge")

    assert order.status == "refunded"
    metadata = db.execute.await_args_list[1].args[1]["metadata"]
    assert '"refund_reason": "Duplicate charge"' in metadata
    assert str(FAKE_USER) in metadata
