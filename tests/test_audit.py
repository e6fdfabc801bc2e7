"""Tests for structured audit logging of orders, earnings, payouts and settings."""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import patch

from structlog.testing import capture_logs

from beatbloom.services.audit_logger import AuditLogger

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FAKE_USER_A = uuid.UUID("00000000-0000-0000-0000-000000000001")
FAKE_ADMIN = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


def _logged(method, *args, **kwargs) -> dict:
    """Call an AuditLogger method and return the kwargs of its single log line."""
    with patch("beatbloom.services.audit_logger.log") as mock_log:
        method(*args, **kwargs)

    mock_log.info.assert_called_once()
    assert mock_log.info.call_args.args == ("audit_event",)
    call_kwargs = mock_log.info.call_args.kwargs
    assert call_kwargs["audit"] is True
    assert "timestamp" in call_kwargs
    return call_kwargs


# ---------------------------------------------------------------------------
# 1. Orders and earnings
# ---------------------------------------------------------------------------


def test_log_order_event():
    fields = _logged(
        AuditLogger().log_order_event,
        order_id=42,
        order_number="BB-20261001-ABC123",
        event="settled",
        total=Decimal("31.16"),
        user_id=FAKE_USER_A,
        reference="bb_ref",
    )

    assert fields["event_type"] == "order"
    assert fields["action"] == "settled"
    assert fields["total"] == "31.16"
    assert fields["user_id"] == str(FAKE_USER_A)
    assert fields["reference"] == "bb_ref"


def test_log_guest_order_has_no_user():
    fields = _logged(
        AuditLogger().log_order_event, 42, "BB-20261001-ABC123", "created", Decimal("31.16"),
    )

    assert fields["user_id"] is None


def test_log_earning_event():
    fields = _logged(
        AuditLogger().log_earning_event,
        producer_id=7,
        earning_id=900,
        amount=Decimal("25.49"),
        event="recorded",
        reference_id=42,
    )

    assert fields["event_type"] == "earning"
    assert fields["amount"] == "25.49"
    assert fields["reference_id"] == "42"


def test_log_exclusive_sale():
    fields = _logged(AuditLogger().log_exclusive_sale, 1, 42, buyer_user_id=FAKE_USER_A)

    assert fields["event_type"] == "exclusive_sale"
    assert fields["beat_id"] == 1
    assert fields["order_id"] == 42
    assert fields["buyer_user_id"] == str(FAKE_USER_A)


# ---------------------------------------------------------------------------
# 2. Payouts and settings
# ---------------------------------------------------------------------------


def test_log_payout_event():
    fields = _logged(
        AuditLogger().log_payout_event,
        producer_id=7,
        payout_id=5,
        amount=Decimal("76.47"),
        event="failed",
        processed_by=FAKE_ADMIN,
        reason="Invalid PayPal account",
    )

    assert fields["event_type"] == "payout"
    assert fields["amount"] == "76.47"
    assert fields["processed_by"] == str(FAKE_ADMIN)
    assert fields["reason"] == "Invalid PayPal account"


def test_log_setting_change():
    fields = _logged(
        AuditLogger().log_setting_change,
        "platformCommissionRate", Decimal("15"), Decimal("12"), changed_by=FAKE_ADMIN,
    )

    assert fields["event_type"] == "setting_change"
    assert fields["key"] == "platformCommissionRate"
    assert fields["old_value"] == "15"
    assert fields["new_value"] == "12"


def test_log_setting_created_has_no_old_value():
    fields = _logged(AuditLogger().log_setting_change, "maintenanceMode", None, False)

    assert fields["old_value"] is None
    assert fields["new_value"] == "False"
    assert fields["changed_by"] is None


# ---------------------------------------------------------------------------
# 3. Real structlog pipeline
# ---------------------------------------------------------------------------


def test_order_event_reaches_configured_logger():
    with capture_logs() as logs:
        AuditLogger().log_order_event(42, "BB-20261001-ABC123", "settled", Decimal("31.16"))

    assert len(logs) == 1
    assert logs[0]["event"] == "audit_event"
    assert logs[0]["action"] == "settled"
    assert logs[0]["log_level"] == "info"
    assert logs[0]["audit"] is True


def test_earning_and_payout_events_reach_configured_logger():
    with capture_logs() as logs:
        AuditLogger().log_earning_event(7, 900, Decimal("25.49"), "recorded", reference_id=42)
        AuditLogger().log_payout_event(7, 5, Decimal("76.47"), "completed")

    assert [(e["event_type"], e["action"]) for e in logs] == [
        ("earning", "recorded"),
        ("payout", "completed"),
    ]
    assert all(e["event"] == "audit_event" for e in logs)
