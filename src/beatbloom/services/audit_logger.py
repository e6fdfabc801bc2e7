"""Structured JSON audit logger for financial events.

Emits structured log entries via structlog for orders, producer earnings,
exclusive sales, payouts and platform setting changes.  Every entry carries
an ``audit: true`` flag so production log pipelines can filter on it easily.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog


log = structlog.get_logger()


def _money(value) -> str | None:
    return str(value) if value is not None else None


class AuditLogger:
    """Structured audit logger for marketplace events.

    All methods are synchronous -- they only emit log lines and perform
    no I/O beyond writing to the configured structlog sink.
    """

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def log_order_event(
        self,
        order_id,
        order_number: str,
        event: str,
        total,
        user_id=None,
        reference: str | None = None,
    ) -> None:
        """Log an order lifecycle step (``created``, ``settled``, ``failed``)."""
        log.info(
            "audit_event",
            event_type="order",
            action=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            order_id=order_id,
            order_number=order_number,
            total=_money(total),
            user_id=str(user_id) if user_id else None,
            reference=reference,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Earnings
    # ------------------------------------------------------------------

    def log_earning_event(
        self,
        producer_id,
        earning_id,
        amount,
        event: str,
        reference_id=None,
    ) -> None:
        """Log a ledger movement (``recorded``, ``refunded``)."""
        log.info(
            "audit_event",
            event_type="earning",
            action=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            producer_id=producer_id,
            earning_id=earning_id,
            amount=_money(amount),
            reference_id=str(reference_id) if reference_id else None,
            audit=True,
        )

    def log_exclusive_sale(self, beat_id, order_id, buyer_user_id=None) -> None:
        """Record that a beat left the catalog through an exclusive license."""
        log.info(
            "audit_event",
            event_type="exclusive_sale",
            timestamp=datetime.now(timezone.utc).isoformat(),
            beat_id=beat_id,
            order_id=order_id,
            buyer_user_id=str(buyer_user_id) if buyer_user_id else None,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def log_payout_event(
        self,
        producer_id,
        payout_id,
        amount,
        event: str,
        processed_by=None,
        reason: str | None = None,
    ) -> None:
        log.info(
            "audit_event",
            event_type="payout",
            action=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            producer_id=producer_id,
            payout_id=payout_id,
            amount=_money(amount),
            processed_by=str(processed_by) if processed_by else None,
            reason=reason,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Platform settings
    # ------------------------------------------------------------------

    def log_setting_change(self, key: str, old_value, new_value, changed_by=None) -> None:
        """Log a platform setting write. Fee and payout settings move money."""
        log.info(
            "audit_event",
            event_type="setting_change",
            timestamp=datetime.now(timezone.utc).isoformat(),
            key=key,
            old_value=None if old_value is None else str(old_value),
            new_value=None if new_value is None else str(new_value),
            changed_by=str(changed_by) if changed_by else None,
            audit=True,
        )
