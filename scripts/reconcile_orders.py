#!/usr/bin/env python3
"""Nightly money reconciliation script.

Reports rows that break the marketplace money invariants:

    - orders whose total is not subtotal + processing_fee
    - orders whose subtotal is not the sum of their item prices
    - order items whose price is not platform_fee + producer_earnings
    - completed orders with a missing earning for any item
    - earnings whose amounts differ from the item they were booked from
    - earnings booked for an order that never completed

Usage:
    DATABASE_URL=postgresql://... python scripts/reconcile_orders.py

Exit codes:
    0 -- no discrepancies
    1 -- one or more discrepancies found
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from datetime import datetime, timezone

import asyncpg  # type: ignore[import-untyped]

DEFAULT_DATABASE_URL = "postgresql://app:devpassword@db:5432/beatbloom"

CHECKS: dict[str, str] = {
    "order_total_mismatch": """
        SELECT order_id, order_number, subtotal, processing_fee, total
        FROM orders
        WHERE total <> subtotal + processing_fee
        ORDER BY order_id
    """,
    "order_subtotal_mismatch": """
        SELECT o.order_id, o.order_number, o.subtotal,
               COALESCE(SUM(oi.price), 0) AS items_total
        FROM orders o
        LEFT JOIN order_items oi USING (order_id)
        GROUP BY o.order_id, o.order_number, o.subtotal
        HAVING o.subtotal <> COALESCE(SUM(oi.price), 0)
        ORDER BY o.order_id
    """,
    "item_split_mismatch": """
        SELECT order_item_id, order_id, price, platform_fee, producer_earnings
        FROM order_items
        WHERE price <> platform_fee + producer_earnings
        ORDER BY order_item_id
    """,
    "missing_earning": """
        SELECT oi.order_item_id, oi.order_id, oi.producer_id
        FROM order_items oi
        JOIN orders o USING (order_id)
        LEFT JOIN producer_earnings e ON e.order_item_id = oi.order_item_id
        WHERE o.status = 'completed' AND e.earning_id IS NULL
        ORDER BY oi.order_item_id
    """,
    "earning_amount_mismatch": """
        SELECT e.earning_id, e.order_item_id, e.gross_amount, e.net_amount,
               oi.price, oi.producer_earnings
        FROM producer_earnings e
        JOIN order_items oi ON oi.order_item_id = e.order_item_id
        WHERE e.gross_amount <> oi.price
           OR e.platform_fee <> oi.platform_fee
           OR e.net_amount <> oi.producer_earnings
        ORDER BY e.earning_id
    """,
    "earning_without_completed_order": """
        SELECT e.earning_id, e.order_id, o.status AS order_status
        FROM producer_earnings e
        JOIN orders o USING (order_id)
        WHERE o.status <> 'completed' AND e.status <> 'refunded'
        ORDER BY e.earning_id
    """,
}


def _get_dsn() -> str:
    """Return a raw ``postgresql://`` DSN (strip any SQLAlchemy dialect prefix)."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    # Normalise SQLAlchemy-style URLs that include +asyncpg / +psycopg2 etc.
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


def _jsonable(record: asyncpg.Record) -> dict:
    # NUMERIC comes back as Decimal; keep it exact in the report
    return {key: str(value) if value is not None else None for key, value in record.items()}


async def reconcile(dsn: str) -> dict[str, list[dict]]:
    """Run every check and return ``{check_name: [offending rows]}``."""
    conn: asyncpg.Connection = await asyncpg.connect(dsn)
    try:
        findings: dict[str, list[dict]] = {}
        for name, query in CHECKS.items():
            rows = await conn.fetch(query)
            if rows:
                findings[name] = [_jsonable(r) for r in rows]
        return findings
    finally:
        await conn.close()


async def main() -> int:
    dsn = _get_dsn()
    findings = await reconcile(dsn)

    report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_discrepancies": sum(len(rows) for rows in findings.values()),
        "discrepancies": findings,
    }

    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")

    return 1 if findings else 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
