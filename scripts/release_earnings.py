#!/usr/bin/env python3
"""Hourly release of producer earnings past their holding period.

Moves ``pending`` earnings whose ``available_at`` has passed to
``available`` so producers can request a payout for them. Runs the same
service function the API uses, in one transaction.

Usage:
    DATABASE_URL=postgresql+asyncpg://... python scripts/release_earnings.py

Exit codes:
    0 -- always (informational-only script)
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone

from beatbloom.database import async_session_factory, engine
from beatbloom.services.earnings_service import release_available_earnings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
log = logging.getLogger(__name__)


async def release(now: datetime) -> int:
    """Release every due earning and return the number of rows moved."""
    async with async_session_factory() as session:
        async with session.begin():
            return await release_available_earnings(session, now)


async def main() -> None:
    now = datetime.now(timezone.utc)
    log.info("Releasing earnings due before %s", now.isoformat())
    try:
        released = await release(now)
    finally:
        await engine.dispose()
    log.info("Release complete. Earnings made available: %d", released)


if __name__ == "__main__":
    asyncio.run(main())
    sys.exit(0)
