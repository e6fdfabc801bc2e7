#!/usr/bin/env python3
"""Monitoring / healthcheck script for the BeatBloom API.

Checks the availability of:
    - FastAPI application (/health)
    - PostgreSQL, including that the schema and platform settings are seeded
    - Redis (rate limiting)
    - Paystack API reachability

Outputs a JSON array of ``{service, status, latency_ms}`` objects.

Exit codes:
    0 -- all services healthy
    1 -- one or more services unhealthy
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from typing import Any

import asyncpg  # type: ignore[import-untyped]
import httpx
from redis.asyncio import Redis

# ---------------------------------------------------------------------------
# Configuration -- all overridable via environment variables
# ---------------------------------------------------------------------------

APP_URL = os.environ.get("APP_URL", "http://localhost:8000")
DATABASE_URL = os.environ.get(
    "DATABASE_URL", "postgresql://app:devpassword@db:5432/beatbloom"
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")
PAYSTACK_BASE_URL = os.environ.get("PAYSTACK_BASE_URL", "https://api.paystack.co")

# Timeout in seconds for each individual check.
CHECK_TIMEOUT = float(os.environ.get("HEALTHCHECK_TIMEOUT", "5"))


def _pg_dsn(url: str) -> str:
    """Normalise a SQLAlchemy-style URL to a plain ``postgresql://`` DSN."""
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


def _result(service: str, start: float, healthy: bool, **extra: Any) -> dict[str, Any]:
    latency = (time.monotonic() - start) * 1000
    return {
        "service": service,
        "status": "healthy" if healthy else "unhealthy",
        "latency_ms": round(latency, 2),
        **extra,
    }


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

async def check_app(client: httpx.AsyncClient) -> dict[str, Any]:
    """Hit the FastAPI /health endpoint."""
    start = time.monotonic()
    try:
        resp = await client.get(f"{APP_URL}/health", timeout=CHECK_TIMEOUT)
        return _result("app", start, resp.status_code == 200)
    except Exception as exc:
        return _result("app", start, False, error=str(exc))


async def check_postgres() -> dict[str, Any]:
    """Connect and count platform settings rows.

    Zero rows means the initial migration has not been applied.
    """
    dsn = _pg_dsn(DATABASE_URL)
    start = time.monotonic()
    try:
        conn = await asyncio.wait_for(
            asyncpg.connect(dsn), timeout=CHECK_TIMEOUT
        )
        try:
            settings_rows = await conn.fetchval("SELECT count(*) FROM platform_settings")
        finally:
            await conn.close()
        return _result("postgres", start, settings_rows > 0, settings_rows=settings_rows)
    except Exception as exc:
        return _result("postgres", start, False, error=str(exc))


async def check_redis() -> dict[str, Any]:
    """PING the Redis server."""
    start = time.monotonic()
    try:
        redis = Redis.from_url(REDIS_URL, decode_responses=True)
        try:
            pong = await asyncio.wait_for(redis.ping(), timeout=CHECK_TIMEOUT)
        finally:
            await redis.close()
        return _result("redis", start, bool(pong))
    except Exception as exc:
        return _result("redis", start, False, error=str(exc))


async def check_paystack(client: httpx.AsyncClient) -> dict[str, Any]:
    """Any non-5xx answer from the Paystack API counts as reachable."""
    start = time.monotonic()
    try:
        resp = await client.get(PAYSTACK_BASE_URL, timeout=CHECK_TIMEOUT)
        return _result("paystack", start, resp.status_code < 500)
    except Exception as exc:
        return _result("paystack", start, False, error=str(exc))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

async def run_checks() -> list[dict[str, Any]]:
    """Run all health checks concurrently and return results."""
    async with httpx.AsyncClient() as client:
        results = await asyncio.gather(
            check_app(client),
            check_postgres(),
            check_redis(),
            check_paystack(client),
        )
    return list(results)


async def main() -> int:
    results = await run_checks()

    json.dump(results, sys.stdout, indent=2)
    sys.stdout.write("\n")

    all_healthy = all(r["status"] == "healthy" for r in results)
    return 0 if all_healthy else 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
