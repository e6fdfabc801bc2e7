"""Producer storefront and producer dashboard endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import get_current_producer_id, get_settings_cache
from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.services.catalog_service import BeatQuery, get_producer_beats
from beatbloom.services.earnings_service import (
    EarningStatus,
    PayoutMethodRequest,
    PayoutRequest,
    add_payout_method,
    delete_payout_method,
    get_dashboard_stats,
    get_payout_methods,
    list_earnings,
    list_payouts,
    request_payout,
)
from beatbloom.services.settings_service import SettingsCache

router = APIRouter(prefix="/api/v1/producers", tags=["producers"])


# ---------------------------------------------------------------------------
# Dashboard (producer role)
# ---------------------------------------------------------------------------

@router.get("/me/earnings/stats")
async def earnings_stats_endpoint(
    producer_id: int = Depends(get_current_producer_id),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_dashboard_stats(db, producer_id), "Dashboard stats retrieved")


@router.get("/me/earnings")
async def list_earnings_endpoint(
    status_filter: Optional[EarningStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    producer_id: int = Depends(get_current_producer_id),
    db: AsyncSession = Depends(get_db),
):
    earnings, pagination = await list_earnings(db, producer_id, status_filter, page, limit)
    return ok(earnings, "Earnings retrieved", pagination)


@router.get("/me/payout-methods")
async def list_payout_methods_endpoint(
    producer_id: int = Depends(get_current_producer_id),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_payout_methods(db, producer_id), "Payout methods retrieved")


@router.post("/me/payout-methods", status_code=status.HTTP_201_CREATED)
async def add_payout_method_endpoint(
    body: PayoutMethodRequest,
    producer_id: int = Depends(get_current_producer_id),
    db: AsyncSession = Depends(get_db),
):
    return ok(await add_payout_method(db, producer_id, body), "Payout method added")


@router.delete("/me/payout-methods/{payout_method_id}")
async def delete_payout_method_endpoint(
    payout_method_id: int,
    producer_id: int = Depends(get_current_producer_id),
    db: AsyncSession = Depends(get_db),
):
    await delete_payout_method(db, producer_id, payout_method_id)
    return ok(message="Payout method removed")


@router.get("/me/payouts")
async def list_payouts_endpoint(
    producer_id: int = Depends(get_current_producer_id),
    db: AsyncSession = Depends(get_db),
):
    return ok(await list_payouts(db, producer_id), "Payouts retrieved")


@router.post("/me/payouts", status_code=status.HTTP_201_CREATED)
async def request_payout_endpoint(
    body: PayoutRequest,
    producer_id: int = Depends(get_current_producer_id),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    payout = await request_payout(db, cache, producer_id, body.payout_method_id)
    return ok(payout, "Payout requested")


# ---------------------------------------------------------------------------
# Public storefront
# ---------------------------------------------------------------------------

@router.get("/{username}/beats")
async def producer_beats_endpoint(
    username: str,
    query: BeatQuery = Depends(),
    db: AsyncSession = Depends(get_db),
):
    beats, pagination = await get_producer_beats(db, username, query)
    return ok(beats, "Beats retrieved", pagination)
