"""Beat catalog API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import get_current_producer_id, get_optional_user
from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.catalog_service import (
    BeatQuery,
    CreateBeatRequest,
    create_beat,
    get_beat,
    get_trending,
    list_beats,
    record_play,
)

router = APIRouter(prefix="/api/v1/beats", tags=["beats"])


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("")
async def list_beats_endpoint(
    query: BeatQuery = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """Browse beats on sale with filters, sorting, and pagination."""
    beats, pagination = await list_beats(db, query)
    return ok(beats, "Beats retrieved", pagination)


@router.get("/trending")
async def trending_endpoint(
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_trending(db, limit), "Trending beats retrieved")


@router.get("/{beat_id}")
async def get_beat_endpoint(
    beat_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    user_id = current_user.user_id if current_user else None
    return ok(await get_beat(db, beat_id, user_id), "Beat retrieved")


@router.post("/{beat_id}/play")
async def record_play_endpoint(
    beat_id: int,
    db: AsyncSession = Depends(get_db),
):
    plays = await record_play(db, beat_id)
    return ok({"beat_id": beat_id, "plays_count": plays}, "Play recorded")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_beat_endpoint(
    body: CreateBeatRequest,
    producer_id: int = Depends(get_current_producer_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a beat with its license tiers (producers only)."""
    beat = await create_beat(db, producer_id, body)
    return ok(beat, "Beat created successfully")
