"""Genre API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.services.catalog_service import get_genre_by_slug, list_genres

router = APIRouter(prefix="/api/v1/genres", tags=["genres"])


@router.get("")
async def list_genres_endpoint(db: AsyncSession = Depends(get_db)):
    return ok(await list_genres(db), "Genres retrieved")


@router.get("/{slug}")
async def get_genre_endpoint(slug: str, db: AsyncSession = Depends(get_db)):
    return ok(await get_genre_by_slug(db, slug), "Genre retrieved")
