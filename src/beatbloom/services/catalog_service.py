"""Beat catalog: public listing, detail, trending, plays, and beat creation."""

from __future__ import annotations

import json
import re
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.services.filters import (
    Equals,
    FilterExpr,
    Like,
    Range,
    compile_filters,
)
from beatbloom.services.pagination import Pagination, build_pagination, clamp_page

log = structlog.get_logger()

TierType = Literal["mp3", "wav", "stems", "exclusive"]
SortField = Literal[
    "created_at", "published_at", "plays_count", "likes_count", "bpm", "title",
]


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class LicenseTierResponse(BaseModel):
    license_tier_id: int
    beat_id: int
    tier_type: str
    name: str
    price: Decimal
    description: Optional[str] = None
    included_files: list[str] = []
    is_exclusive: bool
    is_enabled: bool
    sort_order: int


class BeatResponse(BaseModel):
    beat_id: int
    producer_id: int
    genre_id: Optional[int] = None
    title: str
    slug: str
    description: Optional[str] = None
    bpm: int
    musical_key: str
    duration_seconds: Optional[int] = None
    cover_image: Optional[str] = None
    preview_audio_url: Optional[str] = None
    tags: list[str] = []
    plays_count: int
    likes_count: int
    is_exclusive_sold: bool
    status: str
    is_featured: bool
    published_at: Optional[datetime] = None
    created_at: datetime
    producer_name: Optional[str] = None
    producer_username: Optional[str] = None
    producer_avatar: Optional[str] = None
    producer_is_verified: bool = False
    genre_name: Optional[str] = None
    genre_slug: Optional[str] = None
    license_tiers: list[LicenseTierResponse] = []
    price: Optional[Decimal] = None


class BeatQuery(BaseModel):
    page: int = 1
    limit: int = 20
    search: Optional[str] = None
    genre: Optional[str] = None
    producer: Optional[str] = None
    producer_id: Optional[int] = None
    bpm_min: Optional[int] = None
    bpm_max: Optional[int] = None
    musical_key: Optional[str] = None
    price_min: Optional[Decimal] = None
    price_max: Optional[Decimal] = None
    sort_by: SortField = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class CreateTierRequest(BaseModel):
    tier_type: TierType
    name: str = Field(min_length=1, max_length=100)
    price: Decimal = Field(ge=0, decimal_places=2)
    description: Optional[str] = None
    included_files: list[str] = []
    is_exclusive: bool = False


class CreateBeatRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    bpm: int = Field(ge=20, le=400)
    musical_key: str = Field(min_length=1, max_length=10)
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    genre_id: Optional[int] = None
    cover_image: Optional[str] = None
    preview_audio_url: Optional[str] = None
    tags: list[str] = []
    is_featured: bool = False
    license_tiers: list[CreateTierRequest] = []


class GenreResponse(BaseModel):
    genre_id: int
    name: str
    slug: str
    color: Optional[str] = None
    sort_order: int


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_BEAT_COLUMNS = (
    "b.beat_id, b.producer_id, b.genre_id, b.title, b.slug, b.description, "
    "b.bpm, b.musical_key, b.duration_seconds, b.cover_image, "
    "b.preview_audio_url, b.tags, b.plays_count, b.likes_count, "
    "b.is_exclusive_sold, b.status, b.is_featured, b.published_at, "
    "b.created_at, p.display_name, p.username, p.avatar, p.is_verified, "
    "g.name, g.slug"
)

_BEAT_FROM = (
    "FROM beats b "
    "LEFT JOIN producers p ON p.producer_id = b.producer_id "
    "LEFT JOIN genres g ON g.genre_id = b.genre_id"
)

# Beats on public sale
_PUBLIC_CLAUSES = [
    "b.deleted_at IS NULL",
    "b.status = 'active'",
    "b.is_exclusive_sold = false",
]

_BEAT_FILTER_COLUMNS = {
    "genre": "g.slug",
    "producer": "p.username",
    "producer_id": "b.producer_id",
    "bpm": "b.bpm",
    "musical_key": "b.musical_key",
    "title": "b.title",
    "description": "b.description",
    "producer_name": "p.display_name",
}

_TIER_FILTER_COLUMNS = {"price": "lt.price"}

_SORT_COLUMNS = {
    "created_at": "b.created_at",
    "published_at": "b.published_at",
    "plays_count": "b.plays_count",
    "likes_count": "b.likes_count",
    "bpm": "b.bpm",
    "title": "b.title",
}

_TIER_COLUMNS = (
    "license_tier_id, beat_id, tier_type, name, price, description, "
    "included_files, is_exclusive, is_enabled, sort_order"
)


def _row_to_tier(row) -> LicenseTierResponse:
    return LicenseTierResponse(
        license_tier_id=row[0],
        beat_id=row[1],
        tier_type=row[2],
        name=row[3],
        price=row[4],
        description=row[5],
        included_files=row[6] or [],
        is_exclusive=row[7],
        is_enabled=row[8],
        sort_order=row[9],
    )


def _row_to_beat(row) -> BeatResponse:
    return BeatResponse(
        beat_id=row[0],
        producer_id=row[1],
        genre_id=row[2],
        title=row[3],
        slug=row[4],
        description=row[5],
        bpm=row[6],
        musical_key=row[7],
        duration_seconds=row[8],
        cover_image=row[9],
        preview_audio_url=row[10],
        tags=row[11] or [],
        plays_count=row[12],
        likes_count=row[13],
        is_exclusive_sold=row[14],
        status=row[15],
        is_featured=row[16],
        published_at=row[17],
        created_at=row[18],
        producer_name=row[19],
        producer_username=row[20],
        producer_avatar=row[21],
        producer_is_verified=bool(row[22]),
        genre_name=row[23],
        genre_slug=row[24],
    )


def slugify(value: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", value.lower().strip())
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-") or "beat"


def _beat_filters(query: BeatQuery) -> list[FilterExpr]:
    filters: list[FilterExpr] = []
    if query.genre:
        filters.append(Equals(field="genre", value=query.genre))
    if query.producer:
        filters.append(Equals(field="producer", value=query.producer))
    if query.producer_id is not None:
        filters.append(Equals(field="producer_id", value=query.producer_id))
    if query.bpm_min is not None or query.bpm_max is not None:
        filters.append(Range(field="bpm", low=query.bpm_min, high=query.bpm_max))
    if query.musical_key:
        filters.append(Equals(field="musical_key", value=query.musical_key))
    if query.search:
        filters.append(
            Like(fields=("title", "description", "producer_name"), term=query.search)
        )
    return filters


def _build_where(query: BeatQuery) -> tuple[str, dict[str, Any]]:
    clauses, params = compile_filters(_beat_filters(query), _BEAT_FILTER_COLUMNS)
    clauses = _PUBLIC_CLAUSES + clauses

    if query.price_min is not None or query.price_max is not None:
        tier_clauses, tier_params = compile_filters(
            [Range(field="price", low=query.price_min, high=query.price_max)],
            _TIER_FILTER_COLUMNS,
            prefix="t",
        )
        clauses.append(
            "EXISTS (SELECT 1 FROM license_tiers lt "
            "WHERE lt.beat_id = b.beat_id AND lt.is_enabled = true AND "
            + " AND ".join(tier_clauses)
            + ")"
        )
        params.update(tier_params)

    return " AND ".join(clauses), params


async def _fetch_tiers(
    db: AsyncSession,
    beat_ids: list[int],
) -> dict[int, list[LicenseTierResponse]]:
    """Return enabled tiers per beat, cheapest first."""
    if not beat_ids:
        return {}
    result = await db.execute(
        text(
            f"SELECT {_TIER_COLUMNS} FROM license_tiers "
            "WHERE beat_id = ANY(:beat_ids) AND is_enabled = true "
            "ORDER BY price ASC, sort_order ASC"
        ),
        {"beat_ids": beat_ids},
    )
    grouped: dict[int, list[LicenseTierResponse]] = {}
    for row in result.fetchall():
        tier = _row_to_tier(row)
        grouped.setdefault(tier.beat_id, []).append(tier)
    return grouped


async def _attach_tiers(db: AsyncSession, beats: list[BeatResponse]) -> None:
    tiers = await _fetch_tiers(db, [b.beat_id for b in beats])
    for beat in beats:
        beat.license_tiers = tiers.get(beat.beat_id, [])
        beat.price = beat.license_tiers[0].price if beat.license_tiers else None


async def _owns_exclusive(
    db: AsyncSession,
    user_id: uuid.UUID,
    beat_id: int,
) -> bool:
    result = await db.execute(
        text(
            "SELECT 1 FROM user_purchases up "
            "JOIN license_tiers lt ON lt.license_tier_id = up.license_tier_id "
            "WHERE up.user_id = :user_id AND up.beat_id = :beat_id "
            "AND lt.is_exclusive = true"
        ),
        {"user_id": user_id, "beat_id": beat_id},
    )
    return result.fetchone() is not None


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_beats(
    db: AsyncSession,
    query: BeatQuery,
) -> tuple[list[BeatResponse], Pagination]:
    """List beats on public sale with filtering, sorting, and pagination."""
    page, limit, offset = clamp_page(query.page, query.limit)
    where, params = _build_where(query)

    count_result = await db.execute(
        text(f"SELECT COUNT(*) {_BEAT_FROM} WHERE {where}"), params,
    )
    total = count_result.scalar() or 0

    order_col = _SORT_COLUMNS[query.sort_by]
    direction = "ASC" if query.sort_order == "asc" else "DESC"
    result = await db.execute(
        text(
            f"SELECT {_BEAT_COLUMNS} {_BEAT_FROM} WHERE {where} "
            f"ORDER BY {order_col} {direction}, b.beat_id DESC "
            "LIMIT :limit OFFSET :offset"
        ),
        {**params, "limit": limit, "offset": offset},
    )
    beats = [_row_to_beat(r) for r in result.fetchall()]
    await _attach_tiers(db, beats)

    return beats, build_pagination(total, page, limit)


async def get_beat(
    db: AsyncSession,
    beat_id: int,
    user_id: Optional[uuid.UUID] = None,
) -> BeatResponse:
    """Return one beat with its enabled tiers.

    An exclusively sold beat is only visible to the buyer who owns it.
    """
    result = await db.execute(
        text(
            f"SELECT {_BEAT_COLUMNS} {_BEAT_FROM} "
            "WHERE b.beat_id = :beat_id AND b.deleted_at IS NULL"
        ),
        {"beat_id": beat_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="Beat not found")

    beat = _row_to_beat(row)
    if beat.is_exclusive_sold:
        if user_id is None or not await _owns_exclusive(db, user_id, beat_id):
            raise HTTPException(
                status_code=404, detail="This beat is no longer available",
            )

    tiers_result = await db.execute(
        text(
            f"SELECT {_TIER_COLUMNS} FROM license_tiers "
            "WHERE beat_id = :beat_id AND is_enabled = true "
            "ORDER BY sort_order ASC"
        ),
        {"beat_id": beat_id},
    )
    beat.license_tiers = [_row_to_tier(r) for r in tiers_result.fetchall()]
    if beat.license_tiers:
        beat.price = min(t.price for t in beat.license_tiers)
    return beat


async def get_trending(db: AsyncSession, limit: int = 10) -> list[BeatResponse]:
    """Most played beats still on public sale."""
    limit = min(max(limit, 1), 50)
    result = await db.execute(
        text(
            f"SELECT {_BEAT_COLUMNS} {_BEAT_FROM} "
            f"WHERE {' AND '.join(_PUBLIC_CLAUSES)} "
            "ORDER BY b.plays_count DESC, b.beat_id DESC LIMIT :limit"
        ),
        {"limit": limit},
    )
    beats = [_row_to_beat(r) for r in result.fetchall()]
    await _attach_tiers(db, beats)
    return beats


async def record_play(db: AsyncSession, beat_id: int) -> int:
    """Increment the play counter. Returns the new count."""
    result = await db.execute(
        text(
            "UPDATE beats SET plays_count = plays_count + 1 "
            "WHERE beat_id = :beat_id AND deleted_at IS NULL "
            "RETURNING plays_count"
        ),
        {"beat_id": beat_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="Beat not found")
    return row[0]


async def get_producer_beats(
    db: AsyncSession,
    username: str,
    query: BeatQuery,
) -> tuple[list[BeatResponse], Pagination]:
    result = await db.execute(
        text("SELECT producer_id FROM producers WHERE username = :username"),
        {"username": username},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="Producer not found")

    scoped = query.model_copy(update={"producer_id": row[0], "producer": None})
    return await list_beats(db, scoped)


async def _unique_slug(db: AsyncSession, producer_id: int, title: str) -> str:
    slug = slugify(title)
    result = await db.execute(
        text(
            "SELECT 1 FROM beats WHERE producer_id = :producer_id AND slug = :slug"
        ),
        {"producer_id": producer_id, "slug": slug},
    )
    if result.fetchone() is not None:
        slug = f"{slug}-{secrets.token_hex(3)}"
    return slug


async def create_beat(
    db: AsyncSession,
    producer_id: int,
    body: CreateBeatRequest,
) -> BeatResponse:
    """Publish a beat and its license tiers in the caller's transaction.

    Raises 409 when two tiers share a tier type.
    """
    tier_types = [t.tier_type for t in body.license_tiers]
    if len(tier_types) != len(set(tier_types)):
        raise HTTPException(
            status_code=409, detail="Each license tier type may appear only once",
        )

    slug = await _unique_slug(db, producer_id, body.title)
    now = datetime.now(timezone.utc)
    result = await db.execute(
        text(
            "INSERT INTO beats "
            "(producer_id, genre_id, title, slug, description, bpm, musical_key, "
            "duration_seconds, cover_image, preview_audio_url, tags, status, "
            "is_featured, published_at, created_at) "
            "VALUES (:producer_id, :genre_id, :title, :slug, :description, :bpm, "
            ":musical_key, :duration_seconds, :cover_image, :preview_audio_url, "
            "CAST(:tags AS JSONB), 'active', :is_featured, :now, :now) "
            "RETURNING beat_id"
        ),
        {
            "producer_id": producer_id,
            "genre_id": body.genre_id,
            "title": body.title,
            "slug": slug,
            "description": body.description,
            "bpm": body.bpm,
            "musical_key": body.musical_key,
            "duration_seconds": body.duration_seconds,
            "cover_image": body.cover_image,
            "preview_audio_url": body.preview_audio_url,
            "tags": _json_list(body.tags),
            "is_featured": body.is_featured,
            "now": now,
        },
    )
    beat_id: int = result.scalar_one()

    for idx, tier in enumerate(body.license_tiers, start=1):
        await db.execute(
            text(
                "INSERT INTO license_tiers "
                "(beat_id, tier_type, name, price, description, included_files, "
                "is_exclusive, is_enabled, sort_order) "
                "VALUES (:beat_id, :tier_type, :name, :price, :description, "
                "CAST(:included_files AS JSONB), :is_exclusive, true, :sort_order)"
            ),
            {
                "beat_id": beat_id,
                "tier_type": tier.tier_type,
                "name": tier.name,
                "price": tier.price,
                "description": tier.description,
                "included_files": _json_list(tier.included_files),
                "is_exclusive": tier.is_exclusive or tier.tier_type == "exclusive",
                "sort_order": idx,
            },
        )

    log.info(
        "beat_created",
        beat_id=beat_id,
        producer_id=producer_id,
        tiers=len(body.license_tiers),
    )
    return await get_beat(db, beat_id)


def _json_list(values: list[str]) -> str:
    return json.dumps(list(values))


async def list_genres(db: AsyncSession) -> list[GenreResponse]:
    result = await db.execute(
        text(
            "SELECT genre_id, name, slug, color, sort_order FROM genres "
            "WHERE is_active = true ORDER BY sort_order, name"
        )
    )
    return [
        GenreResponse(
            genre_id=r[0], name=r[1], slug=r[2], color=r[3], sort_order=r[4],
        )
        for r in result.fetchall()
    ]


async def get_genre_by_slug(db: AsyncSession, slug: str) -> GenreResponse:
    result = await db.execute(
        text(
            "SELECT genre_id, name, slug, color, sort_order FROM genres "
            "WHERE slug = :slug"
        ),
        {"slug": slug},
    )
    r = result.fetchone()
    if r is None:
        raise HTTPException(status_code=404, detail="Genre not found")
    return GenreResponse(
        genre_id=r[0], name=r[1], slug=r[2], color=r[3], sort_order=r[4],
    )
