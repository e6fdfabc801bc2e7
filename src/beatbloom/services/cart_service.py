"""Server-side carts for signed-in users and guest sessions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, model_validator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.services.fee_calculator import (
    FeeBreakdown,
    split_line_item,
    summarize_splits,
)
from beatbloom.services.settings_service import SettingsCache, get_fee_settings

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class CartOwner(BaseModel):
    """Either a signed-in user or a guest session; the user wins when both are set."""

    user_id: Optional[uuid.UUID] = None
    session_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_one(self) -> "CartOwner":
        if self.user_id is None and not self.session_id:
            raise ValueError("cart owner needs a user_id or a session_id")
        return self


class AddToCartRequest(BaseModel):
    beat_id: int
    license_tier_id: Optional[int] = None


class UpdateCartItemRequest(BaseModel):
    license_tier_id: int


class MergeCartRequest(BaseModel):
    session_id: str


class CartItemResponse(BaseModel):
    cart_item_id: int
    beat_id: int
    license_tier_id: int
    title: str
    cover_image: Optional[str] = None
    bpm: int
    musical_key: str
    producer_name: Optional[str] = None
    producer_username: Optional[str] = None
    genre_name: Optional[str] = None
    tier_name: str
    tier_type: str
    price: Decimal
    is_exclusive: bool
    included_files: list[str] = []


class CartResponse(BaseModel):
    items: list[CartItemResponse]
    count: int
    pricing: FeeBreakdown


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_CART_COLUMNS = (
    "ci.cart_item_id, ci.beat_id, ci.license_tier_id, b.title, b.cover_image, "
    "b.bpm, b.musical_key, p.display_name, p.username, g.name, lt.name, "
    "lt.tier_type, lt.price, lt.is_exclusive, lt.included_files, p.commission_rate"
)


def _owner_clause(owner: CartOwner, alias: str = "") -> tuple[str, dict]:
    prefix = f"{alias}." if alias else ""
    if owner.user_id is not None:
        return f"{prefix}user_id = :owner_user_id", {"owner_user_id": owner.user_id}
    return (
        f"{prefix}session_id = :owner_session_id AND {prefix}user_id IS NULL",
        {"owner_session_id": owner.session_id},
    )


def _row_to_item(row) -> CartItemResponse:
    return CartItemResponse(
        cart_item_id=row[0],
        beat_id=row[1],
        license_tier_id=row[2],
        title=row[3],
        cover_image=row[4],
        bpm=row[5],
        musical_key=row[6],
        producer_name=row[7],
        producer_username=row[8],
        genre_name=row[9],
        tier_name=row[10],
        tier_type=row[11],
        price=row[12],
        is_exclusive=row[13],
        included_files=row[14] or [],
    )


async def _get_purchasable_beat(db: AsyncSession, beat_id: int) -> None:
    """Raise 404 unless the beat exists and is still on sale."""
    result = await db.execute(
        text(
            "SELECT beat_id, status, is_exclusive_sold FROM beats "
            "WHERE beat_id = :beat_id AND deleted_at IS NULL"
        ),
        {"beat_id": beat_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="Beat not found")
    if row[2] or row[1] != "active":
        raise HTTPException(status_code=404, detail="This beat is no longer available")


async def _resolve_tier(
    db: AsyncSession,
    beat_id: int,
    license_tier_id: Optional[int],
) -> int:
    """Validate the requested tier, or pick the cheapest enabled one."""
    if license_tier_id is None:
        result = await db.execute(
            text(
                "SELECT license_tier_id FROM license_tiers "
                "WHERE beat_id = :beat_id AND is_enabled = true "
                "ORDER BY price ASC, sort_order ASC LIMIT 1"
            ),
            {"beat_id": beat_id},
        )
        row = result.fetchone()
        if row is None:
            raise HTTPException(
                status_code=404, detail="No license tiers available for this beat",
            )
        return row[0]

    result = await db.execute(
        text(
            "SELECT beat_id, is_enabled FROM license_tiers "
            "WHERE license_tier_id = :license_tier_id"
        ),
        {"license_tier_id": license_tier_id},
    )
    row = result.fetchone()
    if row is None or row[0] != beat_id or not row[1]:
        raise HTTPException(status_code=404, detail="License tier not found")
    return license_tier_id


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_cart(
    db: AsyncSession,
    cache: SettingsCache,
    owner: CartOwner,
) -> CartResponse:
    """Return the priced cart.

    Lines whose beat is no longer on sale, or whose tier was disabled, are
    left out of both the item list and the pricing.
    """
    clause, params = _owner_clause(owner, "ci")
    result = await db.execute(
        text(
            f"SELECT {_CART_COLUMNS} FROM cart_items ci "
            "JOIN beats b ON b.beat_id = ci.beat_id "
            "JOIN license_tiers lt ON lt.license_tier_id = ci.license_tier_id "
            "LEFT JOIN producers p ON p.producer_id = b.producer_id "
            "LEFT JOIN genres g ON g.genre_id = b.genre_id "
            f"WHERE {clause} AND b.deleted_at IS NULL AND b.status = 'active' "
            "AND b.is_exclusive_sold = false AND lt.is_enabled = true "
            "ORDER BY ci.created_at DESC"
        ),
        params,
    )
    rows = result.fetchall()
    items = [_row_to_item(r) for r in rows]

    # Same per-producer split as order creation
    fee_settings = await get_fee_settings(db, cache)
    splits = [split_line_item(r[12], fee_settings, r[15]) for r in rows]
    return CartResponse(
        items=items,
        count=len(items),
        pricing=summarize_splits(splits, fee_settings),
    )


async def add_to_cart(
    db: AsyncSession,
    cache: SettingsCache,
    owner: CartOwner,
    beat_id: int,
    license_tier_id: Optional[int] = None,
) -> CartResponse:
    """Add a beat to the cart, or switch its tier if it is already there."""
    await _get_purchasable_beat(db, beat_id)
    tier_id = await _resolve_tier(db, beat_id, license_tier_id)

    clause, params = _owner_clause(owner)
    result = await db.execute(
        text(
            "SELECT cart_item_id, license_tier_id FROM cart_items "
            f"WHERE {clause} AND beat_id = :beat_id"
        ),
        {**params, "beat_id": beat_id},
    )
    existing = result.fetchone()

    if existing is not None:
        if existing[1] != tier_id:
            await db.execute(
                text(
                    "UPDATE cart_items SET license_tier_id = :tier_id, "
                    "updated_at = :now WHERE cart_item_id = :cart_item_id"
                ),
                {
                    "tier_id": tier_id,
                    "now": datetime.now(timezone.utc),
                    "cart_item_id": existing[0],
                },
            )
    else:
        await db.execute(
            text(
                "INSERT INTO cart_items (user_id, session_id, beat_id, license_tier_id) "
                "VALUES (:user_id, :session_id, :beat_id, :tier_id)"
            ),
            {
                "user_id": owner.user_id,
                "session_id": None if owner.user_id else owner.session_id,
                "beat_id": beat_id,
                "tier_id": tier_id,
            },
        )

    return await get_cart(db, cache, owner)


async def remove_from_cart(
    db: AsyncSession,
    cache: SettingsCache,
    owner: CartOwner,
    beat_id: int,
) -> CartResponse:
    clause, params = _owner_clause(owner)
    await db.execute(
        text(f"DELETE FROM cart_items WHERE {clause} AND beat_id = :beat_id"),
        {**params, "beat_id": beat_id},
    )
    return await get_cart(db, cache, owner)


async def update_cart_item_tier(
    db: AsyncSession,
    cache: SettingsCache,
    owner: CartOwner,
    beat_id: int,
    license_tier_id: int,
) -> CartResponse:
    """Switch the tier of a line already in the cart. Raises 404 if absent."""
    await _resolve_tier(db, beat_id, license_tier_id)

    clause, params = _owner_clause(owner)
    result = await db.execute(
        text(
            "UPDATE cart_items SET license_tier_id = :tier_id, updated_at = :now "
            f"WHERE {clause} AND beat_id = :beat_id RETURNING cart_item_id"
        ),
        {
            **params,
            "tier_id": license_tier_id,
            "now": datetime.now(timezone.utc),
            "beat_id": beat_id,
        },
    )
    if result.fetchone() is None:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return await get_cart(db, cache, owner)


async def clear_cart(db: AsyncSession, owner: CartOwner) -> None:
    clause, params = _owner_clause(owner)
    await db.execute(text(f"DELETE FROM cart_items WHERE {clause}"), params)


async def remove_beat_from_all_carts(db: AsyncSession, beat_id: int) -> None:
    """Drop a beat from every cart, used once it has been sold exclusively."""
    await db.execute(
        text("DELETE FROM cart_items WHERE beat_id = :beat_id"),
        {"beat_id": beat_id},
    )


async def merge_cart(
    db: AsyncSession,
    cache: SettingsCache,
    user_id: uuid.UUID,
    session_id: str,
) -> CartResponse:
    """Move a guest cart onto a user's cart after sign-in.

    A guest line for a beat the user already has in their cart is dropped.
    """
    result = await db.execute(
        text(
            "SELECT cart_item_id, beat_id FROM cart_items "
            "WHERE session_id = :session_id AND user_id IS NULL"
        ),
        {"session_id": session_id},
    )
    guest_items = result.fetchall()

    moved = 0
    for cart_item_id, beat_id in guest_items:
        existing = await db.execute(
            text(
                "SELECT 1 FROM cart_items "
                "WHERE user_id = :user_id AND beat_id = :beat_id"
            ),
            {"user_id": user_id, "beat_id": beat_id},
        )
        if existing.fetchone() is None:
            await db.execute(
                text(
                    "UPDATE cart_items SET user_id = :user_id, session_id = NULL, "
                    "updated_at = :now WHERE cart_item_id = :cart_item_id"
                ),
                {
                    "user_id": user_id,
                    "now": datetime.now(timezone.utc),
                    "cart_item_id": cart_item_id,
                },
            )
            moved += 1
        else:
            await db.execute(
                text("DELETE FROM cart_items WHERE cart_item_id = :cart_item_id"),
                {"cart_item_id": cart_item_id},
            )

    log.info(
        "cart_merged",
        user_id=str(user_id),
        moved=moved,
        discarded=len(guest_items) - moved,
    )
    return await get_cart(db, cache, CartOwner(user_id=user_id))
