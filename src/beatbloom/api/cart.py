"""Cart API endpoints. Guests identify their cart with ``X-Session-Id``."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import (
    get_cart_owner,
    get_current_user,
    get_settings_cache,
)
from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.cart_service import (
    AddToCartRequest,
    CartOwner,
    MergeCartRequest,
    UpdateCartItemRequest,
    add_to_cart,
    clear_cart,
    get_cart,
    merge_cart,
    remove_from_cart,
    update_cart_item_tier,
)
from beatbloom.services.settings_service import SettingsCache

router = APIRouter(prefix="/api/v1/cart", tags=["cart"])


@router.get("")
async def get_cart_endpoint(
    owner: CartOwner = Depends(get_cart_owner),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_cart(db, cache, owner), "Cart retrieved")


@router.post("/items")
async def add_item_endpoint(
    body: AddToCartRequest,
    owner: CartOwner = Depends(get_cart_owner),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    cart = await add_to_cart(db, cache, owner, body.beat_id, body.license_tier_id)
    return ok(cart, "Item added to cart")


@router.patch("/items/{beat_id}")
async def update_item_endpoint(
    beat_id: int,
    body: UpdateCartItemRequest,
    owner: CartOwner = Depends(get_cart_owner),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    cart = await update_cart_item_tier(db, cache, owner, beat_id, body.license_tier_id)
    return ok(cart, "License tier updated")


@router.delete("/items/{beat_id}")
async def remove_item_endpoint(
    beat_id: int,
    owner: CartOwner = Depends(get_cart_owner),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    cart = await remove_from_cart(db, cache, owner, beat_id)
    return ok(cart, "Item removed from cart")


@router.delete("")
async def clear_cart_endpoint(
    owner: CartOwner = Depends(get_cart_owner),
    db: AsyncSession = Depends(get_db),
):
    await clear_cart(db, owner)
    return ok(message="Cart cleared")


@router.post("/merge")
async def merge_cart_endpoint(
    body: MergeCartRequest,
    current_user: User = Depends(get_current_user),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    """Move a guest cart onto the signed-in user's cart."""
    cart = await merge_cart(db, cache, current_user.user_id, body.session_id)
    return ok(cart, "Cart merged")
