"""Order API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import (
    get_current_user,
    get_optional_user,
    get_settings_cache,
)
from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.order_service import (
    Buyer,
    CreateOrderRequest,
    create_order,
    get_order_detail,
    get_purchased_tiers_for_beat,
    get_user_orders,
    get_user_purchases,
)
from beatbloom.services.payment_service import start_checkout
from beatbloom.services.settings_service import SettingsCache

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order_endpoint(
    body: CreateOrderRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    """Create a pending order and open a hosted checkout for it.

    Guests must supply an email address.
    """
    buyer = Buyer(
        user_id=current_user.user_id if current_user else None,
        email=body.email,
    )
    order = await create_order(db, cache, buyer, body)
    checkout = await start_checkout(db, order)
    return ok(checkout, "Order created")


@router.get("")
async def list_orders_endpoint(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    orders, pagination = await get_user_orders(db, current_user.user_id, page, limit)
    return ok(orders, "Orders retrieved", pagination)


@router.get("/purchases")
async def list_purchases_endpoint(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_user_purchases(db, current_user.user_id), "Purchases retrieved")


@router.get("/purchases/beat/{beat_id}")
async def purchased_tiers_endpoint(
    beat_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    purchases = await get_purchased_tiers_for_beat(db, current_user.user_id, beat_id)
    return ok(purchases, "Purchased licenses retrieved")


@router.get("/{order_id}")
async def get_order_endpoint(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_order_detail(db, order_id, current_user.user_id), "Order retrieved")
