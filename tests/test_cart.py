"""Tests for server-side carts (user and guest) and the cart API.

All database interactions are mocked -- no real DB required.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from beatbloom.main import app
from beatbloom.services.cart_service import (
    CartOwner,
    _owner_clause,
    add_to_cart,
    get_cart,
    merge_cart,
    update_cart_item_tier,
)
from beatbloom.services.order_service import (
    Buyer,
    CreateOrderRequest,
    OrderLineRequest,
    create_order,
)
from beatbloom.services.settings_service import SettingsCache

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FAKE_USER = uuid.UUID("00000000-0000-0000-0000-000000000001")


def _warm_cache() -> SettingsCache:
    """A cache pre-loaded with the default fee settings (no DB read needed)."""
    cache = SettingsCache(ttl_seconds=3600)
    cache.store(
        {
            "platformCommissionRate": Decimal("15"),
            "processingFeePercentage": Decimal("2.9"),
            "processingFeeFixed": Decimal("0.30"),
        }
    )
    return cache


def _cart_row(cart_item_id: int, beat_id: int, tier_id: int, price: str, commission_rate=None):
    return (
        cart_item_id, beat_id, tier_id, f"Beat {beat_id}", None, 140, "Am",
        "Nova Beats", "nova", "Trap", "Basic", "mp3", Decimal(price), False, ["MP3"],
        commission_rate,
    )


def _rows_result(rows):
    result = MagicMock()
    result.fetchall.return_value = rows
    return result


def _one_result(row):
    result = MagicMock()
    result.fetchone.return_value = row
    return result


# ---------------------------------------------------------------------------
# 1. Ownership
# ---------------------------------------------------------------------------


def test_cart_owner_requires_identity():
    with pytest.raises(ValidationError):
        CartOwner()


def test_user_owner_wins_over_session():
    clause, params = _owner_clause(CartOwner(user_id=FAKE_USER, session_id="guest-1"))

    assert clause == "user_id = :owner_user_id"
    assert params == {"owner_user_id": FAKE_USER}


def test_guest_owner_clause_excludes_user_rows():
    clause, params = _owner_clause(CartOwner(session_id="guest-1"), "ci")

    assert clause == "ci.session_id = :owner_session_id AND ci.user_id IS NULL"
    assert params == {"owner_session_id": "guest-1"}


# ---------------------------------------------------------------------------
# 2. Pricing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_cart_prices_items():
    db = AsyncMock()
    db.execute.return_value = _rows_result([
        _cart_row(1, 10, 100, "29.99"),
        _cart_row(2, 11, 110, "49.99"),
    ])

    cart = await get_cart(db, _warm_cache(), CartOwner(user_id=FAKE_USER))

    assert cart.count == 2
    assert cart.pricing.subtotal == Decimal("79.98")
    # 79.98 * 2.9% + 0.30 = 2.619... -> 2.62
    assert cart.pricing.processing_fee == Decimal("2.62")
    assert cart.pricing.total == Decimal("82.60")


@pytest.mark.asyncio
async def test_cart_quote_matches_order_item_split():
    """A producer commission override prices the cart the way checkout books it."""
    cart_db = AsyncMock()
    cart_db.execute.return_value = _rows_result([
        _cart_row(1, 10, 100, "100.00", commission_rate=Decimal("10")),
    ])
    cart = await get_cart(cart_db, _warm_cache(), CartOwner(user_id=FAKE_USER))

    line_row = (
        10, 7, "Beat 10", "active", False, 100, 10, "Basic", "mp3",
        Decimal("100.00"), False, True, Decimal("10"),
    )
    order_result = MagicMock()
    order_result.scalar_one.return_value = 42
    item_result = MagicMock()
    item_result.scalar_one.return_value = 420
    order_db = AsyncMock()
    order_db.execute.side_effect = [
        _one_result(line_row),   # beat + tier
        _one_result(None),       # not already owned
        order_result,            # INSERT orders
        item_result,             # INSERT order_items
    ]
    order = await create_order(
        order_db,
        _warm_cache(),
        Buyer(user_id=FAKE_USER, email="buyer@example.com"),
        CreateOrderRequest(items=[OrderLineRequest(beat_id=10, license_tier_id=100)]),
    )

    item = order.items[0]
    assert cart.pricing.platform_fee == item.platform_fee == Decimal("10.00")
    assert cart.pricing.producer_earnings == item.producer_earnings == Decimal("90.00")
    assert cart.pricing.total == order.total


@pytest.mark.asyncio
async def test_empty_cart():
    db = AsyncMock()
    db.execute.return_value = _rows_result([])

    cart = await get_cart(db, _warm_cache(), CartOwner(session_id="guest-1"))

    assert cart.items == []
    assert cart.pricing.subtotal == Decimal("0.00")


# ---------------------------------------------------------------------------
# 3. Adding and updating
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_add_unavailable_beat_404():
    db = AsyncMock()
    db.execute.return_value = _one_result((10, "soldExclusive", True))

    with pytest.raises(HTTPException) as exc_info:
        await add_to_cart(db, _warm_cache(), CartOwner(user_id=FAKE_USER), 10, 100)

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "This beat is no longer available"


@pytest.mark.asyncio
async def test_add_without_tier_picks_cheapest():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result((10, "active", False)),  # beat on sale
        _one_result((100,)),                 # cheapest enabled tier
        _one_result(None),                   # not yet in cart
        MagicMock(),                         # INSERT
        _rows_result([_cart_row(1, 10, 100, "29.99")]),
    ]

    cart = await add_to_cart(db, _warm_cache(), CartOwner(session_id="guest-1"), 10)

    insert_params = db.execute.await_args_list[3].args[1]
    assert insert_params == {
        "user_id": None,
        "session_id": "guest-1",
        "beat_id": 10,
        "tier_id": 100,
    }
    assert cart.count == 1


@pytest.mark.asyncio
async def test_add_tier_from_other_beat_rejected():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result((10, "active", False)),
        _one_result((99, True)),  # tier belongs to beat 99
    ]

    with pytest.raises(HTTPException) as exc_info:
        await add_to_cart(db, _warm_cache(), CartOwner(user_id=FAKE_USER), 10, 555)

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "License tier not found"


@pytest.mark.asyncio
async def test_add_existing_beat_switches_tier():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result((10, "active", False)),
        _one_result((10, True)),
        _one_result((1, 100)),  # already in cart on tier 100
        MagicMock(),            # UPDATE tier
        _rows_result([_cart_row(1, 10, 101, "49.99")]),
    ]

    await add_to_cart(db, _warm_cache(), CartOwner(user_id=FAKE_USER), 10, 101)

    sql = str(db.execute.await_args_list[3].args[0])
    assert sql.startswith("UPDATE cart_items SET license_tier_id")


@pytest.mark.asyncio
async def test_update_tier_missing_line_404():
    db = AsyncMock()
    db.execute.side_effect = [
        _one_result((10, True)),
        _one_result(None),
    ]

    with pytest.raises(HTTPException) as exc_info:
        await update_cart_item_tier(db, _warm_cache(), CartOwner(user_id=FAKE_USER), 10, 101)

    assert exc_info.value.detail == "Item not in cart"


# ---------------------------------------------------------------------------
# 4. Merge
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_merge_discards_duplicate_beats():
    """A guest line for a beat already in the user's cart is dropped."""
    db = AsyncMock()
    db.execute.side_effect = [
        _rows_result([(1, 10), (2, 11)]),  # guest lines
        _one_result((1,)),                 # beat 10 already in user cart
        MagicMock(),                       # DELETE guest line 1
        _one_result(None),                 # beat 11 not in user cart
        MagicMock(),                       # UPDATE guest line 2 onto user
        _rows_result([_cart_row(2, 11, 110, "49.99")]),
    ]

    cart = await merge_cart(db, _warm_cache(), FAKE_USER, "guest-1")

    statements = [str(c.args[0]) for c in db.execute.await_args_list]
    assert statements[2].startswith("DELETE FROM cart_items WHERE cart_item_id")
    assert statements[4].startswith("UPDATE cart_items SET user_id")
    assert db.execute.await_args_list[4].args[1]["cart_item_id"] == 2
    assert cart.count == 1


# ---------------------------------------------------------------------------
# 5. API
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_guest_cart_requires_session_header(client, override_db):
    override_db(AsyncMock())

    response = await client.get("/api/v1/cart")

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Session ID required for guest cart",
        "data": None,
    }


@pytest.mark.asyncio
async def test_guest_cart_with_session_header(client, override_db):
    mock_db = override_db(AsyncMock())
    mock_db.execute.return_value = _rows_result([_cart_row(1, 10, 100, "29.99")])

    previous = app.state.settings_cache
    app.state.settings_cache = _warm_cache()
    try:
        response = await client.get("/api/v1/cart", headers={"X-Session-Id": "guest-1"})
    finally:
        app.state.settings_cache = previous

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["count"] == 1
    assert data["pricing"]["total"] == "31.16"
