"""Platform settings API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import get_settings_cache, require_role
from beatbloom.api.responses import ok
from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.settings_service import (
    CalculateFeesRequest,
    CreateSettingRequest,
    SettingsCache,
    UpdateSettingRequest,
    calculate_fees_for_amount,
    create_setting,
    delete_setting,
    get_by_category,
    get_fee_settings,
    list_settings,
    set_setting,
)

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])

_admin = require_role("admin")


async def _commit_and_invalidate(db: AsyncSession, cache: SettingsCache) -> None:
    # A read between the write and the commit may have re-cached old values
    await db.commit()
    cache.invalidate()


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

@router.get("/fees")
async def fee_settings_endpoint(
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_fee_settings(db, cache), "Fee settings retrieved")


@router.post("/fees/calculate")
async def calculate_fees_endpoint(
    body: CalculateFeesRequest,
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    return ok(await calculate_fees_for_amount(db, cache, body.subtotal), "Fees calculated")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@router.get("")
async def list_settings_endpoint(
    _: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return ok(await list_settings(db), "Settings retrieved")


@router.get("/category/{category}")
async def category_settings_endpoint(
    category: str,
    _: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_by_category(db, category), "Settings retrieved")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_setting_endpoint(
    body: CreateSettingRequest,
    admin: User = Depends(_admin),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    setting = await create_setting(db, cache, body, changed_by=admin.user_id)
    await _commit_and_invalidate(db, cache)
    return ok(setting, "Setting created successfully")


@router.patch("/{key}")
async def update_setting_endpoint(
    key: str,
    body: UpdateSettingRequest,
    admin: User = Depends(_admin),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    setting = await set_setting(db, cache, key, body.value, changed_by=admin.user_id)
    await _commit_and_invalidate(db, cache)
    return ok(setting, "Setting updated successfully")


@router.delete("/{key}")
async def delete_setting_endpoint(
    key: str,
    admin: User = Depends(_admin),
    cache: SettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    if not await delete_setting(db, cache, key, changed_by=admin.user_id):
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")
    await _commit_and_invalidate(db, cache)
    return ok(message="Setting deleted successfully")
