"""Tests for the platform settings store and its TTL cache.

All database interactions are mocked -- no real DB required.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from beatbloom.config import settings
from beatbloom.main import app
from beatbloom.services.auth_service import create_tokens
from beatbloom.services.settings_service import (
    CreateSettingRequest,
    SettingsCache,
    create_setting,
    delete_setting,
    get_all_settings,
    get_fee_settings,
    get_payout_settings,
    get_setting,
    parse_value,
    serialize_value,
    set_setting,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SETTING_ROWS = [
    ("platformCommissionRate", "15", "number"),
    ("processingFeePercentage", "2.9", "number"),
    ("processingFeeFixed", "0.30", "number"),
    ("minimumPayoutAmount", "50", "number"),
    ("payoutFrequency", "weekly", "string"),
    ("maintenanceMode", "false", "boolean"),
]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _rows_result(rows):
    result = MagicMock()
    result.fetchall.return_value = rows
    return result


def _one_result(row):
    result = MagicMock()
    result.fetchone.return_value = row
    return result


def _scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


_TEST_SECRET = "test-secret-key-for-unit-tests"


def _fake_admin() -> MagicMock:
    user = MagicMock()
    user.user_id = uuid.uuid4()
    user.role = "admin"
    user.status = "active"
    user.token_version = 0
    user.created_at = datetime.now(timezone.utc)
    return user


# ---------------------------------------------------------------------------
# 1. Value parsing
# ---------------------------------------------------------------------------


def test_parse_value_by_type():
    assert parse_value("15", "number") == Decimal("15")
    assert parse_value("true", "boolean") is True
    assert parse_value("1", "boolean") is True
    assert parse_value("false", "boolean") is False
    assert parse_value('{"a": [1, 2]}', "json") == {"a": [1, 2]}
    assert parse_value("weekly", "string") == "weekly"


def test_parse_value_falls_back_to_raw():
    assert parse_value("not-a-number", "number") == "not-a-number"
    assert parse_value("{broken", "json") == "{broken"


def test_serialize_value():
    assert serialize_value(True, "boolean") == "true"
    assert serialize_value("FALSE", "boolean") == "false"
    assert serialize_value({"a": 1}, "json") == '{"a": 1}'
    assert serialize_value(Decimal("12.5"), "number") == "12.5"


# ---------------------------------------------------------------------------
# 2. Cache lifetime
# ---------------------------------------------------------------------------


def test_cache_expires_after_ttl():
    clock = FakeClock()
    cache = SettingsCache(ttl_seconds=60, clock=clock)
    cache.store({"a": 1})

    clock.now += 59
    assert cache.get() == {"a": 1}

    clock.now += 1
    assert cache.get() is None


def test_cache_invalidate():
    cache = SettingsCache(ttl_seconds=60, clock=FakeClock())
    cache.store({"a": 1})
    cache.invalidate()
    assert cache.get() is None


@pytest.mark.asyncio
async def test_get_all_settings_reads_db_once_within_ttl():
    clock = FakeClock()
    cache = SettingsCache(ttl_seconds=60, clock=clock)
    db = AsyncMock()
    db.execute.return_value = _rows_result(_SETTING_ROWS)

    first = await get_all_settings(db, cache)
    second = await get_all_settings(db, cache)

    assert db.execute.await_count == 1
    assert first == second
    assert first["platformCommissionRate"] == Decimal("15")
    assert first["maintenanceMode"] is False

    clock.now += 61
    await get_all_settings(db, cache)
    assert db.execute.await_count == 2


@pytest.mark.asyncio
async def test_set_setting_invalidates_cache_and_audits():
    cache = SettingsCache(ttl_seconds=60, clock=FakeClock())
    cache.store({"platformCommissionRate": Decimal("15")})

    db = AsyncMock()
    db.execute.side_effect = [
        _one_result(("platformCommissionRate", "15", "number", "fees", "Commission")),
        MagicMock(),
    ]

    with patch("beatbloom.services.settings_service.audit") as mock_audit:
        setting = await set_setting(db, cache, "platformCommissionRate", 12, changed_by="admin-1")

    assert cache.get() is None
    assert setting.value == Decimal("12")
    assert setting.category == "fees"
    mock_audit.log_setting_change.assert_called_once_with(
        "platformCommissionRate", "15", "12", changed_by="admin-1",
    )


@pytest.mark.asyncio
async def test_set_setting_unknown_key_404():
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    with pytest.raises(HTTPException) as exc_info:
        await set_setting(db, SettingsCache(), "nope", 1)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_create_setting_duplicate_key_409():
    db = AsyncMock()
    db.execute.return_value = _one_result((1,))

    with pytest.raises(HTTPException) as exc_info:
        await create_setting(
            db, SettingsCache(), CreateSettingRequest(key="siteName", value="BeatBloom"),
        )

    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_create_setting_invalidates_cache():
    cache = SettingsCache(clock=FakeClock())
    cache.store({"x": 1})
    db = AsyncMock()
    db.execute.side_effect = [_one_result(None), MagicMock()]

    setting = await create_setting(
        db,
        cache,
        CreateSettingRequest(key="featuredLimit", value=8, value_type="number"),
    )

    assert setting.value == Decimal("8")
    assert cache.get() is None


@pytest.mark.asyncio
async def test_delete_setting_reports_missing_key():
    cache = SettingsCache(clock=FakeClock())
    cache.store({"x": 1})
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    assert await delete_setting(db, cache, "missing") is False
    # Nothing deleted, nothing to invalidate
    assert cache.get() == {"x": 1}


@pytest.mark.asyncio
async def test_create_setting_audits_new_value():
    db = AsyncMock()
    db.execute.side_effect = [_one_result(None), MagicMock()]

    with patch("beatbloom.services.settings_service.audit") as mock_audit:
        await create_setting(
            db,
            SettingsCache(),
            CreateSettingRequest(key="featuredLimit", value=8, value_type="number"),
            changed_by="admin-1",
        )

    mock_audit.log_setting_change.assert_called_once_with(
        "featuredLimit", None, "8", changed_by="admin-1",
    )


@pytest.mark.asyncio
async def test_delete_setting_audits_old_value():
    cache = SettingsCache(clock=FakeClock())
    cache.store({"x": 1})
    db = AsyncMock()
    db.execute.return_value = _one_result(("siteBanner", "Summer sale"))

    with patch("beatbloom.services.settings_service.audit") as mock_audit:
        assert await delete_setting(db, cache, "siteBanner", changed_by="admin-1") is True

    assert cache.get() is None
    mock_audit.log_setting_change.assert_called_once_with(
        "siteBanner", "Summer sale", None, changed_by="admin-1",
    )


# ---------------------------------------------------------------------------
# 3. Readers
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_setting_uses_cache_then_default():
    cache = SettingsCache(clock=FakeClock())
    cache.store({"payoutFrequency": "weekly"})
    db = AsyncMock()
    db.execute.return_value = _one_result(None)

    assert await get_setting(db, cache, "payoutFrequency") == "weekly"
    db.execute.assert_not_awaited()

    assert await get_setting(db, cache, "unknownKey", default="x") == "x"


@pytest.mark.asyncio
async def test_fee_and_payout_settings():
    db = AsyncMock()
    db.execute.return_value = _rows_result(_SETTING_ROWS)
    cache = SettingsCache(clock=FakeClock())

    fees = await get_fee_settings(db, cache)
    payouts = await get_payout_settings(db, cache)

    assert fees.platform_commission_rate == Decimal("15")
    assert fees.processing_fee_percentage == Decimal("2.9")
    assert fees.processing_fee_fixed == Decimal("0.30")
    assert payouts.minimum_payout_amount == Decimal("50")
    assert payouts.payout_frequency == "weekly"


@pytest.mark.asyncio
async def test_fee_settings_defaults_when_rows_missing():
    db = AsyncMock()
    db.execute.return_value = _rows_result([("platformCommissionRate", "oops", "number")])

    fees = await get_fee_settings(db, SettingsCache(clock=FakeClock()))

    assert fees.platform_commission_rate == Decimal("15")
    assert fees.processing_fee_fixed == Decimal("0.30")


# ---------------------------------------------------------------------------
# 4. Admin API
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_endpoint_drops_values_cached_before_commit(client, override_db):
    """A reader that re-cached the old value mid-request does not survive the commit."""
    admin = _fake_admin()
    cache = SettingsCache(ttl_seconds=3600)
    mock_db = override_db(AsyncMock())
    mock_db.execute.side_effect = [
        _scalar_result(admin),
        _one_result(("platformCommissionRate", "15", "number", "fees", "Commission")),
        MagicMock(),
    ]
    mock_db.commit.side_effect = lambda: cache.store({"platformCommissionRate": Decimal("15")})

    previous = app.state.settings_cache
    app.state.settings_cache = cache
    try:
        with patch.object(settings, "JWT_SECRET_KEY", _TEST_SECRET):
            tokens = create_tokens(admin.user_id, admin.role, admin.token_version)
            response = await client.patch(
                "/api/v1/settings/platformCommissionRate",
                json={"value": 12},
                headers={"Authorization": f"Bearer {tokens.access_token}"},
            )
    finally:
        app.state.settings_cache = previous

    assert response.status_code == 200
    assert response.json()["data"]["value"] == "12"
    mock_db.commit.assert_awaited_once()
    assert cache.get() is None


@pytest.mark.asyncio
async def test_delete_endpoint_missing_key_skips_commit(client, override_db):
    admin = _fake_admin()
    mock_db = override_db(AsyncMock())
    mock_db.execute.side_effect = [_scalar_result(admin), _one_result(None)]

    with patch.object(settings, "JWT_SECRET_KEY", _TEST_SECRET):
        tokens = create_tokens(admin.user_id, admin.role, admin.token_version)
        response = await client.delete(
            "/api/v1/settings/missing",
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )

    assert response.status_code == 404
    mock_db.commit.assert_not_awaited()
