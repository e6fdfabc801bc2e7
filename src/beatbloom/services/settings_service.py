"""Platform settings store with an explicit TTL cache.

Settings are key/value rows carrying a declared ``value_type``. Reads go
through a :class:`SettingsCache` owned by the application (``app.state``) and
passed in by callers. Every write invalidates it before returning, and the
admin router invalidates it again once the write has committed.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Optional

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.services.audit_logger import AuditLogger
from beatbloom.services.fee_calculator import FeeBreakdown, FeeSettings, calculate_fees

log = structlog.get_logger()
audit = AuditLogger()

ValueType = Literal["string", "number", "boolean", "json"]

DEFAULT_PLATFORM_COMMISSION_RATE = Decimal("15")
DEFAULT_PROCESSING_FEE_PERCENTAGE = Decimal("2.9")
DEFAULT_PROCESSING_FEE_FIXED = Decimal("0.30")
DEFAULT_MINIMUM_PAYOUT_AMOUNT = Decimal("50")
DEFAULT_PAYOUT_FREQUENCY = "weekly"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SettingResponse(BaseModel):
    key: str
    value: Any
    value_type: ValueType
    category: Optional[str] = None
    description: Optional[str] = None


class CreateSettingRequest(BaseModel):
    key: str = Field(min_length=1, max_length=100)
    value: Any
    value_type: ValueType = "string"
    category: str = "general"
    description: str = ""


class UpdateSettingRequest(BaseModel):
    value: Any


class PayoutSettings(BaseModel):
    minimum_payout_amount: Decimal
    payout_frequency: str


class CalculateFeesRequest(BaseModel):
    subtotal: Decimal = Field(ge=0)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class SettingsCache:
    """Holds the parsed settings map for at most ``ttl_seconds``.

    ``clock`` returns seconds as a float and defaults to ``time.monotonic``.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._values: Optional[dict[str, Any]] = None
        self._stored_at = 0.0

    def get(self) -> Optional[dict[str, Any]]:
        """Return the cached map, or None when empty or expired."""
        if self._values is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_seconds:
            self._values = None
            return None
        return self._values

    def store(self, values: dict[str, Any]) -> None:
        self._values = dict(values)
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._values = None
        self._stored_at = 0.0


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------

def parse_value(raw: str, value_type: str) -> Any:
    """Decode a stored string according to its declared type.

    Unparseable numbers and JSON fall back to the raw string.
    """
    if value_type == "number":
        try:
            return Decimal(raw)
        except InvalidOperation:
            return raw
    if value_type == "boolean":
        return raw in ("true", "1")
    if value_type == "json":
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def serialize_value(value: Any, value_type: str) -> str:
    if value_type == "json":
        return json.dumps(value)
    if value_type == "boolean":
        if isinstance(value, str):
            return "true" if value.lower() in ("true", "1") else "false"
        return "true" if value else "false"
    return str(value)


def _row_to_setting(row) -> SettingResponse:
    return SettingResponse(
        key=row[0],
        value=parse_value(row[1], row[2]),
        value_type=row[2],
        category=row[3],
        description=row[4],
    )


_SETTING_COLUMNS = "key, value, value_type, category, description"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_all_settings(
    db: AsyncSession,
    cache: SettingsCache,
) -> dict[str, Any]:
    """Return every setting as ``{key: parsed value}``."""
    cached = cache.get()
    if cached is not None:
        return dict(cached)

    result = await db.execute(
        text("SELECT key, value, value_type FROM platform_settings")
    )
    values = {row[0]: parse_value(row[1], row[2]) for row in result.fetchall()}
    cache.store(values)
    log.debug("settings_cache_refreshed", count=len(values))
    return values


async def list_settings(db: AsyncSession) -> list[SettingResponse]:
    """Return all setting rows with their metadata (admin view)."""
    result = await db.execute(
        text(f"SELECT {_SETTING_COLUMNS} FROM platform_settings ORDER BY category, key")
    )
    return [_row_to_setting(r) for r in result.fetchall()]


async def get_by_category(db: AsyncSession, category: str) -> dict[str, Any]:
    result = await db.execute(
        text(
            "SELECT key, value, value_type FROM platform_settings "
            "WHERE category = :category"
        ),
        {"category": category},
    )
    return {row[0]: parse_value(row[1], row[2]) for row in result.fetchall()}


async def get_setting(
    db: AsyncSession,
    cache: SettingsCache,
    key: str,
    default: Any = None,
) -> Any:
    """Return one parsed value, or ``default`` when the key does not exist."""
    cached = cache.get()
    if cached is not None and key in cached:
        return cached[key]

    result = await db.execute(
        text("SELECT value, value_type FROM platform_settings WHERE key = :key"),
        {"key": key},
    )
    row = result.fetchone()
    if row is None:
        return default
    return parse_value(row[0], row[1])


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def set_setting(
    db: AsyncSession,
    cache: SettingsCache,
    key: str,
    value: Any,
    changed_by=None,
) -> SettingResponse:
    """Update an existing setting. Raises 404 for an unknown key."""
    result = await db.execute(
        text(f"SELECT {_SETTING_COLUMNS} FROM platform_settings WHERE key = :key"),
        {"key": key},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")

    value_type = row[2]
    stored = serialize_value(value, value_type)
    await db.execute(
        text(
            "UPDATE platform_settings SET value = :value, updated_at = :now "
            "WHERE key = :key"
        ),
        {"key": key, "value": stored, "now": datetime.now(timezone.utc)},
    )
    cache.invalidate()
    log.info("setting_updated", key=key)
    audit.log_setting_change(key, row[1], stored, changed_by=changed_by)

    return SettingResponse(
        key=key,
        value=parse_value(stored, value_type),
        value_type=value_type,
        category=row[3],
        description=row[4],
    )


async def create_setting(
    db: AsyncSession,
    cache: SettingsCache,
    body: CreateSettingRequest,
    changed_by=None,
) -> SettingResponse:
    """Insert a new setting. Raises 409 when the key already exists."""
    result = await db.execute(
        text("SELECT 1 FROM platform_settings WHERE key = :key"),
        {"key": body.key},
    )
    if result.fetchone() is not None:
        raise HTTPException(
            status_code=409, detail=f"Setting '{body.key}' already exists",
        )

    stored = serialize_value(body.value, body.value_type)
    await db.execute(
        text(
            "INSERT INTO platform_settings "
            "(key, value, value_type, category, description, updated_at) "
            "VALUES (:key, :value, :value_type, :category, :description, :now)"
        ),
        {
            "key": body.key,
            "value": stored,
            "value_type": body.value_type,
            "category": body.category,
            "description": body.description,
            "now": datetime.now(timezone.utc),
        },
    )
    cache.invalidate()
    log.info("setting_created", key=body.key, category=body.category)
    audit.log_setting_change(body.key, None, stored, changed_by=changed_by)

    return SettingResponse(
        key=body.key,
        value=parse_value(stored, body.value_type),
        value_type=body.value_type,
        category=body.category,
        description=body.description,
    )


async def delete_setting(
    db: AsyncSession,
    cache: SettingsCache,
    key: str,
    changed_by=None,
) -> bool:
    """Delete a setting. Returns False when nothing was deleted."""
    result = await db.execute(
        text("DELETE FROM platform_settings WHERE key = :key RETURNING key, value"),
        {"key": key},
    )
    row = result.fetchone()
    if row is None:
        return False

    cache.invalidate()
    log.info("setting_deleted", key=key)
    audit.log_setting_change(key, row[1], None, changed_by=changed_by)
    return True


# ---------------------------------------------------------------------------
# Convenience readers
# ---------------------------------------------------------------------------

def _decimal_or(values: dict[str, Any], key: str, default: Decimal) -> Decimal:
    value = values.get(key)
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation:
        log.warning("setting_not_numeric", key=key, value=value)
        return default


async def get_fee_settings(db: AsyncSession, cache: SettingsCache) -> FeeSettings:
    """Return the fee snapshot used by cart pricing, checkout, and settlement."""
    values = await get_all_settings(db, cache)
    return FeeSettings(
        platform_commission_rate=_decimal_or(
            values, "platformCommissionRate", DEFAULT_PLATFORM_COMMISSION_RATE,
        ),
        processing_fee_percentage=_decimal_or(
            values, "processingFeePercentage", DEFAULT_PROCESSING_FEE_PERCENTAGE,
        ),
        processing_fee_fixed=_decimal_or(
            values, "processingFeeFixed", DEFAULT_PROCESSING_FEE_FIXED,
        ),
    )


async def get_payout_settings(db: AsyncSession, cache: SettingsCache) -> PayoutSettings:
    values = await get_all_settings(db, cache)
    frequency = values.get("payoutFrequency") or DEFAULT_PAYOUT_FREQUENCY
    return PayoutSettings(
        minimum_payout_amount=_decimal_or(
            values, "minimumPayoutAmount", DEFAULT_MINIMUM_PAYOUT_AMOUNT,
        ),
        payout_frequency=str(frequency),
    )


async def calculate_fees_for_amount(
    db: AsyncSession,
    cache: SettingsCache,
    subtotal: Decimal,
) -> FeeBreakdown:
    fee_settings = await get_fee_settings(db, cache)
    return calculate_fees(subtotal, fee_settings)
