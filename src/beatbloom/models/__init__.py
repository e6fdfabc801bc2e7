"""ORM models package -- re-exports all models and the Base class."""

from beatbloom.models.base import Base
from beatbloom.models.user import (
    User,
    Producer,
    Artist,
    Admin,
)
from beatbloom.models.catalog import (
    Genre,
    Beat,
    LicenseTier,
)
from beatbloom.models.commerce import (
    CartItem,
    Order,
    OrderItem,
    UserPurchase,
)
from beatbloom.models.earnings import (
    ProducerEarning,
    PayoutMethod,
    Payout,
)
from beatbloom.models.platform import (
    PlatformSetting,
    ProcessedWebhook,
)

__all__ = [
    "Base",
    "User",
    "Producer",
    "Artist",
    "Admin",
    "Genre",
    "Beat",
    "LicenseTier",
    "CartItem",
    "Order",
    "OrderItem",
    "UserPurchase",
    "ProducerEarning",
    "PayoutMethod",
    "Payout",
    "PlatformSetting",
    "ProcessedWebhook",
]
