"""Tests for ORM model imports, table names, and relationships."""

import pytest

from beatbloom.models import (
    Admin,
    Artist,
    Base,
    Beat,
    CartItem,
    Genre,
    LicenseTier,
    Order,
    OrderItem,
    Payout,
    PayoutMethod,
    PlatformSetting,
    ProcessedWebhook,
    Producer,
    ProducerEarning,
    User,
    UserPurchase,
)

# All model classes paired with their expected table names
MODEL_TABLE_PAIRS = [
    (User, "users"),
    (Producer, "producers"),
    (Artist, "artists"),
    (Admin, "admins"),
    (Genre, "genres"),
    (Beat, "beats"),
    (LicenseTier, "license_tiers"),
    (CartItem, "cart_items"),
    (Order, "orders"),
    (OrderItem, "order_items"),
    (UserPurchase, "user_purchases"),
    (ProducerEarning, "producer_earnings"),
    (PayoutMethod, "payout_methods"),
    (Payout, "payouts"),
    (PlatformSetting, "platform_settings"),
    (ProcessedWebhook, "processed_webhooks"),
]


class TestModelImports:
    """Verify all 16 model classes are importable."""

    @pytest.mark.parametrize(
        "model_cls,expected_table",
        MODEL_TABLE_PAIRS,
        ids=[pair[1] for pair in MODEL_TABLE_PAIRS],
    )
    def test_model_importable_and_table_name(self, model_cls, expected_table):
        assert model_cls.__tablename__ == expected_table


class TestBaseMetadata:
    """Verify the Base metadata registers all 16 tables."""

    def test_all_tables_registered(self):
        registered = set(Base.metadata.tables.keys())
        expected = {pair[1] for pair in MODEL_TABLE_PAIRS}
        assert expected.issubset(registered)

    def test_table_count(self):
        assert len(Base.metadata.tables) == 16


class TestUserRelationships:
    """Verify User links to its profiles, orders, and purchases."""

    @pytest.mark.parametrize(
        "attr",
        [
            "producer_profile",
            "artist_profile",
            "admin_profile",
            "orders",
            "purchases",
        ],
    )
    def test_user_has_relationship(self, attr):
        mapper = User.__mapper__
        assert attr in mapper.relationships


class TestProducerRelationships:
    @pytest.mark.parametrize("attr", ["user", "beats", "earnings", "payout_methods"])
    def test_producer_has_relationship(self, attr):
        assert attr in Producer.__mapper__.relationships


class TestCatalogRelationships:
    @pytest.mark.parametrize("attr", ["producer", "genre", "license_tiers"])
    def test_beat_has_relationship(self, attr):
        assert attr in Beat.__mapper__.relationships

    def test_order_items_relationship(self):
        assert "items" in Order.__mapper__.relationships
        assert "order" in OrderItem.__mapper__.relationships


class TestMigrationSyntax:
    """Verify the migration file and SQL modules are syntactically valid."""

    def test_migration_compiles(self):
        import py_compile

        py_compile.compile(
            "src/alembic/versions/001_initial_schema.py", doraise=True
        )

    def test_sql_modules_import(self):
        from beatbloom.schema_sql import (
            indexes,
            seeds,
            tables_catalog,
            tables_commerce,
            tables_core,
            tables_earnings,
            tables_platform,
            triggers,
        )

        assert len(tables_core.ALL) == 4
        assert len(tables_catalog.ALL) == 3
        assert len(tables_commerce.ALL) == 4
        assert len(tables_earnings.ALL) == 3
        assert len(tables_platform.ALL) == 2
        assert len(indexes.ALL) > 0
        assert len(seeds.ALL) > 0
        assert len(triggers.FUNCTIONS_ALL) > 0
        assert len(triggers.TRIGGERS_ALL) > 0

    def test_seeded_fee_settings(self):
        from beatbloom.schema_sql import seeds

        for key in (
            "platformCommissionRate",
            "processingFeePercentage",
            "processingFeeFixed",
            "minimumPayoutAmount",
        ):
            assert key in seeds.PLATFORM_SETTINGS
