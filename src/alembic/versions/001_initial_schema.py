"""Initial schema -- all tables, indexes, seed data, and protective triggers.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op

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

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _execute_all(statements: list[str]) -> None:
    """Execute a list of SQL statements sequentially."""
    for stmt in statements:
        op.execute(stmt)


def upgrade() -> None:
    _execute_all(tables_core.ALL)
    _execute_all(tables_catalog.ALL)
    _execute_all(tables_commerce.ALL)
    _execute_all(tables_earnings.ALL)
    _execute_all(tables_platform.ALL)
    _execute_all(indexes.ALL)
    _execute_all(seeds.ALL)
    _execute_all(triggers.FUNCTIONS_ALL)
    _execute_all(triggers.TRIGGERS_ALL)


def downgrade() -> None:
    _drop_triggers()
    _drop_functions()
    _drop_tables()


def _drop_triggers() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_cart_items_touch ON cart_items;")
    op.execute("DROP TRIGGER IF EXISTS trg_orders_touch ON orders;")
    op.execute("DROP TRIGGER IF EXISTS trg_order_items_immutable ON order_items;")
    op.execute(
        "DROP TRIGGER IF EXISTS trg_processed_webhooks_immutable "
        "ON processed_webhooks;"
    )


def _drop_functions() -> None:
    op.execute("DROP FUNCTION IF EXISTS touch_updated_at();")
    op.execute("DROP FUNCTION IF EXISTS raise_immutable_error();")


def _drop_tables() -> None:
    tables = [
        "processed_webhooks",
        "platform_settings",
        "producer_earnings",
        "payouts",
        "payout_methods",
        "user_purchases",
        "order_items",
        "orders",
        "cart_items",
        "license_tiers",
        "beats",
        "genres",
        "admins",
        "artists",
        "producers",
        "users",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
