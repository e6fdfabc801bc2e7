"""Trigger functions and trigger DDL for the initial schema."""

# ---- Trigger functions ----

FN_RAISE_IMMUTABLE = """
CREATE OR REPLACE FUNCTION raise_immutable_error()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Rows in table % are immutable', TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""

FN_TOUCH_UPDATED_AT = """
CREATE OR REPLACE FUNCTION touch_updated_at()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

FUNCTIONS_ALL = [
    FN_RAISE_IMMUTABLE,
    FN_TOUCH_UPDATED_AT,
]

# ---- Triggers ----

TRIGGERS_ALL = [
    "CREATE TRIGGER trg_order_items_immutable "
    "BEFORE UPDATE ON order_items "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",

    "CREATE TRIGGER trg_processed_webhooks_immutable "
    "BEFORE UPDATE OR DELETE ON processed_webhooks "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",

    "CREATE TRIGGER trg_orders_touch "
    "BEFORE UPDATE ON orders "
    "FOR EACH ROW EXECUTE FUNCTION touch_updated_at();",

    "CREATE TRIGGER trg_cart_items_touch "
    "BEFORE UPDATE ON cart_items "
    "FOR EACH ROW EXECUTE FUNCTION touch_updated_at();",
]
