"""CREATE TABLE statements for carts, orders, and purchases."""

CART_ITEMS = """
CREATE TABLE cart_items (
    cart_item_id    BIGSERIAL PRIMARY KEY,
    user_id         UUID REFERENCES users(user_id) ON DELETE CASCADE,
    session_id      VARCHAR(100),
    beat_id         INTEGER NOT NULL REFERENCES beats(beat_id) ON DELETE CASCADE,
    license_tier_id INTEGER REFERENCES license_tiers(license_tier_id),
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT ck_cart_owner CHECK (user_id IS NOT NULL OR session_id IS NOT NULL)
);
"""

ORDERS = """
CREATE TABLE orders (
    order_id          BIGSERIAL PRIMARY KEY,
    user_id           UUID REFERENCES users(user_id) ON DELETE SET NULL,
    order_number      VARCHAR(50) NOT NULL UNIQUE,
    email             VARCHAR(320) NOT NULL,
    subtotal          NUMERIC(10,2) NOT NULL CHECK (subtotal >= 0),
    processing_fee    NUMERIC(10,2) NOT NULL DEFAULT 0 CHECK (processing_fee >= 0),
    total             NUMERIC(10,2) NOT NULL,
    currency          VARCHAR(3) NOT NULL DEFAULT 'USD',
    status            VARCHAR(20) NOT NULL DEFAULT 'pending'
                      CONSTRAINT ck_order_status
                      CHECK (status IN ('pending', 'processing', 'completed',
                                        'failed', 'refunded')),
    payment_provider  VARCHAR(50) NOT NULL,
    payment_reference VARCHAR(255) NOT NULL,
    payment_metadata  JSONB NOT NULL DEFAULT '{}'::jsonb,
    paid_at           TIMESTAMPTZ,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT ck_order_total CHECK (total = subtotal + processing_fee),
    CONSTRAINT uq_order_payment_ref UNIQUE (payment_provider, payment_reference)
);
"""

ORDER_ITEMS = """
CREATE TABLE order_items (
    order_item_id     BIGSERIAL PRIMARY KEY,
    order_id          BIGINT NOT NULL REFERENCES orders(order_id) ON DELETE CASCADE,
    beat_id           INTEGER NOT NULL REFERENCES beats(beat_id) ON DELETE RESTRICT,
    license_tier_id   INTEGER NOT NULL REFERENCES license_tiers(license_tier_id),
    producer_id       INTEGER NOT NULL REFERENCES producers(producer_id),
    beat_title        VARCHAR(255) NOT NULL,
    license_name      VARCHAR(100) NOT NULL,
    license_type      VARCHAR(20) NOT NULL,
    price             NUMERIC(10,2) NOT NULL CHECK (price >= 0),
    platform_fee      NUMERIC(10,2) NOT NULL CHECK (platform_fee >= 0),
    producer_earnings NUMERIC(10,2) NOT NULL CHECK (producer_earnings >= 0),
    is_exclusive      BOOLEAN NOT NULL DEFAULT FALSE,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT ck_item_fee_split CHECK (price = platform_fee + producer_earnings)
);
"""

USER_PURCHASES = """
CREATE TABLE user_purchases (
    purchase_id     BIGSERIAL PRIMARY KEY,
    user_id         UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    beat_id         INTEGER NOT NULL REFERENCES beats(beat_id),
    order_item_id   BIGINT NOT NULL REFERENCES order_items(order_item_id),
    license_tier_id INTEGER NOT NULL REFERENCES license_tiers(license_tier_id),
    license_type    VARCHAR(20) NOT NULL,
    purchased_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT uq_purchase_user_beat_tier UNIQUE (user_id, beat_id, license_tier_id)
);
"""

ALL = [
    CART_ITEMS,
    ORDERS,
    ORDER_ITEMS,
    USER_PURCHASES,
]
