"""All CREATE INDEX statements for the initial schema."""

ALL = [
    # beats
    "CREATE INDEX idx_beats_catalog ON beats(status, created_at DESC) "
    "WHERE deleted_at IS NULL AND is_exclusive_sold = FALSE;",
    "CREATE INDEX idx_beats_producer ON beats(producer_id);",
    "CREATE INDEX idx_beats_genre ON beats(genre_id);",
    "CREATE INDEX idx_beats_trending ON beats(plays_count DESC) "
    "WHERE status = 'active';",
    # license_tiers
    "CREATE INDEX idx_tiers_beat ON license_tiers(beat_id) WHERE is_enabled = TRUE;",
    # cart_items
    "CREATE UNIQUE INDEX idx_cart_user_beat ON cart_items(user_id, beat_id) "
    "WHERE user_id IS NOT NULL;",
    "CREATE UNIQUE INDEX idx_cart_session_beat ON cart_items(session_id, beat_id) "
    "WHERE session_id IS NOT NULL;",
    # orders
    "CREATE INDEX idx_orders_user ON orders(user_id, created_at DESC);",
    "CREATE INDEX idx_orders_reference ON orders(payment_reference);",
    # order_items
    "CREATE INDEX idx_order_items_order ON order_items(order_id);",
    "CREATE INDEX idx_order_items_producer ON order_items(producer_id);",
    # user_purchases
    "CREATE INDEX idx_purchases_user ON user_purchases(user_id, purchased_at DESC);",
    # producer_earnings
    "CREATE INDEX idx_earnings_producer ON producer_earnings(producer_id, status);",
    "CREATE INDEX idx_earnings_release ON producer_earnings(available_at) "
    "WHERE status = 'pending';",
    # payouts
    "CREATE INDEX idx_payouts_producer ON payouts(producer_id, requested_at DESC);",
]
