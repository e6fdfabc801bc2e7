"""CREATE TABLE statements for the earnings ledger and payouts."""

PAYOUT_METHODS = """
CREATE TABLE payout_methods (
    payout_method_id SERIAL PRIMARY KEY,
    producer_id      INTEGER NOT NULL REFERENCES producers(producer_id) ON DELETE CASCADE,
    method_type      VARCHAR(20) NOT NULL
                     CONSTRAINT ck_payout_method_type
                     CHECK (method_type IN ('paypal', 'bank', 'mobileMoney', 'payoneer')),
    details          JSONB NOT NULL DEFAULT '{}'::jsonb,
    currency         VARCHAR(3) NOT NULL DEFAULT 'USD',
    country          VARCHAR(2),
    is_default       BOOLEAN NOT NULL DEFAULT FALSE,
    is_verified      BOOLEAN NOT NULL DEFAULT FALSE,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

PAYOUTS = """
CREATE TABLE payouts (
    payout_id             BIGSERIAL PRIMARY KEY,
    producer_id           INTEGER NOT NULL REFERENCES producers(producer_id) ON DELETE CASCADE,
    payout_method_id      INTEGER REFERENCES payout_methods(payout_method_id) ON DELETE SET NULL,
    payout_number         VARCHAR(50) NOT NULL UNIQUE,
    amount                NUMERIC(12,2) NOT NULL
                          CONSTRAINT ck_payout_amount_positive CHECK (amount > 0),
    currency              VARCHAR(3) NOT NULL DEFAULT 'USD',
    status                VARCHAR(20) NOT NULL DEFAULT 'pending'
                          CONSTRAINT ck_payout_status
                          CHECK (status IN ('pending', 'processing', 'completed',
                                            'failed', 'cancelled')),
    transaction_reference VARCHAR(255),
    failure_reason        TEXT,
    processed_by          UUID REFERENCES users(user_id),
    requested_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at          TIMESTAMPTZ
);
"""

PRODUCER_EARNINGS = """
CREATE TABLE producer_earnings (
    earning_id     BIGSERIAL PRIMARY KEY,
    producer_id    INTEGER NOT NULL REFERENCES producers(producer_id) ON DELETE CASCADE,
    order_id       BIGINT NOT NULL REFERENCES orders(order_id) ON DELETE CASCADE,
    order_item_id  BIGINT NOT NULL UNIQUE
                   REFERENCES order_items(order_item_id) ON DELETE CASCADE,
    beat_id        INTEGER REFERENCES beats(beat_id) ON DELETE SET NULL,
    gross_amount   NUMERIC(10,2) NOT NULL,
    platform_fee   NUMERIC(10,2) NOT NULL,
    net_amount     NUMERIC(10,2) NOT NULL CHECK (net_amount >= 0),
    currency       VARCHAR(3) NOT NULL DEFAULT 'USD',
    status         VARCHAR(20) NOT NULL DEFAULT 'pending'
                   CONSTRAINT ck_earning_status
                   CHECK (status IN ('pending', 'available', 'processing',
                                     'paid', 'refunded')),
    payout_id      BIGINT REFERENCES payouts(payout_id) ON DELETE SET NULL,
    available_at   TIMESTAMPTZ,
    paid_at        TIMESTAMPTZ,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT ck_earning_split CHECK (gross_amount = platform_fee + net_amount)
);
"""

ALL = [
    PAYOUT_METHODS,
    PAYOUTS,
    PRODUCER_EARNINGS,
]
