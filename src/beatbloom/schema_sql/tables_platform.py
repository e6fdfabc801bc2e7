"""CREATE TABLE statements for platform settings and webhook bookkeeping."""

PLATFORM_SETTINGS = """
CREATE TABLE platform_settings (
    key         VARCHAR(100) PRIMARY KEY,
    value       TEXT NOT NULL,
    value_type  VARCHAR(20) NOT NULL DEFAULT 'string'
                CONSTRAINT ck_setting_type
                CHECK (value_type IN ('string', 'number', 'boolean', 'json')),
    category    VARCHAR(50),
    description TEXT,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

PROCESSED_WEBHOOKS = """
CREATE TABLE processed_webhooks (
    event_id     VARCHAR(255) PRIMARY KEY,
    provider     VARCHAR(20) NOT NULL,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ALL = [
    PLATFORM_SETTINGS,
    PROCESSED_WEBHOOKS,
]
