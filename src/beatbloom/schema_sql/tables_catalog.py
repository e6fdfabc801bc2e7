"""CREATE TABLE statements for genres, beats, and license tiers."""

GENRES = """
CREATE TABLE genres (
    genre_id    SERIAL PRIMARY KEY,
    name        VARCHAR(50) NOT NULL UNIQUE,
    slug        VARCHAR(50) NOT NULL UNIQUE,
    color       VARCHAR(50),
    sort_order  INTEGER NOT NULL DEFAULT 0,
    is_active   BOOLEAN NOT NULL DEFAULT TRUE
);
"""

BEATS = """
CREATE TABLE beats (
    beat_id           SERIAL PRIMARY KEY,
    producer_id       INTEGER NOT NULL REFERENCES producers(producer_id) ON DELETE CASCADE,
    genre_id          INTEGER REFERENCES genres(genre_id) ON DELETE SET NULL,
    title             VARCHAR(255) NOT NULL,
    slug              VARCHAR(255) NOT NULL,
    description       TEXT,
    bpm               INTEGER NOT NULL CHECK (bpm BETWEEN 20 AND 400),
    musical_key       VARCHAR(10) NOT NULL,
    duration_seconds  INTEGER,
    cover_image       VARCHAR(500),
    preview_audio_url VARCHAR(500),
    tags              JSONB NOT NULL DEFAULT '[]'::jsonb,
    plays_count       INTEGER NOT NULL DEFAULT 0,
    likes_count       INTEGER NOT NULL DEFAULT 0,
    is_exclusive_sold BOOLEAN NOT NULL DEFAULT FALSE,
    status            VARCHAR(20) NOT NULL DEFAULT 'draft'
                      CONSTRAINT ck_beat_status
                      CHECK (status IN ('draft', 'active', 'archived', 'soldExclusive')),
    is_featured       BOOLEAN NOT NULL DEFAULT FALSE,
    published_at      TIMESTAMPTZ,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    deleted_at        TIMESTAMPTZ,
    CONSTRAINT uq_beat_producer_slug UNIQUE (producer_id, slug)
);
"""

LICENSE_TIERS = """
CREATE TABLE license_tiers (
    license_tier_id SERIAL PRIMARY KEY,
    beat_id         INTEGER NOT NULL REFERENCES beats(beat_id) ON DELETE CASCADE,
    tier_type       VARCHAR(20) NOT NULL
                    CONSTRAINT ck_tier_type
                    CHECK (tier_type IN ('mp3', 'wav', 'stems', 'exclusive')),
    name            VARCHAR(100) NOT NULL,
    price           NUMERIC(10,2) NOT NULL
                    CONSTRAINT ck_tier_price_nonneg CHECK (price >= 0),
    description     TEXT,
    included_files  JSONB NOT NULL DEFAULT '[]'::jsonb,
    is_exclusive    BOOLEAN NOT NULL DEFAULT FALSE,
    is_enabled      BOOLEAN NOT NULL DEFAULT TRUE,
    sort_order      INTEGER NOT NULL DEFAULT 0,
    CONSTRAINT uq_tier_beat_type UNIQUE (beat_id, tier_type)
);
"""

ALL = [
    GENRES,
    BEATS,
    LICENSE_TIERS,
]
