"""CREATE TABLE statements for users and role profiles."""

USERS = """
CREATE TABLE users (
    user_id         UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name            VARCHAR(100) NOT NULL,
    email           VARCHAR(320) NOT NULL UNIQUE,
    password_hash   VARCHAR(255) NOT NULL,
    role            VARCHAR(20)  NOT NULL DEFAULT 'artist'
                    CONSTRAINT ck_user_role
                    CHECK (role IN ('producer', 'artist', 'admin')),
    status          VARCHAR(20)  NOT NULL DEFAULT 'active'
                    CONSTRAINT ck_user_status
                    CHECK (status IN ('active', 'inactive', 'suspended')),
    token_version   INTEGER NOT NULL DEFAULT 0,
    email_verified_at TIMESTAMPTZ,
    last_login_at   TIMESTAMPTZ,
    email_notifications BOOLEAN NOT NULL DEFAULT TRUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    deleted_at      TIMESTAMPTZ
);
"""

PRODUCERS = """
CREATE TABLE producers (
    producer_id     SERIAL PRIMARY KEY,
    user_id         UUID NOT NULL UNIQUE REFERENCES users(user_id) ON DELETE CASCADE,
    username        VARCHAR(50)  NOT NULL UNIQUE,
    display_name    VARCHAR(100) NOT NULL,
    avatar          VARCHAR(500),
    cover_image     VARCHAR(500),
    bio             TEXT,
    location        VARCHAR(100),
    website         VARCHAR(255),
    is_verified     BOOLEAN NOT NULL DEFAULT FALSE,
    commission_rate NUMERIC(5,2),
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ARTISTS = """
CREATE TABLE artists (
    artist_id       SERIAL PRIMARY KEY,
    user_id         UUID NOT NULL UNIQUE REFERENCES users(user_id) ON DELETE CASCADE,
    username        VARCHAR(50)  NOT NULL UNIQUE,
    display_name    VARCHAR(100) NOT NULL,
    avatar          VARCHAR(500),
    bio             TEXT,
    twitter         VARCHAR(255),
    instagram       VARCHAR(255)
);
"""

ADMINS = """
CREATE TABLE admins (
    admin_id        SERIAL PRIMARY KEY,
    user_id         UUID NOT NULL UNIQUE REFERENCES users(user_id) ON DELETE CASCADE,
    username        VARCHAR(50)  NOT NULL UNIQUE,
    display_name    VARCHAR(100) NOT NULL,
    avatar          VARCHAR(500),
    bio             TEXT
);
"""

ALL = [
    USERS,
    PRODUCERS,
    ARTISTS,
    ADMINS,
]
