from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://app:devpassword@db:5432/beatbloom"
    REDIS_URL: str = "redis://redis:6379/0"
    FRONTEND_URL: str = "http://localhost:5173"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"

    JWT_SECRET_KEY: str = ""
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "BeatBloom <no-reply@beatbloom.app>"
    SMTP_USE_TLS: bool = True

    # Platform settings rows are re-read at most once per TTL window
    SETTINGS_CACHE_TTL_SECONDS: float = 60.0
    # Redis-backed per-route throttling; off for local load tests
    RATE_LIMIT_ENABLED: bool = True
    # Holding period before a pending earning may become available
    EARNINGS_HOLD_DAYS: int = 7

    APP_ENV: str = "development"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
