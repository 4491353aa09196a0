"""
Fulfillment Service — Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "fulfillment"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ── JWT (tokens are issued by the identity provider) ─────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ── PostgreSQL ────────────────────────────────────────────
    POSTGRES_HOST: str = "fulfillment-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "fulfillment_db"
    POSTGRES_USER: str = "fulfillment_user"
    POSTGRES_PASSWORD: str = "fulfillment_pass"

    # Full SQLAlchemy URL; overrides the POSTGRES_* settings when set
    # (e.g. sqlite+aiosqlite:///./fulfillment.db for local runs)
    DATABASE_URL: str | None = None

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis ─────────────────────────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Optimistic Locking Retry ──────────────────────────────
    OPT_LOCK_MAX_RETRIES: int = 5
    OPT_LOCK_BASE_DELAY_MS: int = 50      # base exponential backoff delay in ms
    OPT_LOCK_MAX_DELAY_MS: int = 1000     # max backoff cap in ms
    OPT_LOCK_JITTER_MS: int = 50          # random jitter range in ms

    # ── Idempotency ───────────────────────────────────────────
    IDEMPOTENCY_ENABLED: bool = True
    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400

    # ── Order Workflow ────────────────────────────────────────
    RESTOCK_ON_CANCEL: bool = False
    KITCHEN_QUEUE_PAGE_SIZE: int = 10
    ORDER_LIST_MAX_LIMIT: int = 100

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
