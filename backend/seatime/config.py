from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str = "sqlite:///seatime.db"
    LOG_LEVEL: str = "INFO"
    # Connection pool (ignored for SQLite)
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    SQLITE_BUSY_TIMEOUT_MS: int = 5000
    # MyShipTracking position provider
    MYSHIPTRACKING_API_KEY: str | None = None
    MYSHIPTRACKING_API_BASE: str = "https://api.myshiptracking.com/api/v2"
    POSITION_PROVIDER_TIMEOUT: float = 10.0
    # In-call backoff for 429/5xx/transport errors (seconds); keep the sum
    # well below SCHEDULER_TICK_SECONDS
    POSITION_PROVIDER_RETRY_DELAYS: list[float] = [1.0, 2.0]
    # Movement classification (knots)
    MOVING_THRESHOLD_KNOTS: float = 0.5
    # MCA accrual rules
    MCA_MIN_SEA_DAY_HOURS: float = 4.0
    WATCHKEEPING_BLOCK_HOURS: float = 4.0
    YARD_SERVICE_CAP_DAYS: int = 90
    # Scheduler
    DEFAULT_CHECK_INTERVAL_HOURS: float = 2.0
    SCHEDULER_TICK_SECONDS: int = 60
    SCHEDULER_LEASE_SECONDS: int = 15 * 60
    SCHEDULER_MAX_WORKERS: int = 8
    # Diagnostic log: response bodies are truncated to this many characters
    DIAGNOSTIC_BODY_MAX_CHARS: int = 4000
    # API authentication (if unset, all requests pass: local dev)
    SEATIME_API_KEY: str | None = None
    # CORS origins (comma-separated string for env var support)
    CORS_ORIGINS: str = "http://localhost:8081"
    MAX_QUERY_LIMIT: int = 500


settings = Settings()
