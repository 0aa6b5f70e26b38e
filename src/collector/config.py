"""Configuration system using pydantic-settings with environment variable loading."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExchangeSettings(BaseSettings):
    """Binance public REST connection settings."""

    model_config = SettingsConfigDict(env_prefix="BINANCE_")

    testnet: bool = False
    request_timeout_ms: int = 30_000


class RateLimitSettings(BaseSettings):
    """Client-side quota enforcement.

    Defaults stay below Binance's published spot limits (1200 req/min,
    6000 weight/min) so other clients on the same IP keep some headroom.
    """

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    max_requests_per_second: int = Field(default=15, ge=1)
    max_requests_per_minute: int = Field(default=900, ge=1)
    max_weight: int = Field(default=5000, ge=1)
    adaptive: bool = True
    high_usage_ratio: float = 0.8
    low_usage_ratio: float = 0.5
    backoff_increase: float = 1.2
    backoff_decay: float = 0.95
    max_backoff: float = 5.0
    min_cooldown_seconds: float = 60.0


class RetrySettings(BaseSettings):
    """Retry policy for a single logical API call."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = 1.0
    max_delay: float = 30.0
    rate_limit_floor: float = 10.0
    server_error_floor: float = 5.0
    network_error_floor: float = 0.0


class CollectionSettings(BaseSettings):
    """Listing analysis and kline backfill parameters.

    All fields configurable via COLLECTION_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="COLLECTION_")

    worker_count: int = Field(default=10, ge=1)
    kline_worker_count: int = Field(default=3, ge=1)
    quote_assets: list[str] = ["USDT"]
    lookback_days: int = 730  # daily scan window for listing discovery
    recent_listing_days: int = 180  # only backfill listings newer than this
    collection_hours: int = 48  # backfill window after the listing timestamp
    kline_interval: str = "1m"
    page_size: int = Field(default=1000, ge=2, le=1000)
    max_pages: int = Field(default=100, ge=1)
    max_rate_limit_resumes: int = 3
    rate_limit_resume_delay: float = 10.0
    max_listing_retries: int = 3
    # JSON list of {"symbol", "quote_asset", "listing_hint"?}; unset means
    # discover pairs from exchangeInfo
    targets_file: str | None = None


class StorageSettings(BaseSettings):
    """SQLite store location and write batching."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/collector.db"
    insert_chunk_size: int = Field(default=500, ge=1)


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    retry: RetrySettings = RetrySettings()
    collection: CollectionSettings = CollectionSettings()
    storage: StorageSettings = StorageSettings()
