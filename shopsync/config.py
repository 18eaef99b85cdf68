"""All settings, loaded from the .env file."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App
    app_url: str = "http://localhost:8000"
    database_url: str = "sqlite:///./shopsync.db"
    log_level: str = "INFO"

    # Shopify Admin REST API
    shopify_api_version: str = "2023-10"
    shopify_page_size: int = 250
    shopify_max_pages: int = 20
    shopify_page_delay_ms: int = 100
    shopify_timeout_seconds: float = 30.0

    # Sync pacing (per store)
    sync_call_delay_ms: int = 500
    sync_store_delay_ms: int = 1000
    sync_bucket_capacity: int = 2
    sync_bucket_refill_per_second: float = 2.0
    sync_parallel_stores: bool = False

    # Reconciliation view
    comparison_page_size: int = 25

    # Inbound rate limiting (slowapi)
    rate_limit_enabled: bool = True
    rate_limit_default: str = "120/minute"
    rate_limit_sync: str = "10/minute"

    # Stock movements
    stock_update_retries: int = 3

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def page_size(self) -> int:
        """Shopify rejects limit > 250."""
        return max(1, min(self.shopify_page_size, 250))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
