"""
Configuration management for the metrics sync engine
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

from metricsync.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Metric Sync Engine"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./metricsync.db"

    # Google OAuth client (shared by Search Console and GA4)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: Optional[str] = None
    google_token_uri: str = "https://oauth2.googleapis.com/token"

    # Scheduling
    scheduler_enabled: bool = True
    sync_timezone: str = "Asia/Ho_Chi_Minh"
    gsc_sync_hour: int = 2
    gsc_sync_minute: int = 0
    ga4_sync_hour: int = 2
    ga4_sync_minute: int = 30
    sync_max_concurrency: int = 1  # Tenants processed in parallel per trigger (1 = sequential)

    # Search Console
    gsc_search_type: str = "web"  # Matches the Search Console dashboard default
    gsc_page_size: int = 25000  # API max rows per request

    # GA4
    ga4_page_size: int = 10000

    # Fetching
    pagination_max_pages: int = 100
    granular_chunk_days: int = 7  # Fully-dimensioned query, close to provider row caps
    aggregate_chunk_days: int = 30  # Date-only query, few rows
    request_timeout_seconds: float = 60.0
    provider_retry_attempts: int = 2
    provider_retry_base_delay: float = 2.0

    # Writing
    upsert_batch_size: int = 1000

    # Tokens
    token_expiry_buffer_seconds: int = 300

    # Backfill
    backfill_sample_size: int = 2

    class Config:
        env_file = ".env"
        case_sensitive = False

    def require_oauth_client(self) -> None:
        """Fail fast when the OAuth client itself is not configured.

        No tenant can ever refresh a token without these, so this is checked
        once at startup rather than per tenant.
        """
        missing = [
            name for name in ("google_client_id", "google_client_secret")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing OAuth client configuration: {', '.join(m.upper() for m in missing)}"
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
