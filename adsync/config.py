"""
Configuration management for the ad report sync service
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Ad Report Sync"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"  # Empty = console only

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./data/data.db"

    # Yandex Direct Reports API
    direct_api_url: str = "https://api.direct.yandex.com/v5/reports"
    direct_token: Optional[str] = None
    direct_client_login: Optional[str] = None
    direct_request_timeout_seconds: float = 120.0
    direct_network_retries: int = 3  # Connection-level retries per request

    # Conversion goals (Yandex Metrica goal ids) and attribution model
    direct_goal_purchase: str = "3089610837"
    direct_goal_checkout: str = "331689893"
    direct_goal_addtocart: str = "252552801"
    direct_attribution_model: str = "LYDC"

    # Report polling
    report_max_polls: int = 60  # ~10 minutes at the default retry interval
    report_default_retry_seconds: int = 10  # Used when the API sends no retryIn header

    # Sync policy
    sync_interval_hours: float = 12.0
    sync_refresh_days: int = 7  # Trailing window re-fetched on every run (attribution lag)
    sync_display_refresh_days: int = 7
    sync_failure_cooldown_minutes: int = 30
    sync_stale_run_minutes: int = 120
    sync_timezone: str = "Europe/Moscow"  # Account timezone; "yesterday" is computed here

    # Triggers
    sync_on_request: bool = True
    enable_scheduler: bool = True
    sync_check_interval_minutes: int = 15
    sync_schedule_hour: int = 6
    sync_schedule_minute: int = 0

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
