"""
Configuration management for the AWB sync backend
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "AWB Sync - Courier Shipment Backend"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"  # Empty = console only

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: List[str] = ["*"]

    # Database
    database_url: str = "sqlite:///./awb_sync.db"

    # FanCourier API
    fancourier_api_url: str = "https://api.fancourier.ro"
    fancourier_timeout_seconds: float = 30.0
    # Provider tokens live ~24h; we refresh an hour early to absorb clock skew
    fancourier_token_ttl_hours: float = 23.0

    # Shipment defaults (used when the caller does not override)
    default_service_type: str = "Standard"
    default_payment_type: str = "recipient"  # recipient = cash on delivery
    default_weight: float = 1.0
    default_packages: int = 1
    observation_max_length: int = 200

    # Global default sender profile (fallback for tenant fields)
    default_sender_name: str = ""
    default_sender_phone: str = ""
    default_sender_email: Optional[str] = None
    default_sender_county: str = ""
    default_sender_city: str = ""
    default_sender_street: str = ""
    default_sender_number: str = ""
    default_sender_postal_code: str = ""

    # Reconciliation
    sync_retention_days: int = 30  # Terminal orders older than this are not re-tracked
    sync_awb_schedule: str = "0 */2 * * *"  # crontab, in scheduler_timezone
    scheduler_timezone: str = "Europe/Bucharest"
    enable_scheduler: bool = True

    # Postal code backfill
    backfill_default_limit: int = 500
    backfill_pause_every: int = 50
    backfill_pause_seconds: float = 1.0

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
