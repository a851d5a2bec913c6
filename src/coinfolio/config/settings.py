"""Application settings and configuration."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_default_data_dir() -> Path:
    """Return the default data directory based on platform."""
    return Path.home() / ".coinfolio"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "Coinfolio"
    app_version: str = "0.1.0"

    # Data directory (all app data lives here)
    data_dir: Optional[Path] = None

    # Database URL (derived from data_dir if not set explicitly)
    database_url: Optional[str] = None

    log_level: str = "INFO"
    log_to_file: bool = False

    # Serve deterministic stub quotes instead of calling providers
    offline_mode: bool = False

    # Providers
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    binance_base_url: str = "https://api.binance.com/api/v3"
    vs_currency: str = "usd"
    request_timeout_seconds: float = 12.0

    # Per-minute request budgets
    coingecko_requests_per_minute: int = 30
    binance_requests_per_minute: int = 1200
    max_rate_limit_wait_seconds: float = 5.0

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_multiplier: float = 1.5
    retry_jitter: float = 0.25

    # Coalescing and batching
    coalesce_grace_seconds: float = 0.05
    bulk_chunk_size: int = 50
    bulk_batch_spacing_seconds: float = 1.0

    # Cache TTLs
    top_quotes_ttl_seconds: int = 5 * 60
    quote_ttl_seconds: int = 5 * 60
    series_ttl_seconds: int = 30 * 60
    search_ttl_seconds: int = 60 * 60
    stale_ttl_seconds: int = 24 * 60 * 60
    hot_cache_max_entries: int = 1000

    # Label-only synthetic series when no historical data exists anywhere
    allow_estimated_series: bool = True

    def get_data_dir(self) -> Path:
        """Get the data directory, creating it if needed."""
        data_dir = self.data_dir or get_default_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def get_database_url(self) -> str:
        """Get database URL, deriving from data_dir if not set."""
        if self.database_url:
            return self.database_url
        db_path = self.get_data_dir() / "coinfolio.db"
        return f"sqlite:///{db_path}"

    def get_log_dir(self) -> Path:
        """Get the log directory."""
        log_dir = self.get_data_dir() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir


# Global settings instance (can be replaced at runtime)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the current settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance."""
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to force reload."""
    global _settings
    _settings = None
