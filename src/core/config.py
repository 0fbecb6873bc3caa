from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    app_name: str = "Storefront Locale Service"
    api_version: str = "v1"
    app_debug: bool = False

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    allowed_methods: list[str] = ["GET", "OPTIONS"]
    allowed_headers: list[str] = ["*"]

    # Client library: where the location/currency endpoints live
    api_base_url: str = "http://localhost:8000/v1"

    # Device geolocation
    geolocation_high_accuracy: bool = False
    geolocation_timeout_seconds: float = 8.0
    geolocation_maximum_age_seconds: float = 60 * 5

    # IP lookup issued by the client
    ip_lookup_timeout_seconds: float = 10.0

    # Persisted location
    location_stale_after_hours: float = 24.0
    location_storage_path: str = ".location_store.json"

    # Client-side conversion cache
    conversion_cache_seconds: float = 60 * 5

    # Upstream geolocation services
    geoip_service_timeout_seconds: float = 5.0
    geoip_cache_ttl_seconds: int = 60 * 60 * 24
    geoip_cache_path: Optional[str] = ".geoip_cache.json"
    geoip_cache_max_entries: int = 5000
    reverse_geocode_timeout_seconds: float = 8.0
    upstream_user_agent: str = "Mozilla/5.0 (compatible; LocationDetection/1.0)"

    # Upstream exchange rate services
    exchangerate_api_url: str = "https://api.exchangerate-api.com/v4/latest"
    exchangerate_api_timeout_seconds: float = 8.0
    moneymorph_api_url: str = "https://moneymorph.dev/api"
    moneymorph_api_timeout_seconds: float = 6.0
    rate_max_retries: int = 2
    rate_retry_delay_seconds: float = 1.0
    max_conversion_amount: float = 1_000_000_000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
