from functools import lru_cache
from typing import List
from urllib.parse import urlencode

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings read from ``APP_*`` environment variables or ``.env``.

    Vendor credentials are optional at startup; the client that needs one
    raises ``ConfigError`` when it is missing.
    """

    environment: str = "development"
    cors_allowed_origins: str | None = None
    log_level: str = "INFO"

    submission_rate_limit: int = 5
    submission_rate_window_seconds: int = 60
    phone_rate_limit_per_minute: int = 30

    crm_api_key: str | None = None
    crm_location_id: str | None = None
    crm_base_url: str = "https://rest.gohighlevel.com/v1"
    crm_timeout_seconds: float = 15.0

    numverify_api_key: str | None = None
    numverify_base_url: str = "http://apilayer.net/api"
    numverify_timeout_seconds: float = 10.0

    google_maps_api_key: str | None = None
    conversion_target: str | None = None

    model_config = SettingsConfigDict(env_file=".env", env_prefix="APP_", case_sensitive=False)

    @field_validator(
        "submission_rate_limit",
        "submission_rate_window_seconds",
        "phone_rate_limit_per_minute",
    )
    @classmethod
    def validate_rate_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("rate limits must be greater than zero")
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def allowed_origins(self) -> List[str]:
        if not self.cors_allowed_origins:
            return []
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @property
    def crm_enabled(self) -> bool:
        return bool(self.crm_api_key and self.crm_location_id)

    @property
    def google_maps_script_url(self) -> str | None:
        if not self.google_maps_api_key:
            return None
        query = urlencode({"key": self.google_maps_api_key, "libraries": "places", "v": "weekly"})
        return f"https://maps.googleapis.com/maps/api/js?{query}"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
