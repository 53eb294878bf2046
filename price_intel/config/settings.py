"""
Application settings and configuration management.

All tunables of the tracking scheduler, market analyzer and pricing engine
are loaded from environment variables (or a .env file) through
pydantic-settings so they are validated once and shared by every component.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Secrets are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached by ``get_settings``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Tracking scheduler
    default_interval_minutes: float = Field(default=15.0, gt=0, alias="DEFAULT_INTERVAL_MINUTES")
    fetch_timeout_seconds: float = Field(default=30.0, gt=0, alias="FETCH_TIMEOUT_SECONDS")
    fetch_max_attempts: int = Field(default=2, ge=1, le=10, alias="FETCH_MAX_ATTEMPTS")
    fetch_retry_wait_seconds: float = Field(default=0.5, ge=0, alias="FETCH_RETRY_WAIT_SECONDS")
    max_consecutive_failures: int = Field(default=5, ge=1, alias="MAX_CONSECUTIVE_FAILURES")
    max_concurrent_analyses: int = Field(default=5, ge=1, alias="MAX_CONCURRENT_ANALYSES")

    # Observation window and retention
    observation_window_hours: float = Field(default=168.0, gt=0, alias="OBSERVATION_WINDOW_HOURS")
    retention_days: int = Field(default=30, ge=1, alias="RETENTION_DAYS")

    # Market intelligence
    trend_min_samples: int = Field(default=5, ge=2, alias="TREND_MIN_SAMPLES")
    trend_flat_tolerance: float = Field(default=1e-6, ge=0, alias="TREND_FLAT_TOLERANCE")
    below_market_percentile: float = Field(default=25.0, ge=0, le=100, alias="BELOW_MARKET_PERCENTILE")
    above_market_percentile: float = Field(default=75.0, ge=0, le=100, alias="ABOVE_MARKET_PERCENTILE")

    # Pricing recommendation engine
    minimum_margin: float = Field(default=0.10, ge=0, lt=10, alias="MINIMUM_MARGIN")
    historical_margin: float = Field(default=0.30, ge=0, lt=1, alias="HISTORICAL_MARGIN")
    headroom_tolerance: float = Field(default=0.05, ge=0, lt=1, alias="HEADROOM_TOLERANCE")
    market_bias_weight: float = Field(default=0.75, ge=0, le=1, alias="MARKET_BIAS_WEIGHT")
    raise_weight: float = Field(default=0.5, ge=0, le=1, alias="RAISE_WEIGHT")
    floor_raise_weight: float = Field(default=0.25, ge=0, le=1, alias="FLOOR_RAISE_WEIGHT")
    hold_weight: float = Field(default=0.25, ge=0, le=1, alias="HOLD_WEIGHT")
    alignment_tolerance: float = Field(default=0.01, ge=0, lt=1, alias="ALIGNMENT_TOLERANCE")
    min_competitors_for_high: int = Field(default=3, ge=2, alias="MIN_COMPETITORS_FOR_HIGH")
    psychological_pricing: bool = Field(default=False, alias="PSYCHOLOGICAL_PRICING")
    data_freshness_hours: float = Field(default=24.0, gt=0, alias="DATA_FRESHNESS_HOURS")
    min_data_quality: float = Field(default=30.0, ge=0, le=100, alias="MIN_DATA_QUALITY")
    low_data_quality: float = Field(default=50.0, ge=0, le=100, alias="LOW_DATA_QUALITY")
    high_data_quality: float = Field(default=80.0, ge=0, le=100, alias="HIGH_DATA_QUALITY")

    # Portfolio
    top_opportunities: int = Field(default=5, ge=1, alias="TOP_OPPORTUNITIES")

    # HTTP observation source
    price_api_base_url: Optional[str] = Field(default=None, alias="PRICE_API_BASE_URL")
    price_api_key: Optional[SecretStr] = Field(default=None, alias="PRICE_API_KEY")
    price_api_requests_per_second: float = Field(
        default=2.0, gt=0, alias="PRICE_API_REQUESTS_PER_SECOND"
    )

    @field_validator("price_api_base_url", mode="before")
    @classmethod
    def normalize_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Strip trailing slashes; treat empty strings as unset."""
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("PRICE_API_BASE_URL must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        """Percentile bands and data-quality thresholds must be ordered."""
        if self.below_market_percentile >= self.above_market_percentile:
            raise ValueError(
                "BELOW_MARKET_PERCENTILE must be lower than ABOVE_MARKET_PERCENTILE"
            )
        if not self.min_data_quality <= self.low_data_quality <= self.high_data_quality:
            raise ValueError(
                "Data quality thresholds must satisfy MIN <= LOW <= HIGH"
            )
        return self

    @property
    def observation_window_seconds(self) -> float:
        return self.observation_window_hours * 3600

    def has_price_api(self) -> bool:
        """Whether the HTTP observation source is configured."""
        return self.price_api_base_url is not None


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
