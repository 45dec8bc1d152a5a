"""Runtime configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VOLUNTEER_OPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Check-in
    proximity_threshold_m: float = Field(default=200.0, gt=0)
    geolocation_timeout_s: float = Field(default=10.0, gt=0)
    lookup_retries: int = Field(default=3, ge=0)  # after the first attempt
    lookup_retry_delay_s: float = Field(default=1.0, ge=0)

    # Dashboard
    staffing_interval_s: float = Field(default=60.0, gt=0)
    feed_capacity: int = Field(default=100, ge=1)

    log_level: str = "INFO"
