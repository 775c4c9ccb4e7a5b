"""
Runtime settings for the dispatch core.

Defaults suit local runs and tests. Any field can be overridden with an
environment variable named DISPATCH_<FIELD_NAME>, e.g.
DISPATCH_OFFER_TIMEOUT_SECONDS=30, either exported or listed in a .env file.
Exported variables win over the .env file.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from domain.models import parse_time_of_day


ENV_PREFIX = "DISPATCH_"


class Settings(BaseModel):
    """Tunables for assignment, notification and realtime behaviour."""

    # Rider assignment
    initial_search_radius_km: float = Field(default=5.0, gt=0)
    radius_growth_factor: float = Field(default=1.5, gt=1)
    max_search_radius_km: float = Field(default=15.0, gt=0)
    max_assignment_attempts: int = Field(default=5, ge=1)
    offer_timeout_seconds: float = Field(default=45.0, gt=0)
    courier_needed_status: str = Field(default="ready")

    # Rider tracking
    rider_nearby_km: float = Field(default=0.5, gt=0)
    average_rider_speed_kmh: float = Field(default=25.0, gt=0)

    # Notifications
    notification_workers: int = Field(default=8, ge=1)
    bulk_max_concurrency: int = Field(default=10, ge=1)
    default_quiet_start: str = Field(default="22:00", pattern=r"^\d{1,2}:\d{2}$")
    default_quiet_end: str = Field(default="08:00", pattern=r"^\d{1,2}:\d{2}$")

    # Realtime
    realtime_client_buffer: int = Field(default=100, ge=1)

    @field_validator("default_quiet_start", "default_quiet_end")
    @classmethod
    def _valid_time_of_day(cls, value: str) -> str:
        parse_time_of_day(value)
        return value

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Build settings from defaults overridden by DISPATCH_* variables.

        Args:
            env_file: Path of the .env file to load (defaults to the nearest .env)
        """
        load_dotenv(env_file)
        overrides = {}
        for name in cls.model_fields:
            value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if value is not None:
                overrides[name] = value
        return cls(**overrides)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, reading the environment once."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings(settings: Optional[Settings] = None) -> Settings:
    """Replace the process-wide settings (useful for testing)."""
    global _settings
    _settings = settings or Settings.from_env()
    return _settings
