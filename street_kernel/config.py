"""
Kernel settings, read from the environment (prefix STREET_) and .env.
"""

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KernelSettings(BaseSettings):
    """
    Runtime configuration for the world kernel.

    Every value has a default so a bare process (and the test suite) runs
    against an in-memory database with the stock game tuning.
    """

    # Storage
    database_path: str = ":memory:"
    busy_timeout_seconds: float = 5.0
    max_conflict_retries: int = Field(default=4, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=0.01, ge=0.0)

    # District ecosystem
    immediate_aggregation_severity: int = Field(default=8, ge=1, le=11)
    seed_world_on_start: bool = True

    # Surveillance / pursuit
    pursuit_timeout_minutes: int = Field(default=30, ge=1)
    player_heat_decay_step: int = Field(default=1, ge=0, le=100)

    # Reputation
    reputation_heat_decay_step: int = Field(default=1, ge=0, le=100)
    reputation_heat_floor: int = Field(default=0, ge=0, le=100)

    # Debt marketplace
    offer_expiry_hours: int = Field(default=72, ge=1)

    # Cron schedules (croniter syntax)
    aggregation_schedule: str = "*/15 * * * *"
    reputation_decay_schedule: str = "0 * * * *"
    offer_expiry_schedule: str = "*/5 * * * *"
    pursuit_timeout_schedule: str = "* * * * *"
    player_heat_decay_schedule: str = "*/5 * * * *"
    sector_sweep_schedule: str = "*/30 * * * *"
    district_event_schedule: str = "*/5 * * * *"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="STREET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> KernelSettings:
    """Get cached settings instance"""
    return KernelSettings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
