from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    state_path: Path = Field(
        default=Path("data/cidr-feed.json"), validation_alias="STATE_PATH"
    )
    source_url: str = Field(
        default="https://geoip.starlinkisp.net/feed.csv",
        validation_alias="SOURCE_URL",
    )
    relays_path: Path | None = Field(default=None, validation_alias="RELAYS_PATH")
    user_agent: str = Field(
        default="cidr-feed-monitor/0.1", validation_alias="USER_AGENT"
    )

    fetch_timeout_seconds: float = Field(
        default=15.0, gt=0, validation_alias="FETCH_TIMEOUT_SECONDS"
    )
    default_update_interval_minutes: int = Field(
        default=60, ge=1, validation_alias="DEFAULT_UPDATE_INTERVAL_MINUTES"
    )
    min_update_gap_seconds: float = Field(
        default=5.0, ge=0, validation_alias="MIN_UPDATE_GAP_SECONDS"
    )

    cors_origins: str = Field(default="*", validation_alias="CORS_ORIGINS")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
