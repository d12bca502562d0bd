import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="TUTORSYNC_DATABASE_URL")
    database_pool_size: int = Field(10, alias="TUTORSYNC_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="TUTORSYNC_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="TUTORSYNC_DATABASE_ECHO")
    persistence_mode: Literal["database", "memory"] = Field(
        "database",
        alias="TUTORSYNC_PERSISTENCE_MODE",
    )
    default_timezone: str = Field("Asia/Seoul", alias="TUTORSYNC_DEFAULT_TIMEZONE")
    resync_horizon_weeks: int = Field(8, ge=1, le=52, alias="TUTORSYNC_RESYNC_HORIZON_WEEKS")
    default_makeup_minutes: int = Field(40, ge=1, le=24 * 60, alias="TUTORSYNC_DEFAULT_MAKEUP_MINUTES")
    max_ensure_window_days: int = Field(93, ge=1, alias="TUTORSYNC_MAX_ENSURE_WINDOW_DAYS")
    store_timeout_seconds: float = Field(10.0, gt=0, alias="TUTORSYNC_STORE_TIMEOUT_SECONDS")
    guard_scope: Literal["subject", "window"] = Field("subject", alias="TUTORSYNC_GUARD_SCOPE")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            return ZoneInfo(value.strip()).key
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
