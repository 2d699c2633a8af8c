from typing import Literal, Optional
from functools import lru_cache
import os

from dotenv import load_dotenv, find_dotenv
from pydantic import BaseModel, Field

_TRUTHY_ENV_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY_ENV_VALUES


class Settings(BaseModel):
    """Service configuration"""
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "memory-gate"
    default_user_id: str = "dev-user"
    cron_secret: Optional[str] = None

    context_char_budget: int = Field(default=6000, gt=0)
    context_recent_entries: int = Field(default=3, ge=0)

    distill_lookback_days: int = Field(default=3, ge=1)
    distill_max_concurrency: int = Field(default=4, ge=1)
    enable_scheduler: bool = False
    distill_hour: int = Field(default=5, ge=0, le=23)
    distill_utc_offset_hours: int = -5
    distill_check_interval_seconds: float = Field(default=1800, gt=0)

    # "none" scores lexically; "hashing" enables the local hashed embeddings
    embedding_provider: Literal["none", "hashing"] = "none"
    embedding_dimensions: int = Field(default=384, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment, reading a .env file if one is found"""

        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path)

        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
            service_name=os.getenv("SERVICE_NAME", "memory-gate"),
            default_user_id=os.getenv("DEFAULT_USER_ID", "dev-user"),
            cron_secret=(os.getenv("CRON_SECRET") or "").strip() or None,
            context_char_budget=int(os.getenv("CONTEXT_CHAR_BUDGET", "6000")),
            context_recent_entries=int(os.getenv("CONTEXT_RECENT_ENTRIES", "3")),
            distill_lookback_days=int(os.getenv("DISTILL_LOOKBACK_DAYS", "3")),
            distill_max_concurrency=int(os.getenv("DISTILL_MAX_CONCURRENCY", "4")),
            enable_scheduler=_env_bool("ENABLE_SCHEDULER"),
            distill_hour=int(os.getenv("DISTILL_HOUR", "5")),
            distill_utc_offset_hours=int(os.getenv("DISTILL_UTC_OFFSET_HOURS", "-5")),
            distill_check_interval_seconds=float(os.getenv("DISTILL_CHECK_INTERVAL_SECONDS", "1800")),
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", "none").strip().lower() or "none",
            embedding_dimensions=int(os.getenv("EMBEDDING_DIMENSIONS", "384")),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
