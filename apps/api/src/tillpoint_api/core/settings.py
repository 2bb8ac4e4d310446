from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./tillpoint.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "tillpoint-default"

    # Integration API security (POS terminals posting completed sales)
    integration_api_key: str = ""

    # Loyalty earning
    loyalty_points_per_unit: float = 10.0

    # Ledger write retries on lock / version conflicts
    loyalty_ledger_max_attempts: int = 3
    loyalty_ledger_base_backoff_seconds: float = 0.05
    loyalty_ledger_max_backoff_seconds: float = 1.0
    loyalty_ledger_jitter_seconds: float = 0.05

    # Birthday bonus job
    loyalty_birthday_enabled: bool = True
    loyalty_birthday_task_queue: str = "loyalty-birthday"
    loyalty_birthday_tenant_ids: list[str] = Field(default_factory=list)

    @field_validator("loyalty_birthday_tenant_ids", mode="before")
    @classmethod
    def _parse_tenant_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Loyalty job scheduler
    loyalty_job_scheduler_enabled: bool = False
    loyalty_job_schedule_path: str = "config/schedules.toml"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
