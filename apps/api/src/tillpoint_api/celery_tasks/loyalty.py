from __future__ import annotations

import datetime as dt

from loguru import logger

from tillpoint_api.celery_app import celery_app
from tillpoint_api.core.settings import settings
from tillpoint_api.tasks.birthday_bonuses import run_birthday_bonuses_sync


@celery_app.task(
    name="loyalty.run_birthday_bonuses",
    queue=settings.loyalty_birthday_task_queue,
)
def run_birthday_bonuses_task(tenant_ids: list[str] | None = None, day: str | None = None) -> dict[str, object]:
    """Run one birthday bonus sweep via Celery."""

    if not settings.loyalty_birthday_enabled:
        logger.info("Birthday bonuses disabled; skipping Celery task.")
        return {"awarded_count": 0, "skipped_count": 0, "failed_count": 0, "results": [], "disabled": True}
    today = dt.date.fromisoformat(day) if day else None
    return run_birthday_bonuses_sync(tenant_ids=tenant_ids, today=today)
