from __future__ import annotations

import datetime as dt

import pytest

from tillpoint_api.celery_tasks import loyalty as tasks
from tillpoint_api.core.settings import settings
from tillpoint_api.models.customer import LoyaltyTierLevel
from tillpoint_api.tasks.birthday_bonuses import run_configured_birthday_bonuses


def test_birthday_task_skips_when_disabled(monkeypatch):
    monkeypatch.setattr(settings, "loyalty_birthday_enabled", False)

    def fail_run(**kwargs):
        raise AssertionError("sweep must not run while disabled")

    monkeypatch.setattr(tasks, "run_birthday_bonuses_sync", fail_run)

    result = tasks.run_birthday_bonuses_task()
    assert result["disabled"] is True
    assert result["awarded_count"] == 0


def test_birthday_task_invokes_helper(monkeypatch):
    monkeypatch.setattr(settings, "loyalty_birthday_enabled", True)

    captured = {}

    def fake_run(tenant_ids=None, today=None):
        captured["tenant_ids"] = tenant_ids
        captured["today"] = today
        return {"awarded_count": 2, "skipped_count": 0, "failed_count": 0, "results": []}

    monkeypatch.setattr(tasks, "run_birthday_bonuses_sync", fake_run)

    result = tasks.run_birthday_bonuses_task(tenant_ids=["abc"], day="2026-10-04")
    assert result["awarded_count"] == 2
    assert captured == {"tenant_ids": ["abc"], "today": dt.date(2026, 10, 4)}


def test_birthday_task_is_routed_to_loyalty_queue():
    assert tasks.run_birthday_bonuses_task.name == "loyalty.run_birthday_bonuses"
    assert tasks.run_birthday_bonuses_task.queue == settings.loyalty_birthday_task_queue


@pytest.mark.asyncio
async def test_configured_sweep_merges_tenant_summaries(session_factory, seeder, monkeypatch):
    north = await seeder.tenant("north")
    south = await seeder.tenant("south")
    ignored = await seeder.tenant("ignored")
    birthday = dt.date(1980, 5, 17)
    await seeder.customer(north, date_of_birth=birthday)
    await seeder.customer(south, tier=LoyaltyTierLevel.PLATINUM, date_of_birth=birthday)
    await seeder.customer(ignored, date_of_birth=birthday)
    monkeypatch.setattr(settings, "loyalty_birthday_tenant_ids", [str(north.id), str(south.id)])

    summary = await run_configured_birthday_bonuses(session_factory=session_factory, today=dt.date(2026, 5, 17))

    assert summary["awarded_count"] == 2
    assert sorted(item["points"] for item in summary["results"]) == [50, 500]
