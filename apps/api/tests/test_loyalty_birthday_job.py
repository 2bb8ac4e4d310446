"""Tests for the daily birthday bonus sweep."""

import asyncio
import datetime as dt

import pytest
from sqlalchemy import select

from tillpoint_api.jobs.loyalty.birthday import ALREADY_AWARDED, birthday_matches, run_birthday_bonuses
from tillpoint_api.models.customer import LoyaltyTierLevel
from tillpoint_api.models.loyalty import PointsTransaction, PointsTransactionType
from tillpoint_api.observability.loyalty import get_loyalty_store
from tillpoint_api.services.loyalty import LoyaltyLedger, LoyaltyService


def test_birthday_matches_moves_leap_day_in_common_years() -> None:
    assert birthday_matches(dt.date(2027, 2, 28)) == [(2, 28), (2, 29)]
    assert birthday_matches(dt.date(2028, 2, 28)) == [(2, 28)]
    assert birthday_matches(dt.date(2028, 2, 29)) == [(2, 29)]
    assert birthday_matches(dt.date(2026, 10, 4)) == [(10, 4)]


@pytest.mark.asyncio
async def test_birthday_bonus_is_awarded_once_per_day(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant, tier=LoyaltyTierLevel.GOLD, date_of_birth=dt.date(1990, 10, 4))
    await seeder.customer(tenant, "Not Today", date_of_birth=dt.date(1990, 10, 5))
    today = dt.date(2026, 10, 4)

    summary = await run_birthday_bonuses(session_factory=session_factory, today=today)

    assert summary["awarded_count"] == 1
    assert summary["skipped_count"] == 0
    assert summary["results"][0]["customer_id"] == str(customer.id)
    assert summary["results"][0]["points"] == 200

    refreshed = await seeder.reload(customer.id)
    assert refreshed.current_balance == 200
    assert refreshed.tier == LoyaltyTierLevel.GOLD

    second = await run_birthday_bonuses(session_factory=session_factory, today=today)

    assert second["awarded_count"] == 0
    assert second["skipped_count"] == 1
    assert second["results"][0]["reason"] == ALREADY_AWARDED

    async with session_factory() as session:
        bonuses = (
            await session.execute(
                select(PointsTransaction).where(
                    PointsTransaction.transaction_type == PointsTransactionType.BIRTHDAY_BONUS
                )
            )
        ).scalars().all()
    assert len(bonuses) == 1
    assert bonuses[0].bonus_day == today
    assert (await seeder.reload(customer.id)).current_balance == 200

    birthday_counters = get_loyalty_store().snapshot().birthday
    assert birthday_counters == {"runs": 2, "awarded": 1, "skipped": 1, "failed": 0}


@pytest.mark.asyncio
async def test_next_year_birthday_is_awarded_again(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant, date_of_birth=dt.date(1990, 10, 4))

    await run_birthday_bonuses(session_factory=session_factory, today=dt.date(2026, 10, 4))
    summary = await run_birthday_bonuses(session_factory=session_factory, today=dt.date(2027, 10, 4))

    assert summary["awarded_count"] == 1
    assert (await seeder.reload(customer.id)).current_balance == 100


@pytest.mark.asyncio
async def test_leap_day_birthday_is_celebrated_on_feb_28(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant, date_of_birth=dt.date(2000, 2, 29))

    summary = await run_birthday_bonuses(session_factory=session_factory, today=dt.date(2027, 2, 28))

    assert summary["awarded_count"] == 1
    assert summary["results"][0]["customer_id"] == str(customer.id)


@pytest.mark.asyncio
async def test_inactive_customers_and_other_tenants_are_skipped(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    other_tenant = await seeder.tenant("other-shop")
    birthday = dt.date(1985, 6, 1)
    await seeder.customer(tenant, "Gone Away", date_of_birth=birthday, is_active=False)
    other = await seeder.customer(other_tenant, "Elsewhere", date_of_birth=birthday)

    summary = await run_birthday_bonuses(
        session_factory=session_factory, tenant_id=tenant.id, today=dt.date(2026, 6, 1)
    )
    assert summary["results"] == []

    summary = await run_birthday_bonuses(session_factory=session_factory, today=dt.date(2026, 6, 1))
    assert [item["customer_id"] for item in summary["results"]] == [str(other.id)]


@pytest.mark.asyncio
async def test_zero_bonus_tier_is_skipped(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant, date_of_birth=dt.date(1990, 3, 3))
    async with session_factory() as session:
        await LoyaltyService(session).upsert_tier_config(
            tenant.id,
            LoyaltyTierLevel.BRONZE,
            minimum_lifetime_points=0,
            points_multiplier=1,
            discount_percentage=0,
            birthday_bonus=0,
        )
        await session.commit()

    summary = await run_birthday_bonuses(session_factory=session_factory, today=dt.date(2026, 3, 3))

    assert summary["skipped_count"] == 1
    assert summary["results"][0]["skipped"] is True
    assert (await seeder.reload(customer.id)).current_balance == 0


@pytest.mark.asyncio
async def test_partial_ladder_keeps_default_birthday_bonus(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant, date_of_birth=dt.date(1990, 10, 4))
    async with session_factory() as session:
        await LoyaltyService(session).upsert_tier_config(
            tenant.id,
            LoyaltyTierLevel.GOLD,
            minimum_lifetime_points=1500,
            points_multiplier="1.5",
            discount_percentage=10,
            birthday_bonus=300,
        )
        await session.commit()

    summary = await run_birthday_bonuses(session_factory=session_factory, today=dt.date(2026, 10, 4))

    assert summary["awarded_count"] == 1
    assert summary["results"][0]["points"] == 50
    assert summary["results"][0]["tier"] == LoyaltyTierLevel.BRONZE.value
    assert (await seeder.reload(customer.id)).tier == LoyaltyTierLevel.BRONZE


@pytest.mark.asyncio
async def test_overlapping_runs_award_each_customer_once(
    file_session_factory, file_seeder, patient_retries
) -> None:
    tenant = await file_seeder.tenant()
    birthday = dt.date(1988, 7, 14)
    customers = [await file_seeder.customer(tenant, f"Guest {index}", date_of_birth=birthday) for index in range(5)]

    runs = await asyncio.gather(
        *(run_birthday_bonuses(session_factory=file_session_factory, today=dt.date(2026, 7, 14)) for _ in range(4))
    )

    assert sum(run["awarded_count"] for run in runs) == 5
    assert sum(run["skipped_count"] for run in runs) == 15
    assert sum(run["failed_count"] for run in runs) == 0
    skipped_reasons = {item["reason"] for run in runs for item in run["results"] if item["status"] == "skipped"}
    assert skipped_reasons == {ALREADY_AWARDED}

    async with file_session_factory() as session:
        bonuses = (
            await session.execute(
                select(PointsTransaction).where(
                    PointsTransaction.transaction_type == PointsTransactionType.BIRTHDAY_BONUS
                )
            )
        ).scalars().all()
    assert sorted(str(entry.customer_id) for entry in bonuses) == sorted(str(customer.id) for customer in customers)
    for customer in customers:
        assert (await file_seeder.reload(customer.id)).current_balance == 50


@pytest.mark.asyncio
async def test_one_failing_customer_does_not_block_the_batch(session_factory, seeder, monkeypatch) -> None:
    tenant = await seeder.tenant()
    birthday = dt.date(1992, 12, 24)
    broken = await seeder.customer(tenant, "Ada Broken", date_of_birth=birthday)
    healthy = await seeder.customer(tenant, "Bea Healthy", date_of_birth=birthday)

    original_append = LoyaltyLedger.append_and_project

    async def flaky_append(self, customer_id, *args, **kwargs):
        if customer_id == broken.id:
            raise RuntimeError("ledger unavailable")
        return await original_append(self, customer_id, *args, **kwargs)

    monkeypatch.setattr(LoyaltyLedger, "append_and_project", flaky_append)

    summary = await run_birthday_bonuses(session_factory=session_factory, today=dt.date(2026, 12, 24))

    assert summary["awarded_count"] == 1
    assert summary["failed_count"] == 1
    statuses = {item["customer_id"]: item["status"] for item in summary["results"]}
    assert statuses == {str(broken.id): "failed", str(healthy.id): "awarded"}
    assert (await seeder.reload(healthy.id)).current_balance == 50
    assert (await seeder.reload(broken.id)).current_balance == 0
    assert get_loyalty_store().snapshot().birthday["failed"] == 1
