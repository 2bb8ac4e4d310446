import asyncio

import pytest
from sqlalchemy import select

from tillpoint_api.models.loyalty import PointsTransaction, RewardType
from tillpoint_api.services.loyalty import AwardEngine, InsufficientPointsError, RedemptionEngine


@pytest.mark.asyncio
async def test_concurrent_redemptions_never_overdraw(file_session_factory, file_seeder, patient_retries) -> None:
    tenant = await file_seeder.tenant()
    customer = await file_seeder.customer(tenant)
    await file_seeder.credit(customer, 50)
    engine = RedemptionEngine(file_session_factory)

    outcomes = await asyncio.gather(
        *(
            engine.redeem(customer.id, tenant.id, 10, RewardType.DISCOUNT_FIXED, 1, f"Voucher {index}")
            for index in range(10)
        ),
        return_exceptions=True,
    )

    succeeded = [outcome for outcome in outcomes if not isinstance(outcome, BaseException)]
    rejected = [outcome for outcome in outcomes if isinstance(outcome, InsufficientPointsError)]
    assert len(succeeded) == 5
    assert len(rejected) == 5

    refreshed = await file_seeder.reload(customer.id)
    assert refreshed.current_balance == 0

    async with file_session_factory() as session:
        entries = (
            await session.execute(
                select(PointsTransaction)
                .where(PointsTransaction.customer_id == customer.id)
                .order_by(PointsTransaction.sequence)
            )
        ).scalars().all()

    assert [entry.sequence for entry in entries] == list(range(1, 7))
    assert sum(entry.points for entry in entries) == refreshed.current_balance
    assert all(entry.balance_after >= 0 for entry in entries)


@pytest.mark.asyncio
async def test_concurrent_awards_all_land(file_session_factory, file_seeder, patient_retries) -> None:
    tenant = await file_seeder.tenant()
    customer = await file_seeder.customer(tenant)
    engine = AwardEngine(file_session_factory)

    results = await asyncio.gather(
        *(engine.award_for_sale(customer.id, tenant.id, "100", related_sale_id=f"sale-{index}") for index in range(6))
    )

    assert all(result.points_awarded == 10 for result in results)
    refreshed = await file_seeder.reload(customer.id)
    assert refreshed.current_balance == 60
    assert refreshed.lifetime_points == 60
    assert refreshed.ledger_sequence == 6


@pytest.mark.asyncio
async def test_concurrent_full_balance_redemptions_have_one_winner(
    file_session_factory, file_seeder, patient_retries
) -> None:
    tenant = await file_seeder.tenant()
    customer = await file_seeder.customer(tenant)
    await file_seeder.credit(customer, 80)
    engine = RedemptionEngine(file_session_factory)

    outcomes = await asyncio.gather(
        *(engine.redeem(customer.id, tenant.id, 80, RewardType.FREE_PRODUCT, 0) for _ in range(4)),
        return_exceptions=True,
    )

    assert sum(1 for outcome in outcomes if not isinstance(outcome, BaseException)) == 1
    assert sum(1 for outcome in outcomes if isinstance(outcome, InsufficientPointsError)) == 3
    assert (await file_seeder.reload(customer.id)).current_balance == 0
