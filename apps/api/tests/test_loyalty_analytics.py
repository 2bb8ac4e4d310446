from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tillpoint_api.models.customer import Customer, LoyaltyTierLevel
from tillpoint_api.models.loyalty import LoyaltyOfferType, RewardType
from tillpoint_api.services.loyalty import (
    AwardEngine,
    LoyaltyAnalyticsService,
    LoyaltyService,
    RedemptionEngine,
)


@pytest.mark.asyncio
async def test_program_statistics_summarises_tenant(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    other_tenant = await seeder.tenant("other-shop")
    ada = await seeder.customer(tenant, "Ada Shopper")
    ben = await seeder.customer(tenant, "Ben Regular", tier=LoyaltyTierLevel.GOLD)
    stranger = await seeder.customer(other_tenant, "Stranger")

    await AwardEngine(session_factory).award_for_sale(ada.id, tenant.id, Decimal("250"))
    await seeder.credit(ben, 400)
    await seeder.credit(stranger, 999)
    await RedemptionEngine(session_factory).redeem(ben.id, tenant.id, 150, RewardType.FREE_PRODUCT, 0)

    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        service = LoyaltyService(session)
        await service.create_offer(
            tenant.id,
            title="Live",
            offer_type=LoyaltyOfferType.DISCOUNT_FIXED,
            discount_value=3,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=1),
            required_tier=LoyaltyTierLevel.PLATINUM,
        )
        await service.create_offer(
            tenant.id,
            title="Expired",
            offer_type=LoyaltyOfferType.DISCOUNT_FIXED,
            discount_value=3,
            start_date=now - timedelta(days=10),
            end_date=now - timedelta(days=5),
        )
        await session.commit()

    async with session_factory() as session:
        stats = await LoyaltyAnalyticsService(session).program_statistics(tenant.id, now=now)

    assert stats.customers_by_tier == {"bronze": 1, "silver": 0, "gold": 1, "platinum": 0}
    assert stats.points_issued == 25 + 400
    assert stats.points_redeemed == 150
    assert stats.active_offers == 1
    assert [reward.points_cost for reward in stats.recent_rewards] == [150]
    assert [customer.name for customer in stats.top_customers] == ["Ben Regular", "Ada Shopper"]


@pytest.mark.asyncio
async def test_find_balance_drift_reports_only_mismatches(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    clean = await seeder.customer(tenant, "Clean")
    drifted = await seeder.customer(tenant, "Drifted")
    await seeder.credit(clean, 30)
    await seeder.credit(drifted, 30)

    async with session_factory() as session:
        assert await LoyaltyAnalyticsService(session).find_balance_drift(tenant.id) == []

        record = await session.get(Customer, drifted.id)
        record.current_balance = 45
        record.ledger_sequence = 2
        await session.commit()

    async with session_factory() as session:
        drift = await LoyaltyAnalyticsService(session).find_balance_drift(tenant.id)

    assert len(drift) == 1
    assert drift[0].customer_id == drifted.id
    assert (drift[0].current_balance, drift[0].ledger_balance, drift[0].difference) == (45, 30, 15)
