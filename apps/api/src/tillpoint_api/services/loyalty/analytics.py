"""Program-level loyalty statistics and ledger reconciliation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tillpoint_api.models.customer import Customer, LoyaltyTierLevel
from tillpoint_api.models.loyalty import LoyaltyOffer, LoyaltyReward, PointsTransaction, PointsTransactionType

from .offers import OfferAudience, filter_offers


@dataclass
class LoyaltyProgramStatistics:
    customers_by_tier: dict[str, int]
    points_issued: int
    points_redeemed: int
    active_offers: int
    recent_rewards: list[LoyaltyReward]
    top_customers: list[Customer]


@dataclass
class BalanceDrift:
    customer_id: UUID
    current_balance: int
    ledger_balance: int

    @property
    def difference(self) -> int:
        return self.current_balance - self.ledger_balance


class LoyaltyAnalyticsService:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def program_statistics(
        self,
        tenant_id: UUID,
        *,
        now: datetime | None = None,
        limit: int = 10,
    ) -> LoyaltyProgramStatistics:
        moment = now or datetime.now(timezone.utc)

        tier_rows = await self._db.execute(
            select(Customer.tier, func.count(Customer.id))
            .where(Customer.tenant_id == tenant_id)
            .group_by(Customer.tier)
        )
        customers_by_tier = {level.value: 0 for level in LoyaltyTierLevel}
        for tier, count in tier_rows.all():
            customers_by_tier[LoyaltyTierLevel(tier).value] = int(count)

        issued = await self._db.execute(
            select(func.coalesce(func.sum(PointsTransaction.points), 0)).where(
                PointsTransaction.tenant_id == tenant_id,
                PointsTransaction.points > 0,
            )
        )
        redeemed = await self._db.execute(
            select(func.coalesce(func.sum(PointsTransaction.points), 0)).where(
                PointsTransaction.tenant_id == tenant_id,
                PointsTransaction.transaction_type == PointsTransactionType.REDEEMED,
            )
        )

        offers = await self._db.execute(select(LoyaltyOffer).where(LoyaltyOffer.tenant_id == tenant_id))
        active_offers = filter_offers(offers.scalars().all(), OfferAudience.for_tier(LoyaltyTierLevel.PLATINUM), moment)

        recent = await self._db.execute(
            select(LoyaltyReward)
            .where(LoyaltyReward.tenant_id == tenant_id)
            .order_by(LoyaltyReward.redeemed_at.desc())
            .limit(limit)
        )
        top = await self._db.execute(
            select(Customer)
            .where(Customer.tenant_id == tenant_id)
            .order_by(Customer.current_balance.desc(), Customer.name.asc())
            .limit(limit)
        )

        return LoyaltyProgramStatistics(
            customers_by_tier=customers_by_tier,
            points_issued=int(issued.scalar_one()),
            points_redeemed=abs(int(redeemed.scalar_one())),
            active_offers=len(active_offers),
            recent_rewards=list(recent.scalars().all()),
            top_customers=list(top.scalars().all()),
        )

    async def find_balance_drift(self, tenant_id: UUID) -> list[BalanceDrift]:
        """Customers whose projected balance disagrees with their ledger sum."""

        ledger_totals = (
            select(
                PointsTransaction.customer_id.label("customer_id"),
                func.sum(PointsTransaction.points).label("ledger_balance"),
            )
            .where(PointsTransaction.tenant_id == tenant_id)
            .group_by(PointsTransaction.customer_id)
            .subquery()
        )
        stmt = (
            select(Customer.id, Customer.current_balance, func.coalesce(ledger_totals.c.ledger_balance, 0))
            .outerjoin(ledger_totals, ledger_totals.c.customer_id == Customer.id)
            .where(Customer.tenant_id == tenant_id)
        )
        result = await self._db.execute(stmt)
        return [
            BalanceDrift(customer_id=customer_id, current_balance=int(balance), ledger_balance=int(ledger_balance))
            for customer_id, balance, ledger_balance in result.all()
            if int(balance) != int(ledger_balance)
        ]


__all__ = ["BalanceDrift", "LoyaltyAnalyticsService", "LoyaltyProgramStatistics"]
