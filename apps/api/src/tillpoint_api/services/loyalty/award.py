"""Points earned on completed sales."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tillpoint_api.core.settings import settings
from tillpoint_api.models.customer import LoyaltyTierLevel
from tillpoint_api.models.loyalty import PointsTransactionType
from tillpoint_api.models.tenant import Tenant

from .ledger import LoyaltyLedger, SessionFactory, run_ledger_transaction
from .tiers import rule_for


@dataclass(frozen=True, slots=True)
class AwardBreakdown:
    base_points: int
    bonus_points: int

    @property
    def total_points(self) -> int:
        return self.base_points + self.bonus_points


@dataclass(slots=True)
class AwardResult:
    points_awarded: int
    base_points: int
    bonus_points: int
    new_balance: int
    new_tier: LoyaltyTierLevel
    transaction_id: UUID | None


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def compute_award_points(
    sale_amount: Decimal | int | float | str,
    points_per_unit: Decimal | int | float | str,
    multiplier: Decimal | int | float | str,
) -> AwardBreakdown:
    """``base = floor(amount / per_unit)``; ``bonus = floor(base * (multiplier - 1))``."""

    amount = Decimal(str(sale_amount))
    per_unit = Decimal(str(points_per_unit))
    rate = Decimal(str(multiplier))
    if amount < 0:
        raise ValueError("Sale amount cannot be negative")
    if per_unit <= 0:
        raise ValueError("Points per unit must be positive")

    base = _floor(amount / per_unit)
    bonus = max(_floor(base * (rate - 1)), 0)
    return AwardBreakdown(base_points=base, bonus_points=bonus)


class AwardEngine:
    """Turn completed sales into EARNED ledger entries."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def award_for_sale(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        sale_amount: Decimal | int | float | str,
        *,
        related_sale_id: str | None = None,
    ) -> AwardResult:
        if Decimal(str(sale_amount)) < 0:
            raise ValueError("Sale amount cannot be negative")

        async def _award(session: AsyncSession) -> AwardResult:
            ledger = LoyaltyLedger(session)
            customer = await ledger.lock_customer(customer_id, tenant_id)
            ladder = await ledger.load_tier_ladder(tenant_id)
            tier = LoyaltyTierLevel(customer.tier)
            rule = rule_for(tier, ladder)
            breakdown = compute_award_points(sale_amount, await _points_per_unit(session, tenant_id), rule.points_multiplier)

            if breakdown.total_points <= 0:
                logger.info(
                    "Sale below earning threshold; no points awarded",
                    customer_id=str(customer_id),
                    sale_amount=str(sale_amount),
                )
                return AwardResult(
                    points_awarded=0,
                    base_points=0,
                    bonus_points=0,
                    new_balance=int(customer.current_balance or 0),
                    new_tier=tier,
                    transaction_id=None,
                )

            description = (
                f"Earned {breakdown.base_points} base points + "
                f"{breakdown.bonus_points} tier bonus ({tier.value.upper()})"
            )
            appended = await ledger.append_and_project(
                customer_id,
                tenant_id,
                PointsTransactionType.EARNED,
                breakdown.total_points,
                description,
                related_sale_id=related_sale_id,
                metadata={
                    "sale_amount": str(sale_amount),
                    "base_points": breakdown.base_points,
                    "bonus_points": breakdown.bonus_points,
                    "multiplier": str(rule.points_multiplier),
                    "tier": tier.value,
                },
                customer=customer,
            )
            return AwardResult(
                points_awarded=breakdown.total_points,
                base_points=breakdown.base_points,
                bonus_points=breakdown.bonus_points,
                new_balance=appended.new_balance,
                new_tier=appended.new_tier,
                transaction_id=appended.transaction.id,
            )

        return await run_ledger_transaction(self._session_factory, _award, label="award")


async def _points_per_unit(session: AsyncSession, tenant_id: UUID) -> Decimal:
    result = await session.execute(select(Tenant.points_per_unit).where(Tenant.id == tenant_id))
    configured = result.scalar_one_or_none()
    if configured is None or Decimal(str(configured)) <= 0:
        return Decimal(str(settings.loyalty_points_per_unit))
    return Decimal(str(configured))


__all__ = ["AwardBreakdown", "AwardEngine", "AwardResult", "compute_award_points"]
