"""Spend points on rewards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tillpoint_api.models.loyalty import LoyaltyReward, PointsTransactionType, RewardType

from .ledger import LoyaltyLedger, SessionFactory, run_ledger_transaction


@dataclass(slots=True)
class RedemptionResult:
    reward: LoyaltyReward
    new_balance: int
    transaction_id: UUID


class RedemptionEngine:
    """Debit points and issue the matching reward in one transaction."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def redeem(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        points_requested: int,
        reward_type: RewardType | str,
        reward_value: Decimal | int | float | str,
        description: str | None = None,
        *,
        expires_at: datetime | None = None,
    ) -> RedemptionResult:
        if isinstance(points_requested, bool) or not isinstance(points_requested, int) or points_requested <= 0:
            raise ValueError("points_requested must be a positive integer")
        reward_kind = RewardType(reward_type)
        value = Decimal(str(reward_value))
        if value < 0:
            raise ValueError("reward_value cannot be negative")
        label = description or f"Redeemed {points_requested} points for {reward_kind.value}"

        async def _redeem(session: AsyncSession) -> RedemptionResult:
            ledger = LoyaltyLedger(session)
            appended = await ledger.append_and_project(
                customer_id,
                tenant_id,
                PointsTransactionType.REDEEMED,
                -points_requested,
                label,
                metadata={"reward_type": reward_kind.value, "reward_value": str(value)},
            )
            reward = LoyaltyReward(
                tenant_id=tenant_id,
                customer_id=customer_id,
                transaction_id=appended.transaction.id,
                reward_type=reward_kind,
                reward_value=value,
                points_cost=points_requested,
                description=label,
                redeemed_at=datetime.now(timezone.utc),
                expires_at=expires_at,
            )
            session.add(reward)
            await session.flush()
            logger.info(
                "Loyalty reward issued",
                customer_id=str(customer_id),
                tenant_id=str(tenant_id),
                reward_id=str(reward.id),
                reward_type=reward_kind.value,
                points_cost=points_requested,
                balance_after=appended.new_balance,
            )
            return RedemptionResult(
                reward=reward,
                new_balance=appended.new_balance,
                transaction_id=appended.transaction.id,
            )

        return await run_ledger_transaction(self._session_factory, _redeem, label="redemption")


__all__ = ["RedemptionEngine", "RedemptionResult"]
