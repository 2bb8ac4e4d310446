"""Read models and administration for the loyalty program."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tillpoint_api.models.customer import Customer, LoyaltyTierLevel
from tillpoint_api.models.loyalty import (
    LoyaltyOffer,
    LoyaltyOfferType,
    LoyaltyReward,
    PointsTransaction,
    PointsTransactionType,
    TierConfig,
)

from .errors import CustomerNotFoundError, OfferNotFoundError
from .ledger import LoyaltyLedger
from .offers import OfferAudience, ensure_aware, filter_offers
from .tiers import TierRule, next_rule, rule_for

_MUTABLE_OFFER_FIELDS = frozenset(
    {
        "title",
        "description",
        "offer_type",
        "discount_value",
        "minimum_purchase",
        "required_tier",
        "start_date",
        "end_date",
        "is_active",
    }
)


@dataclass
class LoyaltyStatusSnapshot:
    """Everything a till needs to show about a customer's standing."""

    customer_id: UUID
    current_balance: int
    lifetime_points: int
    tier: LoyaltyTierLevel
    tier_rule: TierRule
    next_tier: LoyaltyTierLevel | None
    points_to_next_tier: int | None
    progress_to_next_tier: float
    recent_transactions: list[PointsTransaction]
    active_rewards: list[LoyaltyReward]
    available_offers: list[LoyaltyOffer]


class LoyaltyService:
    """Coordinates loyalty reads and program configuration for one session."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._ledger = LoyaltyLedger(db_session)

    async def list_tiers(self, tenant_id: UUID) -> tuple[TierRule, ...]:
        return await self._ledger.load_tier_ladder(tenant_id)

    async def upsert_tier_config(
        self,
        tenant_id: UUID,
        tier: LoyaltyTierLevel | str,
        *,
        minimum_lifetime_points: int,
        points_multiplier: Decimal | float | str,
        discount_percentage: Decimal | float | str,
        birthday_bonus: int,
        description: str | None = None,
    ) -> TierConfig:
        level = LoyaltyTierLevel(tier)
        multiplier = Decimal(str(points_multiplier))
        discount = Decimal(str(discount_percentage))
        if minimum_lifetime_points < 0:
            raise ValueError("minimum_lifetime_points cannot be negative")
        if multiplier <= 0:
            raise ValueError("points_multiplier must be positive")
        if not Decimal("0") <= discount <= Decimal("100"):
            raise ValueError("discount_percentage must be between 0 and 100")
        if birthday_bonus < 0:
            raise ValueError("birthday_bonus cannot be negative")

        stmt = select(TierConfig).where(TierConfig.tenant_id == tenant_id, TierConfig.tier == level)
        result = await self._db.execute(stmt)
        config = result.scalar_one_or_none()
        if config is None:
            config = TierConfig(tenant_id=tenant_id, tier=level)
            self._db.add(config)

        config.minimum_lifetime_points = minimum_lifetime_points
        config.points_multiplier = multiplier
        config.discount_percentage = discount
        config.birthday_bonus = birthday_bonus
        config.description = description
        await self._db.flush()

        logger.info(
            "Loyalty tier configured",
            tenant_id=str(tenant_id),
            tier=level.value,
            minimum_lifetime_points=minimum_lifetime_points,
            points_multiplier=str(multiplier),
        )
        return config

    async def get_customer(self, customer_id: UUID, tenant_id: UUID) -> Customer:
        stmt = select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        result = await self._db.execute(stmt)
        customer = result.scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def list_transactions(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        *,
        limit: int = 50,
        before_sequence: int | None = None,
        types: Sequence[PointsTransactionType] | None = None,
    ) -> list[PointsTransaction]:
        return await self._ledger.list_transactions(
            customer_id,
            tenant_id,
            limit=limit,
            before_sequence=before_sequence,
            types=types,
        )

    async def list_active_rewards(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        *,
        now: datetime | None = None,
    ) -> list[LoyaltyReward]:
        """Rewards without an expiry or expiring after ``now``."""

        moment = ensure_aware(now or datetime.now(timezone.utc))
        await self.get_customer(customer_id, tenant_id)
        stmt = (
            select(LoyaltyReward)
            .where(LoyaltyReward.customer_id == customer_id, LoyaltyReward.tenant_id == tenant_id)
            .order_by(LoyaltyReward.redeemed_at.desc())
        )
        result = await self._db.execute(stmt)
        return [
            reward
            for reward in result.scalars().all()
            if reward.expires_at is None or ensure_aware(reward.expires_at) > moment
        ]

    async def audience_for_customer(self, customer_id: UUID, tenant_id: UUID) -> OfferAudience:
        customer = await self.get_customer(customer_id, tenant_id)
        return OfferAudience.for_tier(customer.tier)

    async def list_offers(
        self,
        tenant_id: UUID,
        audience: OfferAudience,
        *,
        now: datetime | None = None,
    ) -> list[LoyaltyOffer]:
        stmt = (
            select(LoyaltyOffer)
            .where(LoyaltyOffer.tenant_id == tenant_id)
            .order_by(LoyaltyOffer.start_date.asc(), LoyaltyOffer.title.asc())
        )
        result = await self._db.execute(stmt)
        return filter_offers(result.scalars().all(), audience, now or datetime.now(timezone.utc))

    async def create_offer(
        self,
        tenant_id: UUID,
        *,
        title: str,
        offer_type: LoyaltyOfferType | str,
        discount_value: Decimal | float | str,
        start_date: datetime,
        end_date: datetime,
        required_tier: LoyaltyTierLevel | str = LoyaltyTierLevel.BRONZE,
        description: str | None = None,
        minimum_purchase: Decimal | float | str | None = None,
        is_active: bool = True,
    ) -> LoyaltyOffer:
        if ensure_aware(end_date) < ensure_aware(start_date):
            raise ValueError("end_date must not precede start_date")

        offer = LoyaltyOffer(
            tenant_id=tenant_id,
            title=title,
            description=description,
            offer_type=LoyaltyOfferType(offer_type),
            discount_value=Decimal(str(discount_value)),
            minimum_purchase=Decimal(str(minimum_purchase)) if minimum_purchase is not None else None,
            required_tier=LoyaltyTierLevel(required_tier),
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
        )
        self._db.add(offer)
        await self._db.flush()
        logger.info("Loyalty offer created", tenant_id=str(tenant_id), offer_id=str(offer.id), title=title)
        return offer

    async def get_offer(self, tenant_id: UUID, offer_id: UUID) -> LoyaltyOffer:
        stmt = select(LoyaltyOffer).where(LoyaltyOffer.id == offer_id, LoyaltyOffer.tenant_id == tenant_id)
        result = await self._db.execute(stmt)
        offer = result.scalar_one_or_none()
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    async def update_offer(self, tenant_id: UUID, offer_id: UUID, changes: dict[str, Any]) -> LoyaltyOffer:
        offer = await self.get_offer(tenant_id, offer_id)
        unknown = set(changes) - _MUTABLE_OFFER_FIELDS
        if unknown:
            raise ValueError(f"Unsupported offer fields: {', '.join(sorted(unknown))}")

        for key, value in changes.items():
            if key == "offer_type":
                value = LoyaltyOfferType(value)
            elif key == "required_tier":
                value = LoyaltyTierLevel(value)
            elif key in {"discount_value", "minimum_purchase"} and value is not None:
                value = Decimal(str(value))
            setattr(offer, key, value)

        if ensure_aware(offer.end_date) < ensure_aware(offer.start_date):
            raise ValueError("end_date must not precede start_date")

        await self._db.flush()
        logger.info("Loyalty offer updated", tenant_id=str(tenant_id), offer_id=str(offer_id), fields=sorted(changes))
        return offer

    async def delete_offer(self, tenant_id: UUID, offer_id: UUID) -> None:
        offer = await self.get_offer(tenant_id, offer_id)
        await self._db.delete(offer)
        await self._db.flush()
        logger.info("Loyalty offer deleted", tenant_id=str(tenant_id), offer_id=str(offer_id))

    async def snapshot_customer(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        *,
        now: datetime | None = None,
        recent_limit: int = 10,
    ) -> LoyaltyStatusSnapshot:
        moment = now or datetime.now(timezone.utc)
        customer = await self.get_customer(customer_id, tenant_id)
        ladder = await self.list_tiers(tenant_id)
        tier = LoyaltyTierLevel(customer.tier)
        lifetime = int(customer.lifetime_points or 0)

        upcoming = next_rule(tier, ladder)
        points_to_next: int | None = None
        progress = 1.0
        if upcoming is not None:
            current_floor = rule_for(tier, ladder).minimum_lifetime_points
            points_to_next = max(upcoming.minimum_lifetime_points - lifetime, 0)
            span = upcoming.minimum_lifetime_points - current_floor
            progress = 1.0 if span <= 0 else min(max((lifetime - current_floor) / span, 0.0), 1.0)

        return LoyaltyStatusSnapshot(
            customer_id=customer.id,
            current_balance=int(customer.current_balance or 0),
            lifetime_points=lifetime,
            tier=tier,
            tier_rule=rule_for(tier, ladder),
            next_tier=upcoming.tier if upcoming else None,
            points_to_next_tier=points_to_next,
            progress_to_next_tier=round(progress, 4),
            recent_transactions=await self.list_transactions(customer_id, tenant_id, limit=recent_limit),
            active_rewards=await self.list_active_rewards(customer_id, tenant_id, now=moment),
            available_offers=await self.list_offers(tenant_id, OfferAudience.for_tier(tier), now=moment),
        )


__all__ = ["LoyaltyService", "LoyaltyStatusSnapshot"]
