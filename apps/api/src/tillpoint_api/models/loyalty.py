"""Loyalty ledger, tier configuration, reward and offer models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tillpoint_api.db.base import Base
from tillpoint_api.models.customer import LoyaltyTierLevel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum: type[Enum]) -> list[str]:
    return [item.value for item in enum]


class PointsTransactionType(str, Enum):
    """Ledger entry kinds and the sign each one carries."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    BIRTHDAY_BONUS = "birthday_bonus"
    ADJUSTED = "adjusted"


class PointsTransaction(Base):
    """Append-only points ledger row. Never updated or deleted."""

    __tablename__ = "loyalty_points_transactions"
    __table_args__ = (
        UniqueConstraint("customer_id", "sequence", name="uq_loyalty_points_transactions_customer_sequence"),
        # NULL bonus_day values never collide, so only birthday rows are keyed per day.
        UniqueConstraint(
            "customer_id",
            "transaction_type",
            "bonus_day",
            name="uq_loyalty_points_transactions_customer_type_day",
        ),
        CheckConstraint("points <> 0", name="non_zero_points"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_type = Column(
        SqlEnum(PointsTransactionType, name="loyalty_points_transaction_type", values_callable=_enum_values),
        nullable=False,
    )
    points = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    sequence = Column(Integer, nullable=False)
    related_sale_id = Column(String, nullable=True, index=True)
    description = Column(Text, nullable=False)
    bonus_day = Column(Date, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    customer = relationship("Customer", back_populates="transactions")
    reward = relationship("LoyaltyReward", back_populates="transaction", uselist=False)


class TierConfig(Base):
    """Per-tenant rung of the tier ladder."""

    __tablename__ = "loyalty_tier_configs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "tier", name="uq_loyalty_tier_configs_tenant_tier"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    tier = Column(
        SqlEnum(LoyaltyTierLevel, name="loyalty_tier_level", values_callable=_enum_values),
        nullable=False,
    )
    minimum_lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    points_multiplier = Column(Numeric(6, 2), nullable=False, default=1, server_default="1")
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0, server_default="0")
    birthday_bonus = Column(Integer, nullable=False, default=0, server_default="0")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class RewardType(str, Enum):
    """What a redemption buys."""

    DISCOUNT_PERCENTAGE = "discount_percentage"
    DISCOUNT_FIXED = "discount_fixed"
    FREE_PRODUCT = "free_product"
    POINTS_MULTIPLIER = "points_multiplier"


class LoyaltyReward(Base):
    """Reward issued by exactly one REDEEMED ledger row."""

    __tablename__ = "loyalty_rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_points_transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    reward_type = Column(
        SqlEnum(RewardType, name="loyalty_reward_type", values_callable=_enum_values),
        nullable=False,
    )
    reward_value = Column(Numeric(12, 2), nullable=False)
    points_cost = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    redeemed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    customer = relationship("Customer", back_populates="rewards")
    transaction = relationship("PointsTransaction", back_populates="reward")


class LoyaltyOfferType(str, Enum):
    """Promotion mechanics an offer may carry."""

    DISCOUNT_PERCENTAGE = "discount_percentage"
    DISCOUNT_FIXED = "discount_fixed"
    BUY_X_GET_Y = "buy_x_get_y"
    POINTS_MULTIPLIER = "points_multiplier"


class LoyaltyOffer(Base):
    """Tier-gated promotion shown to customers at or above ``required_tier``."""

    __tablename__ = "loyalty_offers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    offer_type = Column(
        SqlEnum(LoyaltyOfferType, name="loyalty_offer_type", values_callable=_enum_values),
        nullable=False,
    )
    discount_value = Column(Numeric(12, 2), nullable=False)
    minimum_purchase = Column(Numeric(12, 2), nullable=True)
    required_tier = Column(
        SqlEnum(LoyaltyTierLevel, name="loyalty_tier_level", values_callable=_enum_values),
        nullable=False,
        default=LoyaltyTierLevel.BRONZE,
        server_default=LoyaltyTierLevel.BRONZE.value,
    )
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
