"""Customer records carrying the denormalized loyalty projection."""

from __future__ import annotations

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
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tillpoint_api.db.base import Base


class LoyaltyTierLevel(str, Enum):
    """Tier ladder rungs, lowest first."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class Customer(Base):
    """A shopper enrolled in a tenant's loyalty program.

    ``current_balance``, ``lifetime_points`` and ``tier`` are projections of the
    points ledger and only change through a ledger append. ``ledger_sequence``
    is the sequence of the newest ledger row and doubles as the optimistic
    version column guarding concurrent appends.
    """

    __tablename__ = "customers"
    __table_args__ = (
        CheckConstraint("current_balance >= 0", name="non_negative_balance"),
        CheckConstraint("lifetime_points >= 0", name="non_negative_lifetime_points"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    current_balance = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    tier = Column(
        SqlEnum(LoyaltyTierLevel, name="loyalty_tier_level", values_callable=lambda enum: [item.value for item in enum]),
        nullable=False,
        default=LoyaltyTierLevel.BRONZE,
        server_default=LoyaltyTierLevel.BRONZE.value,
    )
    tier_upgraded_at = Column(DateTime(timezone=True), nullable=True)
    ledger_sequence = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {
        "version_id_col": ledger_sequence,
        "version_id_generator": False,
    }

    tenant = relationship("Tenant", back_populates="customers")
    transactions = relationship("PointsTransaction", back_populates="customer", order_by="PointsTransaction.sequence")
    rewards = relationship("LoyaltyReward", back_populates="customer")
