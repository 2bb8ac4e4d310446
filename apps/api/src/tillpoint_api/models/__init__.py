"""SQLAlchemy models package."""

from .tenant import Tenant  # noqa: F401
from .customer import Customer, LoyaltyTierLevel  # noqa: F401
from .loyalty import (  # noqa: F401
    LoyaltyOffer,
    LoyaltyOfferType,
    LoyaltyReward,
    PointsTransaction,
    PointsTransactionType,
    RewardType,
    TierConfig,
)

__all__ = [
    "Customer",
    "LoyaltyOffer",
    "LoyaltyOfferType",
    "LoyaltyReward",
    "LoyaltyTierLevel",
    "PointsTransaction",
    "PointsTransactionType",
    "RewardType",
    "Tenant",
    "TierConfig",
]
