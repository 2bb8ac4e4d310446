"""Loyalty ledger, engines and read services."""

from .analytics import BalanceDrift, LoyaltyAnalyticsService, LoyaltyProgramStatistics
from .award import AwardBreakdown, AwardEngine, AwardResult, compute_award_points
from .errors import (
    ConcurrencyConflictError,
    CustomerNotFoundError,
    InactiveCustomerError,
    InsufficientPointsError,
    InvalidTransactionTypeError,
    LoyaltyError,
    OfferNotFoundError,
    SchedulerItemFailedError,
)
from .ledger import LedgerAppendResult, LoyaltyLedger, SessionFactory, open_session, run_ledger_transaction
from .loyalty_service import LoyaltyService, LoyaltyStatusSnapshot
from .offers import OfferAudience, filter_offers
from .redemption import RedemptionEngine, RedemptionResult
from .tiers import DEFAULT_TIER_LADDER, TierRule, classify, effective_tier, next_rule, rule_for, tier_rank

__all__ = [
    "AwardBreakdown",
    "AwardEngine",
    "AwardResult",
    "BalanceDrift",
    "ConcurrencyConflictError",
    "CustomerNotFoundError",
    "DEFAULT_TIER_LADDER",
    "InactiveCustomerError",
    "InsufficientPointsError",
    "InvalidTransactionTypeError",
    "LedgerAppendResult",
    "LoyaltyAnalyticsService",
    "LoyaltyError",
    "LoyaltyLedger",
    "LoyaltyProgramStatistics",
    "LoyaltyService",
    "LoyaltyStatusSnapshot",
    "OfferAudience",
    "OfferNotFoundError",
    "RedemptionEngine",
    "RedemptionResult",
    "SchedulerItemFailedError",
    "SessionFactory",
    "TierRule",
    "classify",
    "compute_award_points",
    "effective_tier",
    "filter_offers",
    "next_rule",
    "open_session",
    "rule_for",
    "run_ledger_transaction",
    "tier_rank",
]
