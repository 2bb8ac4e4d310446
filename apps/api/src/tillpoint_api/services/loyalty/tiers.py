"""Tier ladder classification.

Pure functions over an ordered ladder of :class:`TierRule` values. Tenants
override individual rungs through ``TierConfig`` rows; every rung a tenant
leaves unconfigured keeps its default rule.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from tillpoint_api.models.customer import LoyaltyTierLevel

_TIER_ORDER: tuple[LoyaltyTierLevel, ...] = (
    LoyaltyTierLevel.BRONZE,
    LoyaltyTierLevel.SILVER,
    LoyaltyTierLevel.GOLD,
    LoyaltyTierLevel.PLATINUM,
)


@dataclass(frozen=True, slots=True)
class TierRule:
    tier: LoyaltyTierLevel
    minimum_lifetime_points: int
    points_multiplier: Decimal
    discount_percentage: Decimal
    birthday_bonus: int
    description: str | None = None


DEFAULT_TIER_LADDER: tuple[TierRule, ...] = (
    TierRule(LoyaltyTierLevel.BRONZE, 0, Decimal("1.00"), Decimal("0"), 50, "Entry tier"),
    TierRule(LoyaltyTierLevel.SILVER, 500, Decimal("1.25"), Decimal("5"), 100, "5% member discount"),
    TierRule(LoyaltyTierLevel.GOLD, 1500, Decimal("1.50"), Decimal("10"), 200, "10% member discount"),
    TierRule(LoyaltyTierLevel.PLATINUM, 3000, Decimal("2.00"), Decimal("15"), 500, "15% member discount"),
)


def tier_rank(tier: LoyaltyTierLevel | str) -> int:
    return _TIER_ORDER.index(LoyaltyTierLevel(tier))


def normalize_ladder(ladder: Iterable[TierRule] | None) -> tuple[TierRule, ...]:
    """Lay configured rules over the default ladder tier by tier, sorted by minimum.

    A tenant that configures only some tiers keeps the default rule for every
    other tier.
    """

    merged = {rule.tier: rule for rule in DEFAULT_TIER_LADDER}
    for rule in ladder or ():
        merged[LoyaltyTierLevel(rule.tier)] = rule
    return tuple(sorted(merged.values(), key=lambda rule: (rule.minimum_lifetime_points, tier_rank(rule.tier))))


def classify(lifetime_points: int, ladder: Sequence[TierRule] | None = None) -> LoyaltyTierLevel:
    """Return the highest tier whose minimum is met, else BRONZE."""

    qualifying = LoyaltyTierLevel.BRONZE
    for rule in normalize_ladder(ladder):
        if rule.minimum_lifetime_points > lifetime_points:
            break
        if tier_rank(rule.tier) > tier_rank(qualifying):
            qualifying = rule.tier
    return qualifying


def effective_tier(current: LoyaltyTierLevel | str, qualifying: LoyaltyTierLevel | str) -> LoyaltyTierLevel:
    """Tiers only ever move up."""

    current_level = LoyaltyTierLevel(current)
    qualifying_level = LoyaltyTierLevel(qualifying)
    if tier_rank(qualifying_level) > tier_rank(current_level):
        return qualifying_level
    return current_level


def rule_for(tier: LoyaltyTierLevel | str, ladder: Sequence[TierRule] | None = None) -> TierRule:
    level = LoyaltyTierLevel(tier)
    return next(rule for rule in normalize_ladder(ladder) if rule.tier == level)


def next_rule(tier: LoyaltyTierLevel | str, ladder: Sequence[TierRule] | None = None) -> TierRule | None:
    """First rung ranked above ``tier``, or ``None`` at the top of the ladder."""

    rank = tier_rank(tier)
    for rule in normalize_ladder(ladder):
        if tier_rank(rule.tier) > rank:
            return rule
    return None


__all__ = [
    "DEFAULT_TIER_LADDER",
    "TierRule",
    "classify",
    "effective_tier",
    "next_rule",
    "normalize_ladder",
    "rule_for",
    "tier_rank",
]
