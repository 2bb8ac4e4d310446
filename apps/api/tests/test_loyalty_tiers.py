from decimal import Decimal

from tillpoint_api.models.customer import LoyaltyTierLevel
from tillpoint_api.services.loyalty.tiers import (
    DEFAULT_TIER_LADDER,
    TierRule,
    classify,
    effective_tier,
    next_rule,
    normalize_ladder,
    rule_for,
    tier_rank,
)


def _rule(tier: LoyaltyTierLevel, minimum: int, bonus: int = 0) -> TierRule:
    return TierRule(tier, minimum, Decimal("1"), Decimal("0"), bonus)


def test_classify_uses_default_ladder_boundaries() -> None:
    assert classify(0) == LoyaltyTierLevel.BRONZE
    assert classify(499) == LoyaltyTierLevel.BRONZE
    assert classify(500) == LoyaltyTierLevel.SILVER
    assert classify(1499) == LoyaltyTierLevel.SILVER
    assert classify(1500) == LoyaltyTierLevel.GOLD
    assert classify(3000) == LoyaltyTierLevel.PLATINUM
    assert classify(1_000_000) == LoyaltyTierLevel.PLATINUM


def test_classify_empty_ladder_falls_back_to_defaults() -> None:
    assert classify(600, []) == LoyaltyTierLevel.SILVER


def test_classify_falls_back_to_bronze_when_nothing_qualifies() -> None:
    ladder = [_rule(LoyaltyTierLevel.BRONZE, 100), _rule(LoyaltyTierLevel.SILVER, 300)]
    assert classify(50, ladder) == LoyaltyTierLevel.BRONZE
    assert classify(150, ladder) == LoyaltyTierLevel.BRONZE
    assert classify(300, ladder) == LoyaltyTierLevel.SILVER


def test_partial_ladder_keeps_default_rungs() -> None:
    ladder = [TierRule(LoyaltyTierLevel.GOLD, 1500, Decimal("1.5"), Decimal("10"), 300)]

    assert classify(2, ladder) == LoyaltyTierLevel.BRONZE
    assert classify(600, ladder) == LoyaltyTierLevel.SILVER
    assert classify(1500, ladder) == LoyaltyTierLevel.GOLD
    assert [rule.tier for rule in normalize_ladder(ladder)] == [rule.tier for rule in DEFAULT_TIER_LADDER]
    assert rule_for(LoyaltyTierLevel.BRONZE, ladder).birthday_bonus == 50
    assert rule_for(LoyaltyTierLevel.GOLD, ladder).birthday_bonus == 300


def test_classify_prefers_highest_rank_among_met_minimums() -> None:
    ladder = [_rule(LoyaltyTierLevel.GOLD, 400), _rule(LoyaltyTierLevel.SILVER, 800)]
    assert classify(500, ladder) == LoyaltyTierLevel.GOLD
    assert classify(900, ladder) == LoyaltyTierLevel.GOLD


def test_effective_tier_never_downgrades() -> None:
    assert effective_tier(LoyaltyTierLevel.GOLD, LoyaltyTierLevel.SILVER) == LoyaltyTierLevel.GOLD
    assert effective_tier(LoyaltyTierLevel.SILVER, LoyaltyTierLevel.PLATINUM) == LoyaltyTierLevel.PLATINUM
    assert effective_tier("bronze", "bronze") == LoyaltyTierLevel.BRONZE


def test_tier_rank_orders_ladder() -> None:
    ranks = [tier_rank(rule.tier) for rule in DEFAULT_TIER_LADDER]
    assert ranks == sorted(ranks) == [0, 1, 2, 3]


def test_rule_for_prefers_configured_rule_over_default() -> None:
    ladder = [_rule(LoyaltyTierLevel.BRONZE, 0, bonus=25)]
    assert rule_for(LoyaltyTierLevel.BRONZE, ladder).birthday_bonus == 25
    assert rule_for(LoyaltyTierLevel.GOLD, ladder).points_multiplier == Decimal("1.50")
    assert rule_for(LoyaltyTierLevel.GOLD).birthday_bonus == 200


def test_next_rule_walks_up_and_stops_at_top() -> None:
    assert next_rule(LoyaltyTierLevel.BRONZE).tier == LoyaltyTierLevel.SILVER
    assert next_rule(LoyaltyTierLevel.GOLD).tier == LoyaltyTierLevel.PLATINUM
    assert next_rule(LoyaltyTierLevel.PLATINUM) is None
