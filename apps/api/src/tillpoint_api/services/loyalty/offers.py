"""Tier-gated offer visibility."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from tillpoint_api.models.customer import LoyaltyTierLevel
from tillpoint_api.models.loyalty import LoyaltyOffer

from .tiers import tier_rank


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True, slots=True)
class OfferAudience:
    """Who is looking: an administrator, or a viewer holding ``tier``."""

    is_admin: bool = False
    tier: LoyaltyTierLevel = LoyaltyTierLevel.BRONZE

    @classmethod
    def admin(cls) -> "OfferAudience":
        return cls(is_admin=True)

    @classmethod
    def for_tier(cls, tier: LoyaltyTierLevel | str | None) -> "OfferAudience":
        # Anonymous shoppers see the entry-tier catalogue.
        return cls(tier=LoyaltyTierLevel(tier) if tier else LoyaltyTierLevel.BRONZE)


def is_offer_visible(offer: LoyaltyOffer, audience: OfferAudience, now: datetime) -> bool:
    if audience.is_admin:
        return True
    if not offer.is_active:
        return False
    moment = ensure_aware(now)
    if ensure_aware(offer.start_date) > moment or ensure_aware(offer.end_date) < moment:
        return False
    return tier_rank(offer.required_tier) <= tier_rank(audience.tier)


def filter_offers(
    offers: Iterable[LoyaltyOffer],
    audience: OfferAudience,
    now: datetime,
) -> list[LoyaltyOffer]:
    return [offer for offer in offers if is_offer_visible(offer, audience, now)]


__all__ = ["OfferAudience", "ensure_aware", "filter_offers", "is_offer_visible"]
