"""Seed a demo tenant, its tier ladder and a handful of loyalty customers."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tillpoint_api.core.settings import settings
from tillpoint_api.models.customer import Customer, LoyaltyTierLevel
from tillpoint_api.models.tenant import Tenant
from tillpoint_api.services.loyalty import DEFAULT_TIER_LADDER, LoyaltyService


class SeedCustomer(TypedDict):
    email: str
    name: str
    date_of_birth: date | None


DEMO_TENANT_SLUG = os.getenv("DEV_TENANT_SLUG", "demo-store")
DEMO_TENANT_TIMEZONE = os.getenv("DEV_TENANT_TIMEZONE", "UTC")

DEV_CUSTOMERS: list[SeedCustomer] = [
    {"email": "ada@tillpoint.dev", "name": "Ada Shopper", "date_of_birth": date(1990, 10, 4)},
    {"email": "ben@tillpoint.dev", "name": "Ben Regular", "date_of_birth": date(1985, 2, 29)},
    {"email": "cy@tillpoint.dev", "name": "Cy Walkin", "date_of_birth": None},
]


async def seed_tenant(session: AsyncSession) -> Tenant:
    result = await session.execute(select(Tenant).where(Tenant.slug == DEMO_TENANT_SLUG))
    tenant = result.scalar_one_or_none()
    if tenant is None:
        tenant = Tenant(slug=DEMO_TENANT_SLUG, name="Demo Store", timezone=DEMO_TENANT_TIMEZONE)
        session.add(tenant)
        await session.flush()
    else:
        tenant.timezone = DEMO_TENANT_TIMEZONE
    return tenant


async def seed_ladder(session: AsyncSession, tenant: Tenant) -> None:
    service = LoyaltyService(session)
    for rule in DEFAULT_TIER_LADDER:
        await service.upsert_tier_config(
            tenant.id,
            rule.tier,
            minimum_lifetime_points=rule.minimum_lifetime_points,
            points_multiplier=rule.points_multiplier,
            discount_percentage=rule.discount_percentage,
            birthday_bonus=rule.birthday_bonus,
            description=rule.description,
        )


async def seed_customers(session: AsyncSession, tenant: Tenant) -> None:
    for customer in DEV_CUSTOMERS:
        with session.no_autoflush:
            existing = await session.execute(
                select(Customer).where(Customer.tenant_id == tenant.id, Customer.email == customer["email"])
            )
        record = existing.scalar_one_or_none()

        if record:
            record.name = customer["name"]
            record.date_of_birth = customer["date_of_birth"]
            record.is_active = True
        else:
            session.add(
                Customer(
                    tenant_id=tenant.id,
                    email=customer["email"],
                    name=customer["name"],
                    date_of_birth=customer["date_of_birth"],
                    tier=LoyaltyTierLevel.BRONZE,
                )
            )


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            tenant = await seed_tenant(session)
            await seed_ladder(session, tenant)
            await seed_customers(session, tenant)
            await session.commit()
        print(f"Demo tenant {DEMO_TENANT_SLUG} ready ({tenant.id}) at {datetime.now(timezone.utc):%Y-%m-%d %H:%M} UTC")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
