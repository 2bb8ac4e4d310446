"""Daily birthday bonus sweep."""

# meta: job: loyalty-birthday-bonus

from __future__ import annotations

import datetime as dt
from calendar import isleap
from typing import Any, Dict, List
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger
from sqlalchemy import and_, extract, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tillpoint_api.models.customer import Customer, LoyaltyTierLevel
from tillpoint_api.models.loyalty import PointsTransaction, PointsTransactionType
from tillpoint_api.models.tenant import Tenant
from tillpoint_api.observability.loyalty import get_loyalty_store
from tillpoint_api.services.loyalty import (
    LoyaltyLedger,
    SchedulerItemFailedError,
    SessionFactory,
    open_session,
    rule_for,
    run_ledger_transaction,
)

ALREADY_AWARDED = "already awarded today"
NO_BONUS_CONFIGURED = "no birthday bonus configured for tier"


async def run_birthday_bonuses(
    *,
    session_factory: SessionFactory,
    tenant_id: UUID | str | None = None,
    today: dt.date | None = None,
) -> Dict[str, Any]:
    """Credit each customer whose birthday is today with their tier's bonus, at most once per day.

    ``today`` overrides every tenant's local date; otherwise the date is taken
    in each tenant's own timezone. Every customer runs in its own ledger
    transaction so one failure never blocks the rest of the batch.
    """

    tenants = await _load_tenants(session_factory, tenant_id)
    results: List[Dict[str, Any]] = []

    for tenant in tenants:
        local_day = today or _tenant_today(tenant)
        customer_ids = await _birthday_customer_ids(session_factory, tenant.id, local_day)
        logger.info(
            "Birthday bonus candidates selected",
            tenant_id=str(tenant.id),
            day=local_day.isoformat(),
            candidates=len(customer_ids),
        )
        for customer_id in customer_ids:
            results.append(await _process_customer(session_factory, tenant.id, customer_id, local_day))

    summary = {
        "awarded_count": sum(1 for item in results if item["status"] == "awarded"),
        "skipped_count": sum(1 for item in results if item["status"] == "skipped"),
        "failed_count": sum(1 for item in results if item["status"] == "failed"),
        "results": results,
    }
    get_loyalty_store().record_birthday_run(
        awarded=summary["awarded_count"],
        skipped=summary["skipped_count"],
        failed=summary["failed_count"],
    )
    logger.bind(
        awarded=summary["awarded_count"],
        skipped=summary["skipped_count"],
        failed=summary["failed_count"],
    ).info("Birthday bonus sweep completed")
    return summary


def birthday_matches(day: dt.date) -> list[tuple[int, int]]:
    """(month, day) pairs celebrated on ``day``; Feb 29 birthdays fall on Feb 28 in common years."""

    matches = [(day.month, day.day)]
    if day.month == 2 and day.day == 28 and not isleap(day.year):
        matches.append((2, 29))
    return matches


def _tenant_today(tenant: Tenant) -> dt.date:
    try:
        zone = ZoneInfo(tenant.timezone or "UTC")
    except ZoneInfoNotFoundError:
        logger.warning("Unknown tenant timezone; using UTC", tenant_id=str(tenant.id), timezone=tenant.timezone)
        zone = ZoneInfo("UTC")
    return dt.datetime.now(zone).date()


async def _load_tenants(session_factory: SessionFactory, tenant_id: UUID | str | None) -> list[Tenant]:
    session = await open_session(session_factory)
    async with session as managed_session:
        stmt = select(Tenant).where(Tenant.is_active.is_(True))
        if tenant_id is not None:
            stmt = stmt.where(Tenant.id == UUID(str(tenant_id)))
        result = await managed_session.execute(stmt.order_by(Tenant.slug))
        return list(result.scalars().all())


async def _birthday_customer_ids(session_factory: SessionFactory, tenant_id: UUID, day: dt.date) -> list[UUID]:
    clauses = [
        and_(extract("month", Customer.date_of_birth) == month, extract("day", Customer.date_of_birth) == day_of_month)
        for month, day_of_month in birthday_matches(day)
    ]
    stmt = (
        select(Customer.id)
        .where(
            Customer.tenant_id == tenant_id,
            Customer.is_active.is_(True),
            Customer.date_of_birth.is_not(None),
            or_(*clauses),
        )
        .order_by(Customer.name)
    )
    session = await open_session(session_factory)
    async with session as managed_session:
        result = await managed_session.execute(stmt)
        return list(result.scalars().all())


async def _process_customer(
    session_factory: SessionFactory,
    tenant_id: UUID,
    customer_id: UUID,
    day: dt.date,
) -> Dict[str, Any]:
    async def _grant(session: AsyncSession) -> Dict[str, Any]:
        ledger = LoyaltyLedger(session)
        customer = await ledger.lock_customer(customer_id, tenant_id)

        existing = await session.execute(
            select(PointsTransaction.id).where(
                PointsTransaction.customer_id == customer_id,
                PointsTransaction.transaction_type == PointsTransactionType.BIRTHDAY_BONUS,
                PointsTransaction.bonus_day == day,
            )
        )
        if existing.first() is not None:
            return _skipped(customer_id, ALREADY_AWARDED)

        tier = LoyaltyTierLevel(customer.tier)
        bonus = rule_for(tier, await ledger.load_tier_ladder(tenant_id)).birthday_bonus
        if bonus <= 0:
            return _skipped(customer_id, NO_BONUS_CONFIGURED)

        appended = await ledger.append_and_project(
            customer_id,
            tenant_id,
            PointsTransactionType.BIRTHDAY_BONUS,
            bonus,
            f"Happy birthday! {bonus} bonus points ({tier.value.upper()})",
            bonus_day=day,
            metadata={"tier": tier.value, "bonus_day": day.isoformat()},
            customer=customer,
        )
        return {
            "customer_id": str(customer_id),
            "status": "awarded",
            "skipped": False,
            "points": bonus,
            "new_balance": appended.new_balance,
            "tier": appended.new_tier.value,
        }

    try:
        return await run_ledger_transaction(session_factory, _grant, label="birthday_bonus")
    except IntegrityError as exc:
        if "bonus_day" in str(exc.orig).lower() or "customer_type_day" in str(exc.orig).lower():
            # An overlapping run committed the same day's bonus first.
            return _skipped(customer_id, ALREADY_AWARDED)
        return _failed(SchedulerItemFailedError(customer_id, exc))
    except Exception as exc:  # noqa: BLE001 - one customer must not abort the batch
        return _failed(SchedulerItemFailedError(customer_id, exc))


def _skipped(customer_id: UUID, reason: str) -> Dict[str, Any]:
    return {"customer_id": str(customer_id), "status": "skipped", "skipped": True, "reason": reason}


def _failed(error: SchedulerItemFailedError) -> Dict[str, Any]:
    logger.opt(exception=error.cause).error(
        "Birthday bonus failed for customer",
        customer_id=str(error.customer_id),
        error=str(error.cause),
    )
    return {
        "customer_id": str(error.customer_id),
        "status": "failed",
        "skipped": False,
        "error": str(error.cause),
    }


__all__ = ["ALREADY_AWARDED", "birthday_matches", "run_birthday_bonuses"]
