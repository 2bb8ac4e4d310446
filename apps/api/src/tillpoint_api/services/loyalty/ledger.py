"""Append-only points ledger and the balance/tier projection kept beside it.

Every write to a customer's points goes through
:meth:`LoyaltyLedger.append_and_project`, which must run inside a transaction.
:func:`run_ledger_transaction` supplies that transaction and retries it when a
concurrent writer wins the race for the customer row.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Sequence, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tillpoint_api.core.settings import settings
from tillpoint_api.models.customer import Customer, LoyaltyTierLevel
from tillpoint_api.models.loyalty import PointsTransaction, PointsTransactionType, TierConfig
from tillpoint_api.observability.loyalty import get_loyalty_store

from .errors import (
    ConcurrencyConflictError,
    CustomerNotFoundError,
    InactiveCustomerError,
    InsufficientPointsError,
    InvalidTransactionTypeError,
)
from .tiers import TierRule, classify, effective_tier, normalize_ladder

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]
T = TypeVar("T")

# lock_not_available, serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"55P03", "40001", "40P01"})


@dataclass(slots=True)
class LedgerAppendResult:
    transaction: PointsTransaction
    customer: Customer
    previous_tier: LoyaltyTierLevel
    new_tier: LoyaltyTierLevel
    new_balance: int

    @property
    def tier_changed(self) -> bool:
        return self.previous_tier != self.new_tier


@dataclass(slots=True)
class _RetryPolicy:
    max_attempts: int
    base_backoff_seconds: float
    max_backoff_seconds: float
    jitter_seconds: float = field(default=0.0)

    def delay_for(self, attempt: int) -> float:
        delay = self.base_backoff_seconds * (2 ** (attempt - 1))
        if self.max_backoff_seconds:
            delay = min(delay, self.max_backoff_seconds)
        if self.jitter_seconds:
            delay += random.uniform(0, self.jitter_seconds)
        return max(delay, 0.0)


def _validate_sign(transaction_type: PointsTransactionType, points_delta: int) -> None:
    if isinstance(points_delta, bool) or not isinstance(points_delta, int):
        raise InvalidTransactionTypeError(f"Points must be an integer, got {points_delta!r}")

    if transaction_type in (PointsTransactionType.EARNED, PointsTransactionType.BIRTHDAY_BONUS):
        valid = points_delta > 0
    elif transaction_type == PointsTransactionType.REDEEMED:
        valid = points_delta < 0
    else:
        valid = points_delta != 0

    if not valid:
        raise InvalidTransactionTypeError(
            f"{transaction_type.value} entries cannot carry {points_delta} points"
        )


def rule_from_config(config: TierConfig) -> TierRule:
    return TierRule(
        tier=LoyaltyTierLevel(config.tier),
        minimum_lifetime_points=int(config.minimum_lifetime_points or 0),
        points_multiplier=Decimal(str(config.points_multiplier)),
        discount_percentage=Decimal(str(config.discount_percentage)),
        birthday_bonus=int(config.birthday_bonus or 0),
        description=config.description,
    )


class LoyaltyLedger:
    """Ledger writer bound to one session/transaction."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._ladders: dict[UUID, tuple[TierRule, ...]] = {}
        self._observability = get_loyalty_store()

    async def lock_customer(self, customer_id: UUID, tenant_id: UUID) -> Customer:
        """Load the customer row for update, refreshing any stale identity-map copy."""

        stmt = (
            select(Customer)
            .where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        customer = result.scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        if not customer.is_active:
            raise InactiveCustomerError(customer_id)
        return customer

    async def load_tier_ladder(self, tenant_id: UUID) -> tuple[TierRule, ...]:
        cached = self._ladders.get(tenant_id)
        if cached is not None:
            return cached

        stmt = select(TierConfig).where(TierConfig.tenant_id == tenant_id)
        result = await self._db.execute(stmt)
        ladder = normalize_ladder(rule_from_config(config) for config in result.scalars().all())
        self._ladders[tenant_id] = ladder
        return ladder

    async def append_and_project(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        transaction_type: PointsTransactionType,
        points_delta: int,
        description: str,
        *,
        related_sale_id: str | None = None,
        bonus_day: date | None = None,
        metadata: dict[str, Any] | None = None,
        customer: Customer | None = None,
    ) -> LedgerAppendResult:
        """Append one ledger row and move balance, lifetime points and tier with it.

        ``customer`` may be passed when the caller already locked the row in
        this transaction.
        """

        transaction_type = PointsTransactionType(transaction_type)
        _validate_sign(transaction_type, points_delta)

        if customer is None:
            customer = await self.lock_customer(customer_id, tenant_id)

        available = int(customer.current_balance or 0)
        if points_delta < 0 and available + points_delta < 0:
            self._observability.record_insufficient_points()
            raise InsufficientPointsError(available=available, requested=-points_delta)

        new_balance = available + points_delta
        sequence = int(customer.ledger_sequence or 0) + 1
        previous_tier = LoyaltyTierLevel(customer.tier)

        entry = PointsTransaction(
            tenant_id=tenant_id,
            customer_id=customer.id,
            transaction_type=transaction_type,
            points=points_delta,
            balance_after=new_balance,
            sequence=sequence,
            related_sale_id=related_sale_id,
            description=description,
            bonus_day=bonus_day,
            metadata_json=metadata,
        )
        self._db.add(entry)

        customer.current_balance = new_balance
        customer.ledger_sequence = sequence

        new_tier = previous_tier
        if points_delta > 0:
            customer.lifetime_points = int(customer.lifetime_points or 0) + points_delta
            ladder = await self.load_tier_ladder(tenant_id)
            new_tier = effective_tier(previous_tier, classify(customer.lifetime_points, ladder))
            if new_tier != previous_tier:
                customer.tier = new_tier
                customer.tier_upgraded_at = datetime.now(timezone.utc)

        await self._db.flush()

        self._observability.record_ledger_append(transaction_type.value, points_delta)
        if new_tier != previous_tier:
            self._observability.record_tier_upgrade(new_tier.value)
            logger.info(
                "Customer tier upgraded",
                customer_id=str(customer.id),
                tenant_id=str(tenant_id),
                previous_tier=previous_tier.value,
                new_tier=new_tier.value,
                lifetime_points=customer.lifetime_points,
            )

        logger.info(
            "Loyalty ledger entry appended",
            customer_id=str(customer.id),
            tenant_id=str(tenant_id),
            transaction_type=transaction_type.value,
            points=points_delta,
            balance_after=new_balance,
            sequence=sequence,
        )
        return LedgerAppendResult(
            transaction=entry,
            customer=customer,
            previous_tier=previous_tier,
            new_tier=new_tier,
            new_balance=new_balance,
        )

    async def adjust(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        points_delta: int,
        description: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerAppendResult:
        """Manual correction; ledger rows are never edited in place."""

        return await self.append_and_project(
            customer_id,
            tenant_id,
            PointsTransactionType.ADJUSTED,
            points_delta,
            description,
            metadata=metadata,
        )

    async def list_transactions(
        self,
        customer_id: UUID,
        tenant_id: UUID,
        *,
        limit: int = 50,
        before_sequence: int | None = None,
        types: Sequence[PointsTransactionType] | None = None,
    ) -> list[PointsTransaction]:
        """Newest-first history page."""

        exists = await self._db.execute(
            select(Customer.id).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        )
        if exists.scalar_one_or_none() is None:
            raise CustomerNotFoundError(customer_id)

        stmt = select(PointsTransaction).where(PointsTransaction.customer_id == customer_id)
        if before_sequence is not None:
            stmt = stmt.where(PointsTransaction.sequence < before_sequence)
        if types:
            stmt = stmt.where(PointsTransaction.transaction_type.in_(list(types)))
        stmt = stmt.order_by(PointsTransaction.sequence.desc()).limit(max(limit, 1))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())


def is_retryable_conflict(exc: BaseException) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, DBAPIError):
        return False

    original = exc.orig
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True

    message = str(original).lower()
    if isinstance(exc, IntegrityError):
        # Two writers computed the same next sequence number.
        return "sequence" in message
    return "database is locked" in message or "could not obtain lock" in message


async def open_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


async def run_ledger_transaction(
    session_factory: SessionFactory,
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    max_attempts: int | None = None,
    base_backoff_seconds: float | None = None,
    max_backoff_seconds: float | None = None,
    jitter_seconds: float | None = None,
    label: str = "ledger",
) -> T:
    """Run ``operation`` in a fresh committed transaction, retrying lost races.

    Business errors raised by ``operation`` roll the transaction back and
    propagate untouched.
    """

    policy = _RetryPolicy(
        max_attempts=max(max_attempts or settings.loyalty_ledger_max_attempts, 1),
        base_backoff_seconds=(
            settings.loyalty_ledger_base_backoff_seconds if base_backoff_seconds is None else base_backoff_seconds
        ),
        max_backoff_seconds=(
            settings.loyalty_ledger_max_backoff_seconds if max_backoff_seconds is None else max_backoff_seconds
        ),
        jitter_seconds=settings.loyalty_ledger_jitter_seconds if jitter_seconds is None else jitter_seconds,
    )
    observability = get_loyalty_store()
    last_error: str | None = None

    for attempt in range(1, policy.max_attempts + 1):
        session = await open_session(session_factory)
        try:
            async with session:
                async with session.begin():
                    return await operation(session)
        except (StaleDataError, DBAPIError) as exc:
            if not is_retryable_conflict(exc):
                raise
            last_error = str(exc)
            observability.record_conflict_retry(label)
            if attempt >= policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "Loyalty ledger write conflicted; retrying",
                operation=label,
                attempt=attempt + 1,
                delay_seconds=delay,
                error=last_error,
            )
            if delay:
                await asyncio.sleep(delay)

    observability.record_conflict_exhausted(label)
    logger.error("Loyalty ledger write abandoned after retries", operation=label, attempts=policy.max_attempts)
    raise ConcurrencyConflictError(policy.max_attempts, last_error)


__all__ = [
    "LedgerAppendResult",
    "LoyaltyLedger",
    "SessionFactory",
    "is_retryable_conflict",
    "open_session",
    "rule_from_config",
    "run_ledger_transaction",
]
