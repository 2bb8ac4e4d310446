import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tillpoint_api.models.customer import Customer, LoyaltyTierLevel
from tillpoint_api.models.loyalty import PointsTransaction, PointsTransactionType
from tillpoint_api.observability.loyalty import get_loyalty_store
from tillpoint_api.services.loyalty import (
    ConcurrencyConflictError,
    InsufficientPointsError,
    InvalidTransactionTypeError,
    LoyaltyLedger,
    open_session,
    run_ledger_transaction,
)


async def _append(session_factory, customer, transaction_type, points, description="entry"):
    async def _operation(session):
        return await LoyaltyLedger(session).append_and_project(
            customer.id, customer.tenant_id, transaction_type, points, description
        )

    return await run_ledger_transaction(session_factory, _operation)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("transaction_type", "points"),
    [
        (PointsTransactionType.EARNED, 0),
        (PointsTransactionType.EARNED, -5),
        (PointsTransactionType.BIRTHDAY_BONUS, -1),
        (PointsTransactionType.REDEEMED, 10),
        (PointsTransactionType.ADJUSTED, 0),
        (PointsTransactionType.ADJUSTED, True),
    ],
)
async def test_append_rejects_sign_mismatch(session_factory, seeder, transaction_type, points) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant)

    with pytest.raises(InvalidTransactionTypeError):
        await _append(session_factory, customer, transaction_type, points)

    async with session_factory() as session:
        assert (await session.execute(select(PointsTransaction))).first() is None


@pytest.mark.asyncio
async def test_entries_chain_sequence_and_running_balance(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant)

    await _append(session_factory, customer, PointsTransactionType.EARNED, 120)
    await _append(session_factory, customer, PointsTransactionType.REDEEMED, -20)
    await _append(session_factory, customer, PointsTransactionType.ADJUSTED, -30)
    await _append(session_factory, customer, PointsTransactionType.BIRTHDAY_BONUS, 50)

    async with session_factory() as session:
        entries = (
            await session.execute(select(PointsTransaction).order_by(PointsTransaction.sequence))
        ).scalars().all()

    assert [entry.sequence for entry in entries] == [1, 2, 3, 4]
    assert [entry.balance_after for entry in entries] == [120, 100, 70, 120]

    refreshed = await seeder.reload(customer.id)
    assert refreshed.current_balance == sum(entry.points for entry in entries) == 120
    assert refreshed.ledger_sequence == 4
    # Only credits count towards lifetime points.
    assert refreshed.lifetime_points == 170


@pytest.mark.asyncio
async def test_debit_beyond_balance_is_rejected_without_writes(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant)
    await seeder.credit(customer, 40)

    with pytest.raises(InsufficientPointsError) as excinfo:
        await _append(session_factory, customer, PointsTransactionType.ADJUSTED, -41)

    assert excinfo.value.available == 40
    assert excinfo.value.requested == 41
    assert excinfo.value.shortfall == 1
    refreshed = await seeder.reload(customer.id)
    assert refreshed.current_balance == 40
    assert refreshed.ledger_sequence == 1
    assert get_loyalty_store().snapshot().rejections == {"insufficient_points": 1}


@pytest.mark.asyncio
async def test_credit_upgrades_tier_and_debit_never_downgrades(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant)

    result = await _append(session_factory, customer, PointsTransactionType.EARNED, 1600)
    assert result.tier_changed is True
    assert result.previous_tier == LoyaltyTierLevel.BRONZE
    assert result.new_tier == LoyaltyTierLevel.GOLD

    result = await _append(session_factory, customer, PointsTransactionType.REDEEMED, -1500)
    assert result.tier_changed is False

    refreshed = await seeder.reload(customer.id)
    assert refreshed.tier == LoyaltyTierLevel.GOLD
    assert refreshed.current_balance == 100
    assert refreshed.lifetime_points == 1600

    snapshot = get_loyalty_store().snapshot().as_dict()
    assert snapshot["tier_upgrades"] == {"gold": 1}
    assert snapshot["ledger"]["entries"] == {"earned": 1, "redeemed": 1}


@pytest.mark.asyncio
async def test_adjust_writes_adjusted_entry(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant)
    await seeder.credit(customer, 75)

    async def _adjust(session):
        return await LoyaltyLedger(session).adjust(
            customer.id, tenant.id, -25, "Goodwill reversal", metadata={"ticket": "T-1"}
        )

    result = await run_ledger_transaction(session_factory, _adjust)

    assert result.new_balance == 50
    assert result.transaction.transaction_type == PointsTransactionType.ADJUSTED
    assert result.transaction.metadata_json == {"ticket": "T-1"}


@pytest.mark.asyncio
async def test_list_transactions_pages_newest_first(session_factory, seeder) -> None:
    tenant = await seeder.tenant()
    customer = await seeder.customer(tenant)
    for points in (10, 20, 30, 40):
        await seeder.credit(customer, points)
    await _append(session_factory, customer, PointsTransactionType.REDEEMED, -5)

    async with session_factory() as session:
        ledger = LoyaltyLedger(session)
        first_page = await ledger.list_transactions(customer.id, tenant.id, limit=2)
        second_page = await ledger.list_transactions(
            customer.id, tenant.id, limit=2, before_sequence=first_page[-1].sequence
        )
        redeemed = await ledger.list_transactions(
            customer.id, tenant.id, types=[PointsTransactionType.REDEEMED]
        )

    assert [entry.sequence for entry in first_page] == [5, 4]
    assert [entry.sequence for entry in second_page] == [3, 2]
    assert [entry.points for entry in redeemed] == [-5]


@pytest.mark.asyncio
async def test_stale_customer_version_is_rejected(file_session_factory, file_seeder) -> None:
    tenant = await file_seeder.tenant()
    customer = await file_seeder.customer(tenant)

    async with file_session_factory() as session:
        stale = await session.get(Customer, customer.id)
        assert stale.ledger_sequence == 0

        await file_seeder.credit(customer, 10)

        stale.current_balance = 999
        stale.ledger_sequence = 1
        with pytest.raises(StaleDataError):
            await session.flush()
        await session.rollback()

    refreshed = await file_seeder.reload(customer.id)
    assert refreshed.current_balance == 10


@pytest.mark.asyncio
async def test_run_ledger_transaction_retries_stale_writes(session_factory) -> None:
    calls = 0

    async def _operation(session):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise StaleDataError("customer row changed")
        return "committed"

    result = await run_ledger_transaction(
        session_factory, _operation, max_attempts=3, base_backoff_seconds=0, jitter_seconds=0
    )

    assert result == "committed"
    assert calls == 2
    conflicts = get_loyalty_store().snapshot().conflicts
    assert conflicts["retries"] == {"ledger": 1}
    assert conflicts["exhausted"] == {}


@pytest.mark.asyncio
async def test_run_ledger_transaction_gives_up_after_max_attempts(session_factory) -> None:
    calls = 0

    async def _operation(session):
        nonlocal calls
        calls += 1
        raise StaleDataError("customer row changed")

    with pytest.raises(ConcurrencyConflictError) as excinfo:
        await run_ledger_transaction(
            session_factory,
            _operation,
            max_attempts=2,
            base_backoff_seconds=0,
            jitter_seconds=0,
            label="award",
        )

    assert excinfo.value.attempts == 2
    assert calls == 2
    conflicts = get_loyalty_store().snapshot().conflicts
    assert conflicts["retries"] == {"award": 2}
    assert conflicts["exhausted"] == {"award": 1}


@pytest.mark.asyncio
async def test_run_ledger_transaction_does_not_retry_business_errors(session_factory) -> None:
    calls = 0

    async def _operation(session):
        nonlocal calls
        calls += 1
        raise InsufficientPointsError(available=0, requested=5)

    with pytest.raises(InsufficientPointsError):
        await run_ledger_transaction(session_factory, _operation, max_attempts=5)

    assert calls == 1


@pytest.mark.asyncio
async def test_open_session_accepts_plain_and_awaitable_factories(session_factory) -> None:
    async def awaitable_factory():
        return session_factory()

    for factory in (session_factory, awaitable_factory):
        session = await open_session(factory)
        assert isinstance(session, AsyncSession)
        await session.close()
