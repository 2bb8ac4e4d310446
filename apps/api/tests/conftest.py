import sys
from datetime import date
from pathlib import Path
from uuid import UUID


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import tillpoint_api.models  # noqa: E402,F401
from tillpoint_api.app import create_app  # noqa: E402
from tillpoint_api.core.settings import settings  # noqa: E402
from tillpoint_api.db.base import Base  # noqa: E402
from tillpoint_api.db.session import get_session, get_session_factory  # noqa: E402
from tillpoint_api.models.customer import Customer, LoyaltyTierLevel  # noqa: E402
from tillpoint_api.models.loyalty import PointsTransactionType  # noqa: E402
from tillpoint_api.models.tenant import Tenant  # noqa: E402
from tillpoint_api.observability.loyalty import get_loyalty_store  # noqa: E402
from tillpoint_api.observability.scheduler import get_loyalty_scheduler_store  # noqa: E402
from tillpoint_api.services.loyalty import LoyaltyLedger, run_ledger_transaction  # noqa: E402


class LoyaltySeeder:
    """Creates tenants and customers and credits opening balances through the ledger."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def tenant(self, slug: str = "corner-shop", *, timezone: str = "UTC", points_per_unit=None) -> Tenant:
        async with self._session_factory() as session:
            tenant = Tenant(slug=slug, name=slug.replace("-", " ").title(), timezone=timezone, points_per_unit=points_per_unit)
            session.add(tenant)
            await session.commit()
            return tenant

    async def customer(
        self,
        tenant: Tenant,
        name: str = "Ada Shopper",
        *,
        tier: LoyaltyTierLevel = LoyaltyTierLevel.BRONZE,
        date_of_birth: date | None = None,
        is_active: bool = True,
    ) -> Customer:
        async with self._session_factory() as session:
            customer = Customer(
                tenant_id=tenant.id,
                name=name,
                tier=tier,
                date_of_birth=date_of_birth,
                is_active=is_active,
            )
            session.add(customer)
            await session.commit()
            return customer

    async def credit(self, customer: Customer, points: int, description: str = "Opening balance") -> None:
        async def _credit(session: AsyncSession):
            return await LoyaltyLedger(session).append_and_project(
                customer.id,
                customer.tenant_id,
                PointsTransactionType.ADJUSTED,
                points,
                description,
            )

        await run_ledger_transaction(self._session_factory, _credit)

    async def reload(self, customer_id: UUID) -> Customer:
        async with self._session_factory() as session:
            return await session.get(Customer, customer_id)


@pytest.fixture(autouse=True)
def _reset_observability():
    get_loyalty_store().reset()
    get_loyalty_scheduler_store().reset()
    yield


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions get their own connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def seeder(session_factory) -> LoyaltySeeder:
    return LoyaltySeeder(session_factory)


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def file_seeder(file_session_factory) -> LoyaltySeeder:
    return LoyaltySeeder(file_session_factory)


@pytest.fixture
def patient_retries(monkeypatch):
    """Lets contended writers on the file database retry until they land."""

    monkeypatch.setattr(settings, "loyalty_ledger_max_attempts", 25)
    monkeypatch.setattr(settings, "loyalty_ledger_base_backoff_seconds", 0.01)
    monkeypatch.setattr(settings, "loyalty_ledger_max_backoff_seconds", 0.1)
    monkeypatch.setattr(settings, "loyalty_ledger_jitter_seconds", 0.02)
