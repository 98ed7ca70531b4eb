"""
Global pytest configuration and fixtures for tenantgate platform tests.

Every test runs against a fresh in-memory SQLite database (aiosqlite with a
StaticPool so all sessions share one connection). The module-level session
maker in ``tenantgate.platform.db`` is pointed at that engine, so code that
opens its own sessions (sweeps, FastAPI dependencies) sees the same data.
"""

import os
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta

# Settings are read at import time; configure before importing the package.
os.environ.pop("DATABASE_URL", None)
os.environ["ENVIRONMENT"] = "test"
os.environ["TESTING"] = "true"
os.environ["BILLING__WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["JWT__SECRET_KEY"] = "test-jwt-secret"
os.environ["OBSERVABILITY__ENABLE_METRICS"] = "false"
os.environ["OBSERVABILITY__LOG_FORMAT"] = "text"

import pytest
import pytest_asyncio
from opentelemetry.metrics import NoOpMeter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from tenantgate.platform.auth.models import Role, User
from tenantgate.platform.billing.enums import SubscriptionStatus
from tenantgate.platform.billing.metrics import BillingMetrics, set_billing_metrics
from tenantgate.platform.billing.models import Plan, Subscription
from tenantgate.platform.db import Base, configure_session_maker
from tenantgate.platform.seed import SeedSummary, seed_plans, seed_rbac
from tenantgate.platform.tenant.models import Tenant, TenantStatus
from tests.helpers import StaticVerifier

# ==========================================
# Database
# ==========================================


@pytest_asyncio.fixture
async def async_db_engine() -> AsyncIterator[AsyncEngine]:
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    configure_session_maker(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def async_db_session(async_db_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async database session bound to the test engine."""
    session_maker = configure_session_maker(async_db_engine)
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture(autouse=True)
def billing_metrics() -> BillingMetrics:
    """No-op meter so counters never touch a real provider."""
    metrics = BillingMetrics(meter=NoOpMeter("tests"))
    set_billing_metrics(metrics)
    return metrics


# ==========================================
# Reference data
# ==========================================


@pytest_asyncio.fixture
async def plans(async_db_session: AsyncSession) -> dict[str, Plan]:
    """The four standard plans, keyed by name."""
    await seed_plans(async_db_session)
    await async_db_session.commit()
    result = await async_db_session.execute(select(Plan))
    return {plan.name: plan for plan in result.scalars().all()}


@pytest_asyncio.fixture
async def roles(async_db_session: AsyncSession) -> dict[str, Role]:
    """System roles with their permissions, keyed by name."""
    await seed_rbac(async_db_session, SeedSummary())
    await async_db_session.commit()
    result = await async_db_session.execute(select(Role))
    return {role.name: role for role in result.scalars().all()}


# ==========================================
# Factories
# ==========================================


@pytest.fixture
def make_tenant(async_db_session: AsyncSession) -> Callable[..., Awaitable[Tenant]]:
    async def _make(
        status: TenantStatus = TenantStatus.TRIAL,
        is_active: bool = True,
        trial_ends_at: datetime | None = None,
        name: str = "Helping Hands",
    ) -> Tenant:
        tenant = Tenant(
            name=name,
            status=status,
            is_active=is_active,
            trial_ends_at=trial_ends_at or datetime.now(UTC) + timedelta(days=14),
        )
        async_db_session.add(tenant)
        await async_db_session.commit()
        return tenant

    return _make


@pytest.fixture
def make_subscription(async_db_session: AsyncSession) -> Callable[..., Awaitable[Subscription]]:
    async def _make(
        tenant: Tenant,
        plan: Plan,
        status: SubscriptionStatus = SubscriptionStatus.TRIAL,
        external_ref: str | None = "sub_test_001",
    ) -> Subscription:
        now = datetime.now(UTC)
        subscription = Subscription(
            tenant_id=tenant.id,
            plan_id=plan.id,
            status=status,
            external_subscription_ref=external_ref,
            current_period_start=now,
            current_period_end=now + timedelta(days=14),
        )
        async_db_session.add(subscription)
        await async_db_session.commit()
        return subscription

    return _make


@pytest.fixture
def make_user(async_db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    counter = {"n": 0}

    async def _make(
        tenant: Tenant | None,
        role: Role | None = None,
        is_active: bool = True,
        is_platform_admin: bool = False,
    ) -> User:
        counter["n"] += 1
        user = User(
            tenant_id=tenant.id if tenant else None,
            role_id=role.id if role else None,
            email=f"user{counter['n']}@example.org",
            first_name="Test",
            last_name=f"User{counter['n']}",
            is_active=is_active,
            is_platform_admin=is_platform_admin,
        )
        async_db_session.add(user)
        await async_db_session.commit()
        return user

    return _make


@pytest.fixture
def static_verifier() -> StaticVerifier:
    return StaticVerifier()
