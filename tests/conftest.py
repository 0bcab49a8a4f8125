"""
Test configuration and fixtures.
Uses an in-memory SQLite database (aiosqlite) shared across one test.
"""
import os
import uuid as uuid_module

# Set test environment before any imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["ENVIRONMENT"] = "test"
os.environ["FIREBASE_PROJECT_ID"] = ""

from datetime import datetime
from typing import AsyncGenerator, Callable, Optional

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import metering.models  # noqa: F401
from metering.models.base import Base
from metering.models.organization import MemberRole, Organization, OrganizationMember
from metering.models.subject import Subject
from metering.models.usage_quota import QuotaType, ResetPeriod, UsageQuota
from metering.models.user import User
from metering.utils.clock import FixedClock


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Mid-month Thursday, so day/week/month windows all have room on both sides
NOW = datetime(2026, 10, 15, 12, 0, 0)


@pytest.fixture(scope="function")
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


async def _create_user(db: AsyncSession, email: str, is_admin: bool = False) -> User:
    user = User(
        id=str(uuid_module.uuid4()),
        firebase_uid=f"firebase-test-uid-{uuid_module.uuid4().hex[:8]}",
        email=email,
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture(scope="function")
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user (owner of the test organization)."""
    return await _create_user(db_session, "owner@example.com")


@pytest.fixture(scope="function")
async def admin_user(db_session: AsyncSession) -> User:
    """Platform admin: may set personal quota limits."""
    return await _create_user(db_session, "admin@example.com", is_admin=True)


@pytest.fixture(scope="function")
async def member_user(db_session: AsyncSession) -> User:
    """Plain member of the test organization."""
    return await _create_user(db_session, "member@example.com")


@pytest.fixture(scope="function")
async def outsider_user(db_session: AsyncSession) -> User:
    """User with no organization membership."""
    return await _create_user(db_session, "outsider@example.com")


@pytest.fixture(scope="function")
async def organization(db_session: AsyncSession, test_user: User, member_user: User) -> Organization:
    """Organization owned by test_user with member_user as a plain member."""
    org = Organization(
        id=str(uuid_module.uuid4()),
        name="Acme",
        slug=f"acme-{uuid_module.uuid4().hex[:8]}",
        owner_id=test_user.id,
    )
    db_session.add(org)
    await db_session.flush()
    db_session.add_all([
        OrganizationMember(organization_id=org.id, user_id=test_user.id, role=MemberRole.OWNER),
        OrganizationMember(organization_id=org.id, user_id=member_user.id, role=MemberRole.MEMBER),
    ])
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest.fixture
def make_quota(db_session: AsyncSession) -> Callable:
    """Factory inserting a quota row directly."""

    async def _make_quota(
        subject: Subject,
        quota_type: QuotaType,
        limit_value: int,
        current_usage: int = 0,
        reset_period: ResetPeriod = ResetPeriod.MONTHLY,
        last_reset: Optional[datetime] = None,
    ) -> UsageQuota:
        quota = UsageQuota(
            **subject.columns(),
            quota_type=quota_type,
            limit_value=limit_value,
            current_usage=current_usage,
            reset_period=reset_period,
            last_reset=last_reset or NOW,
            created_at=NOW,
            updated_at=NOW,
        )
        db_session.add(quota)
        await db_session.commit()
        return quota

    return _make_quota


def get_test_app(db_session: AsyncSession, clock: FixedClock, user: Optional[User] = None) -> FastAPI:
    """
    Create a test FastAPI app with overridden dependencies.
    Without a user, authentication runs for real (Firebase verification must be patched).
    """
    from metering.auth.dependencies import get_current_user
    from metering.database import get_db
    from metering.main import create_app
    from metering.utils.clock import get_clock

    app = create_app()

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    if user is not None:
        async def override_get_current_user():
            return user

        app.dependency_overrides[get_current_user] = override_get_current_user

    return app


async def _client_for(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession, clock: FixedClock, test_user: User) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client authenticated as test_user."""
    async for ac in _client_for(get_test_app(db_session, clock, test_user)):
        yield ac


@pytest.fixture(scope="function")
async def admin_client(db_session: AsyncSession, clock: FixedClock, admin_user: User) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for(get_test_app(db_session, clock, admin_user)):
        yield ac


@pytest.fixture(scope="function")
async def member_client(db_session: AsyncSession, clock: FixedClock, member_user: User) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for(get_test_app(db_session, clock, member_user)):
        yield ac


@pytest.fixture(scope="function")
async def outsider_client(db_session: AsyncSession, clock: FixedClock, outsider_user: User) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for(get_test_app(db_session, clock, outsider_user)):
        yield ac


@pytest.fixture(scope="function")
async def anonymous_client(db_session: AsyncSession, clock: FixedClock) -> AsyncGenerator[AsyncClient, None]:
    """Client whose requests go through real token verification."""
    async for ac in _client_for(get_test_app(db_session, clock)):
        yield ac
