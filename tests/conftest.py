"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Generator
from typing import Any
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hospital_service.api.deps import get_clock, get_publisher
from hospital_service.db.base import Base
from hospital_service.db.session import get_db
from hospital_service.main import app
from hospital_service.models.hospital_user import HospitalUser, UserRole, UserStatus
from hospital_service.models.tenant import Tenant, TenantTier
from hospital_service.services.consent import ConsentService
from hospital_service.services.tenant import TenantService
from tests.helpers import (
    HOSPITAL_ID,
    WEEKDAY_MORNING,
    FrozenClock,
    RecordingEventPublisher,
)

# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed SQLite engine for tests that need several connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'hospital.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def file_session_maker(file_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the file-backed engine."""
    return async_sessionmaker(
        file_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(WEEKDAY_MORNING)


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def consent_service(
    async_session: AsyncSession,
    clock: FrozenClock,
    publisher: RecordingEventPublisher,
) -> ConsentService:
    return ConsentService(async_session, publisher=publisher, clock=clock)


@pytest.fixture
def client(
    async_session: AsyncSession,
    clock: FrozenClock,
    publisher: RecordingEventPublisher,
) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_publisher] = lambda: publisher

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
async def tenant(async_session: AsyncSession, clock: FrozenClock) -> Tenant:
    """Create a basic-tier tenant."""
    service = TenantService(async_session, clock=clock)
    return await service.create_tenant(
        name="Sunrise Health",
        domain="sunrise.example",
        owner_email="owner@sunrise.example",
        tier=TenantTier.BASIC,
    )


@pytest.fixture
def make_user(async_session: AsyncSession, tenant: Tenant):
    """Factory for hospital staff users."""

    async def _make_user(
        role: UserRole = UserRole.DOCTOR,
        hospital_id: str = HOSPITAL_ID,
        status: UserStatus = UserStatus.ACTIVE,
        **fields: Any,
    ) -> HospitalUser:
        values = {
            "email": f"{role.value}.{uuid4().hex[:8]}@sunrise.example",
            "first_name": "Test",
            "last_name": role.value.title(),
            "permissions": [],
            "allowed_document_types": [],
            "assigned_patients": [],
            "assigned_departments": [],
            "restricted_hours": [],
        }
        values.update(fields)

        user = HospitalUser(
            hospital_id=hospital_id,
            tenant_id=tenant.id,
            role=role.value,
            status=status.value,
            **values,
        )
        async_session.add(user)
        await async_session.commit()
        await async_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def doctor(make_user) -> HospitalUser:
    return await make_user(UserRole.DOCTOR)


@pytest.fixture
async def nurse(make_user) -> HospitalUser:
    return await make_user(UserRole.NURSE)


@pytest.fixture
async def admin(make_user) -> HospitalUser:
    return await make_user(UserRole.ADMIN)


@pytest.fixture
async def billing_clerk(make_user) -> HospitalUser:
    return await make_user(UserRole.BILLING_CLERK)
