"""
Shared pytest fixtures.

Each test gets its own SQLite database file, an httpx client wired to the
FastAPI app through ASGITransport, and factories for users and appointments.
"""
import os
from datetime import datetime, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, Mock

# Ensure test environment before the application reads its settings
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test.db")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medibook.core.database import (
    create_engine_for, create_session_factory, get_db, get_redis,
    get_session_factory, init_db,
)
from medibook.core.security import UserRole, create_user_token, get_password_hash
from medibook.main import app
from medibook.models.appointment import (
    Appointment, AppointmentSlotClaim, AppointmentStatus, AppointmentType,
)
from medibook.models.user import User
from medibook.services.notification_service import LoggingChannel, NotificationDispatcher
from medibook.services.slot_service import claim_blocks

TEST_PASSWORD = "TestPassword123"
_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'medibook.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine) -> async_sessionmaker:
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# REDIS FIXTURES
# ============================================================================


@pytest.fixture
def mock_redis() -> Mock:
    """In-memory counter standing in for the rate limiter's Redis."""
    counters = {}

    async def incr(key):
        counters[key] = counters.get(key, 0) + 1
        return counters[key]

    mock = Mock(spec=Redis)
    mock.incr = AsyncMock(side_effect=incr)
    mock.expire = AsyncMock(return_value=True)
    return mock


# ============================================================================
# API CLIENT
# ============================================================================


@pytest_asyncio.fixture
async def client(session_factory, mock_redis) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = lambda: mock_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================================================
# DATA FACTORIES
# ============================================================================


def auth_headers(user: User) -> dict:
    token = create_user_token(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {token.access_token}"}


@pytest.fixture
def user_factory(session_factory):
    counter = {"n": 0}

    async def create(role: UserRole = UserRole.PATIENT, **overrides) -> User:
        counter["n"] += 1
        fields = {
            "email": f"{role.value}{counter['n']}@example.com",
            "password_hash": _PASSWORD_HASH,
            "role": role,
            "first_name": role.value.title(),
            "last_name": f"User{counter['n']}",
            "is_active": True,
        }
        if role == UserRole.DOCTOR:
            fields["specialization"] = "General Practice"
        fields.update(overrides)

        async with session_factory() as session:
            user = User(**fields)
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return create


@pytest.fixture
def appointment_factory(session_factory):
    """Insert an appointment directly, holding its slot claims when active."""

    async def create(
        patient: User,
        doctor: User,
        start: datetime,
        duration: int = 30,
        status: AppointmentStatus = AppointmentStatus.PENDING,
    ) -> Appointment:
        async with session_factory() as session:
            appointment = Appointment(
                patient_id=patient.id,
                doctor_id=doctor.id,
                appointment_date=start,
                duration=duration,
                end_time=start + timedelta(minutes=duration),
                status=status,
                type=AppointmentType.IN_PERSON,
                reason="Check-up",
            )
            session.add(appointment)
            await session.flush()
            if status.is_active:
                for block in claim_blocks(start, duration, 5):
                    session.add(AppointmentSlotClaim(
                        appointment_id=appointment.id,
                        doctor_id=doctor.id,
                        slot_start=block,
                    ))
            await session.commit()
            return appointment

    return create


@pytest_asyncio.fixture
async def patient(user_factory) -> User:
    return await user_factory(UserRole.PATIENT)


@pytest_asyncio.fixture
async def doctor(user_factory) -> User:
    return await user_factory(UserRole.DOCTOR, first_name="Gregory", last_name="House")


@pytest_asyncio.fixture
async def admin(user_factory) -> User:
    return await user_factory(UserRole.ADMIN)


@pytest.fixture
def dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher([LoggingChannel()])
