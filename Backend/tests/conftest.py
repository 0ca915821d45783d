"""
Pytest configuration and fixtures for async database testing.

Tests run against an in-memory SQLite database (aiosqlite) so they need no
running Postgres. Every test gets a fresh schema.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SEED_ON_STARTUP", "false")
os.environ.setdefault("SALON_TIMEZONE", "Asia/Kuala_Lumpur")

import uuid
from datetime import date, datetime, time, timedelta
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lumina.core.config import get_settings
from lumina.core.db import Base, get_session
from lumina.models import Appointment, AppointmentStatus, Customer, Service, Staff, StaffRank


TZ = ZoneInfo("Asia/Kuala_Lumpur")
# Monday 2 March 2026, 10:00 salon time
NOW = datetime(2026, 3, 2, 10, 0, tzinfo=TZ)
TODAY = NOW.date()
BOOKING_DAY = TODAY + timedelta(days=10)


@pytest_asyncio.fixture
async def async_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(async_engine) -> AsyncSession:
    maker = async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)
    async with maker() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(session):
    """Services and stylists matching the salon's menu."""
    services = {
        "blowdry": Service(name="Wash & Blowdry", duration_minutes=45, price_cents=4500),
        "cut": Service(name="Wash & Cut", duration_minutes=60, price_cents=7500),
        "colour": Service(name="Colour / Semi-colour", duration_minutes=120, price_cents=18000),
    }
    staff = {
        "sarah": Staff(name="Sarah Jenkins", email="sarah@lumina.com", rank=StaffRank.SENIOR_DIRECTOR, rating=5.0, specialties=[]),
        "michael": Staff(name="Michael Chen", email="michael@lumina.com", rank=StaffRank.DIRECTOR, rating=4.8, specialties=[]),
        "jessica": Staff(name="Jessica Alva", email="jessica@lumina.com", rank=StaffRank.SENIOR, rating=4.6, specialties=[]),
    }
    session.add_all(list(services.values()) + list(staff.values()))
    await session.commit()
    return SimpleNamespace(services=services, staff=staff)


@pytest_asyncio.fixture
async def customer(session) -> Customer:
    customer = Customer(user_id="user-amy", email="amy@example.com", name="Amy Tan", points=0, lifetime_points=0)
    session.add(customer)
    await session.commit()
    return customer


@pytest_asyncio.fixture
async def other_customer(session) -> Customer:
    customer = Customer(user_id="user-ben", email="ben@example.com", name="Ben Lim", points=0, lifetime_points=0)
    session.add(customer)
    await session.commit()
    return customer


@pytest.fixture
def make_appointment(session):
    """Insert an appointment row directly, bypassing booking rules."""

    async def _make(
        customer: Customer,
        staff: Staff,
        service: Service,
        day: date,
        start: time,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        ref_id: str | None = None,
        duration_minutes: int = 60,
    ) -> Appointment:
        end = (datetime.combine(day, start) + timedelta(minutes=duration_minutes)).time()
        appt = Appointment(
            ref_id=ref_id or f"A{uuid.uuid4().int % 10000:04d}",
            customer_id=customer.id,
            staff_id=staff.id,
            service_id=service.id,
            appointment_date=day,
            start_time=start,
            end_time=end,
            status=status,
            reschedule_count=0,
            price_paid_cents=service.price_cents,
        )
        session.add(appt)
        await session.commit()
        return appt

    return _make


def make_token(sub: str, email: str) -> str:
    settings = get_settings()
    return jwt.encode(
        {"sub": sub, "email": email, "aud": settings.auth_jwt_audience},
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
    )


def auth_headers(sub: str, email: str) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, email)}"}


@pytest_asyncio.fixture
async def client(session):
    """HTTP client bound to the test session and a fixed clock."""
    from lumina.main import app, get_now

    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_now] = lambda: NOW
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
