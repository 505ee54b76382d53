"""
Shared fixtures: an in-memory SQLite database, a seeded catalog and an API client.
"""

import os

# Settings are read once at import time
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("ENABLE_SESSION_LOCKS", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from experience_booking_platform.database import get_db
from experience_booking_platform.main import app
from experience_booking_platform.models import (
    AddOn,
    Base,
    Business,
    Event,
    EventAddOn,
    Experience,
    Guest,
    Session,
)
from experience_booking_platform.utils.auth import create_access_token


@dataclass
class Seed:
    """Ids of the records every test starts with."""

    business_id: UUID
    other_business_id: UUID
    experience_id: UUID
    event_id: UUID
    session_id: UUID
    guest_id: UUID
    other_guest_id: UUID
    wine_id: UUID
    photo_id: UUID
    unlinked_add_on_id: UUID


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def seed_catalog(session_factory) -> Seed:
    """
    One business with an experience (capacity 10, $19.00), one event, one
    session without overrides, a guest and three add-ons ($3.95 each), two of
    them offered with the event. A second business owns another guest.
    """
    start = datetime(2030, 6, 1, 10, 0, tzinfo=timezone.utc)

    async with session_factory() as s:
        business = Business(name="Harbor Tours", slug="harbor-tours")
        other = Business(name="Mountain Trips", slug="mountain-trips")
        s.add_all([business, other])
        await s.flush()

        experience = Experience(
            business_id=business.id,
            name="Sunset Cruise",
            slug="sunset-cruise",
            base_price=Decimal("19.00"),
            duration_minutes=90,
            max_capacity=10,
        )
        s.add(experience)
        await s.flush()

        event = Event(
            experience_id=experience.id,
            name="Summer Season",
            slug="summer-season",
            start_date=start,
            end_date=start + timedelta(days=90),
        )
        s.add(event)
        await s.flush()

        session = Session(
            event_id=event.id,
            start_time=start,
            end_time=start + timedelta(minutes=90),
            committed_quantity=0,
        )
        guest = Guest(
            business_id=business.id,
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
        )
        other_guest = Guest(
            business_id=other.id,
            first_name="Alan",
            last_name="Turing",
            email="alan@example.com",
        )
        wine = AddOn(business_id=business.id, name="Wine", price=Decimal("3.95"), sort_order=1)
        photo = AddOn(business_id=business.id, name="Photo", price=Decimal("3.95"), sort_order=2)
        unlinked = AddOn(business_id=business.id, name="Blanket", price=Decimal("3.95"))
        s.add_all([session, guest, other_guest, wine, photo, unlinked])
        await s.flush()

        s.add_all([
            EventAddOn(event_id=event.id, add_on_id=wine.id),
            EventAddOn(event_id=event.id, add_on_id=photo.id),
        ])
        await s.commit()

        return Seed(
            business_id=business.id,
            other_business_id=other.id,
            experience_id=experience.id,
            event_id=event.id,
            session_id=session.id,
            guest_id=guest.id,
            other_guest_id=other_guest.id,
            wine_id=wine.id,
            photo_id=photo.id,
            unlinked_add_on_id=unlinked.id,
        )


@pytest.fixture
async def seed(session_factory) -> Seed:
    return await seed_catalog(session_factory)


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    Session factory over a SQLite file, so every session gets its own
    connection and transactions really interleave.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def file_seed(file_session_factory) -> Seed:
    return await seed_catalog(file_session_factory)


def _auth_headers(business_id: UUID) -> dict:
    token = create_access_token({"sub": "staff@example.com", "business_id": str(business_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Build bearer headers for a business."""
    return _auth_headers


@pytest.fixture
async def client(session_factory):
    """HTTP client bound to the app with the test database behind get_db."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
