"""Shared test fixtures for the scheduling engine tests."""

from datetime import date, time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from maintenance_scheduler import models  # noqa: F401
from maintenance_scheduler.database import Base, get_db, install_sqlite_write_locking
from maintenance_scheduler.domain.scheduling.booking_service import BookingService
from maintenance_scheduler.domain.scheduling.repository import SchedulingRepository
from maintenance_scheduler.domain.scheduling.schemas import BookingCandidate, BookingRange

# 2024-01-01 is a Monday; with Sunday = 0 that is day_of_week 1
MONDAY = date(2024, 1, 1)
NEXT_MONDAY = date(2024, 1, 8)
MONDAY_DOW = 1


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    install_sqlite_write_locking(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def repo(db) -> SchedulingRepository:
    return SchedulingRepository(db)


@pytest.fixture
def booking(repo) -> BookingService:
    return BookingService(repo)


@pytest.fixture
def provider(repo):
    return repo.create_provider("Facilities Team A")


@pytest.fixture
def morning_slot(repo, provider):
    """Monday 08:00-12:00."""
    return repo.create_slot(provider.id, MONDAY_DOW, time(8, 0), time(12, 0))


@pytest.fixture
def book(booking, provider):
    """Commit a single-range booking for ``provider``."""

    def _book(start, end, on_date=MONDAY, slot_id=None, allocated=None, provider_id=None):
        return booking.commit_booking(
            BookingCandidate(
                service_provider_id=provider_id or provider.id,
                ranges=[BookingRange(date=on_date, start=start, end=end, time_slot_id=slot_id)],
                allocated_duration_minutes=allocated,
            )
        )

    return _book


@pytest.fixture
def client(db):
    from maintenance_scheduler.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
