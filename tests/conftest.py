"""Shared test fixtures."""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event as sa_event
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

import hydrolog.models  # noqa: F401
from hydrolog.core.database import get_engine, get_session, set_sqlite_pragma
from hydrolog.logbook.actors import Actor, Role
from hydrolog.logbook.realtime import ChangeBroker
from hydrolog.logbook.store import SqlSlotStore
from hydrolog.main import app
from hydrolog.routes.deps import get_clock

PLANT_TZ = ZoneInfo("Asia/Kolkata")
DAY = date(2025, 1, 14)


class FixedClock:
    """A settable clock in the plant time zone."""

    def __init__(self, hour: int = 10, minute: int = 15, day: date = DAY):
        self.set(hour, minute, day)

    def set(self, hour: int, minute: int = 0, day: date | None = None):
        day = day or self.now.date()
        self.now = datetime.combine(day, time(hour, minute), tzinfo=PLANT_TZ)
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    sa_event.listen(engine, "connect", set_sqlite_pragma)
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create a new database session for each test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture() -> FixedClock:
    """Plant clock fixed at 10:15 on 14 January 2025."""
    return FixedClock()


@pytest.fixture(name="broker")
def broker_fixture() -> ChangeBroker:
    return ChangeBroker()


@pytest.fixture(name="store")
def store_fixture(engine, broker, clock) -> SqlSlotStore:
    return SqlSlotStore(engine, broker, clock)


@pytest.fixture(name="operator")
def operator_fixture() -> Actor:
    return Actor("op-ravi", Role.OPERATOR)


@pytest.fixture(name="second_operator")
def second_operator_fixture() -> Actor:
    return Actor("op-sita", Role.OPERATOR)


@pytest.fixture(name="admin")
def admin_fixture() -> Actor:
    return Actor("admin-1", Role.ADMIN)


@pytest.fixture(name="viewer")
def viewer_fixture() -> Actor:
    return Actor("guest", Role.VIEWER)


@pytest.fixture(name="client")
def client_fixture(session: Session, engine, clock: FixedClock):
    """Create a test client with the test database and a fixed clock."""

    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_clock] = lambda: clock
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="operator_headers")
def operator_headers_fixture() -> dict:
    return {"X-Operator-Id": "op-ravi", "X-Operator-Role": "operator"}


@pytest.fixture(name="admin_headers")
def admin_headers_fixture() -> dict:
    return {"X-Operator-Id": "admin-1", "X-Operator-Role": "admin"}
