import pytest
from datetime import time
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from clinic_engine.main import app
from clinic_engine.infrastructure.database import build_engine, get_db, init_db, Base
from clinic_engine.domain.scheduling.availability import WeeklyTemplate
from clinic_engine.domain.scheduling.service import (
    AvailabilityService, LeaveService, QueueCoordinator
)


MONDAY = 1

CLINIC_ID = "clinic-1"
PRACTITIONER_ID = "dr-asha"
OTHER_PRACTITIONER_ID = "dr-ben"


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File backed SQLite so each session gets its own connection."""
    test_engine = build_engine(f"sqlite:///{tmp_path / 'clinic_engine_test.db'}")
    init_db(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def availability_service(db_session: Session) -> AvailabilityService:
    return AvailabilityService(db_session)


@pytest.fixture(scope="function")
def leave_service(db_session: Session) -> LeaveService:
    return LeaveService(db_session)


@pytest.fixture(scope="function")
def coordinator(db_session: Session) -> QueueCoordinator:
    return QueueCoordinator(db_session, outside_hours_policy="block", backoff_seconds=0)


@pytest.fixture(scope="function")
def monday_template() -> WeeklyTemplate:
    """Monday 09:00-17:00 in 15 minute slots."""
    return WeeklyTemplate(
        enabled=True,
        start_time=time(9, 0),
        end_time=time(17, 0),
        slot_duration_minutes=15,
        max_patients_per_slot=1
    )


@pytest.fixture(scope="function")
def working_monday(availability_service: AvailabilityService, monday_template: WeeklyTemplate):
    """Both practitioners work Mondays."""
    availability_service.set_week(PRACTITIONER_ID, {MONDAY: monday_template})
    availability_service.set_week(OTHER_PRACTITIONER_ID, {MONDAY: monday_template})
    return monday_template


@pytest.fixture(scope="function")
def client(session_factory) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def clinic_headers() -> dict:
    return {"X-Clinic-ID": CLINIC_ID}


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "availability: mark test as weekly availability related"
    )
    config.addinivalue_line(
        "markers", "leaves: mark test as leave and conflict preview related"
    )
    config.addinivalue_line(
        "markers", "queue: mark test as walk-in queue and token related"
    )
