"""
Shared fixtures: in-memory SQLite, a fixed clock on Wednesday 2025-03-12,
synchronous notification dispatch and a recording guardian transport.
"""
from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eduguard.api import deps
from eduguard.api.main import create_app
from eduguard.core.cache import TTLCache
from eduguard.core.clock import FixedClock
from eduguard.core.records import RecordService
from eduguard.core.risk_detection import RiskDetectionService
from eduguard.core.settings_provider import RiskSettingsProvider
from eduguard.database import models  # noqa: F401
from eduguard.database.base import Base
from eduguard.database.repositories import AttendanceRepository, SchoolRepository, StudentRepository
from eduguard.notifications.dispatcher import InlineDispatcher
from eduguard.notifications.guardian import MessageTransport

# Wednesday; the school week is Mon 2025-03-10 .. Fri 2025-03-14, TERM_1 of 2025-2026
NOW = datetime(2025, 3, 12, 10, 0, tzinfo=timezone.utc)
MONDAY = date(2025, 3, 10)


class RecordingTransport(MessageTransport):
    """Keeps sent messages; fails for recipients listed in `failing`"""

    name = "recording"

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    def send(self, message):
        if message.recipient in self.failing:
            raise ConnectionError(f"gateway refused {message.recipient}")
        self.sent.append(message)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def dispatcher():
    return InlineDispatcher()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def settings_cache():
    return TTLCache(ttl_seconds=300)


@pytest.fixture
def service(db, clock, dispatcher, transport, settings_cache):
    return RiskDetectionService(db, clock, dispatcher, transport, settings_cache=settings_cache)


@pytest.fixture
def records(service):
    return RecordService(service)


@pytest.fixture
def school(db):
    return SchoolRepository(db).create("GS Kimironko", district="Gasabo", sector="Kimironko")


@pytest.fixture
def make_student(db, school):
    """Factory: a student of `school` with one guardian reachable by email and SMS"""
    counter = {"n": 0}

    def _make(**profile):
        counter["n"] += 1
        profile.setdefault("class_name", "P5")
        profile.setdefault("guardian_contacts", [{
            "name": "Jean Mugisha",
            "relation": "father",
            "phone": "+250788000001",
            "email": "jean@example.com",
            "is_primary": True,
        }])
        school_id = profile.pop("school_id", school.id)
        return StudentRepository(db).create(school_id, "Aline", f"Uwase{counter['n']}", **profile)

    return _make


@pytest.fixture
def student(make_student):
    return make_student()


@pytest.fixture
def mark_absent(db, clock):
    """mark_absent(student, days): ABSENT on the first `days` school days of the current week"""
    def _mark(student, days, start=MONDAY):
        repository = AttendanceRepository(db)
        for offset in range(days):
            repository.upsert(
                student_id=student.id,
                school_id=student.school_id,
                on=start + timedelta(days=offset),
                status="ABSENT",
                actor_id="teacher-1",
                now=clock.now(),
            )
    return _mark


@pytest.fixture
def client(session_factory, clock, dispatcher, transport, settings_cache):
    """TestClient against the app with the test database and plumbing"""
    app = create_app()

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_detection_service(db=Depends(override_db)):
        return RiskDetectionService(db, clock, dispatcher, transport, settings_cache=settings_cache)

    def override_settings_provider(db=Depends(override_db)):
        return RiskSettingsProvider(db, cache=settings_cache)

    app.dependency_overrides[deps.get_db] = override_db
    app.dependency_overrides[deps.get_session_maker] = lambda: session_factory
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_message_transport] = lambda: transport
    app.dependency_overrides[deps.get_detection_service] = override_detection_service
    app.dependency_overrides[deps.get_settings_provider] = override_settings_provider
    return TestClient(app)
