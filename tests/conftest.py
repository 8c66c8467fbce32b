"""Pytest fixtures and configuration for membermail tests."""

import itertools

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient
from unittest.mock import patch

from membermail.clock import FrozenClock
from membermail.config import Settings
from membermail.database.database import Base
from membermail.database import models  # noqa: F401
from membermail.engine.hooks import EventBus
from membermail.models.user import User
from membermail.services import build_services


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

# Fixed "now" for every test (2027-01-15 08:00:00 UTC)
NOW = 1800000000


class RecordingScheduler:
    """In-memory stand-in for the APScheduler adapter."""

    def __init__(self):
        self.once = {}
        self.recurring = {}
        self.calls = []

    def schedule_once(self, delay_seconds, hook_id, args=None):
        self.once[hook_id] = delay_seconds
        self.calls.append((hook_id, delay_seconds))

    def schedule_recurring(self, interval_seconds, hook_id):
        self.recurring[hook_id] = interval_seconds

    def is_scheduled(self, hook_id):
        return hook_id in self.once or hook_id in self.recurring

    def unschedule(self, hook_id):
        found = self.is_scheduled(hook_id)
        self.once.pop(hook_id, None)
        self.recurring.pop(hook_id, None)
        return found


class RecordingMailer:
    """Mail transport double that records every message."""

    def __init__(self, result=True):
        self.result = result
        self.sent = []

    def send_mail(self, to, subject, html, headers=()):
        self.sent.append({"to": to, "subject": subject, "html": html, "headers": list(headers)})
        return self.result


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite engine with the schema created fresh for each test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a database session for testing."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def settings(tmp_path):
    """Deterministic settings with a temporary override directory."""
    return Settings(
        site_name="Test Site",
        site_url="https://example.test",
        support_email="help@example.test",
        from_email="no-reply@example.test",
        template_override_dir=str(tmp_path / "overrides"),
        plan_aliases={
            "trial": "trial",
            "month": "monthly",
            "monthly": "monthly",
            "year": "yearly",
            "yearly": "yearly",
        },
        token_secret="test-secret",
    )


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def services(db_session: Session, scheduler, settings, mailer, clock, events):
    """Fully wired component graph on the test database."""
    return build_services(
        db_session,
        scheduler,
        settings=settings,
        mailer=mailer,
        clock=clock,
        events=events,
    )


@pytest.fixture
def make_user(services, clock):
    """Factory creating users with unique email/login."""
    counter = itertools.count(1)

    def _make_user(meta=None, **fields):
        n = next(counter)
        data = {
            "email": f"member{n}@example.test",
            "login": f"member{n}",
            "display_name": f"Member {n}",
            "registered_at": clock.now() - 10 * 86400,
        }
        data.update(fields)
        user = services.directory.create_or_update(User(**data))
        for key, value in (meta or {}).items():
            services.directory.set_user_meta(user.id, key, value)
        return user

    return _make_user


@pytest.fixture
def test_client(services, monkeypatch):
    """FastAPI test client wired to the test services."""
    from membermail.api.app import app
    from membermail.services import get_services

    monkeypatch.setenv("RUN_SCHEDULER", "False")
    app.dependency_overrides[get_services] = lambda: services

    with patch("membermail.api.app.init_db"):
        with TestClient(app) as client:
            yield client

    # Clean up dependency overrides
    app.dependency_overrides.clear()
