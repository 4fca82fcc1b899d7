"""Pytest configuration and shared fixtures.

Unit tests run against in-memory SQLite (fast).
Integration tests use real PostgreSQL via testcontainers (slow, marked).
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from services.dispatch.src.dispatch.db.models import metadata

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure test environment before collection."""
    os.environ.setdefault("RUN_MIGRATIONS", "false")
    os.environ.setdefault("RUN_SLA_MONITOR", "false")
    os.environ.setdefault("OPENAI_API_KEY", "")
    os.environ.setdefault("NOTIFY_WEBHOOK_URL", "")

    # Register integration marker
    config.addinivalue_line(
        "markers", "integration: tests that require real PostgreSQL (slow)"
    )


class FakeClock:
    """Settable clock; tests move time forward explicitly."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeClassifier:
    """Returns a fixed assessment, or raises the given error."""

    def __init__(self, assessment=None, error: Exception | None = None):
        self.assessment = assessment
        self.error = error
        self.calls = 0

    def classify(self, image_bytes: bytes, mime_type: str = "image/jpeg"):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.assessment


# =============================================================================
# UNIT TEST FIXTURES (fast, in-memory SQLite)
# =============================================================================

@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(eng)
    return eng


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_classifier():
    """Factory for classifiers with a canned answer."""
    return FakeClassifier


@pytest.fixture
def notifier():
    from services.dispatch.src.dispatch.core.notify import RecordingNotifier

    return RecordingNotifier()


@pytest.fixture
def dispatch(engine, clock, notifier):
    """DispatchEngine wired to SQLite, a fake clock and a recording notifier."""
    from services.dispatch.src.dispatch.core.engine import DispatchEngine

    return DispatchEngine(engine, clock=clock, notifier=notifier)


@pytest.fixture
def worker(dispatch):
    return dispatch.register_worker("Asha", department="Roads")


@pytest.fixture
def reported_issue(dispatch):
    return dispatch.create_issue("Pothole", "Deep pothole near the bus stop", risk=65)


# =============================================================================
# INTEGRATION TEST FIXTURES (slow, real PostgreSQL)
# =============================================================================

@pytest.fixture(scope="session")
def postgres_container():
    """Create a PostgreSQL container for integration tests.

    Only created if integration tests are being run.
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:15-alpine") as postgres:
        yield postgres


@pytest.fixture
def pg_engine(postgres_container):
    """Create a fresh PostgreSQL engine for each integration test."""
    url = postgres_container.get_connection_url()
    eng = create_engine(url)

    metadata.create_all(eng)

    yield eng

    metadata.drop_all(eng)
    eng.dispose()
