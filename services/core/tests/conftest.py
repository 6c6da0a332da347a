"""Pytest configuration and fixtures for Recruitflow Core tests.

This module provides fixtures for:
- Database: SQLite in-memory engine and sessions
- Time: a fixed clock so due dates and sweeps are deterministic
- Notifications: a recording gateway standing in for the real endpoint
- HTTP client: FastAPI TestClient with the database overridden
"""

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from recruitflow_core.config import Settings
from recruitflow_core.domain.models import Base
from recruitflow_core.domain.services.clock import FixedClock
from recruitflow_core.observability.metrics import MetricsCollector
from tests.factories import T0, RecordingGateway


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        mysql_url="sqlite+pysqlite:///:memory:",
        redis_url="redis://localhost:6379/15",  # Use DB 15 for tests
        celery_broker_url="memory://",
        celery_result_backend="cache+memory://",
        notification_gateway_url=None,
        notification_timeout_seconds=1.0,
        lookup_timeout_seconds=1.0,
        sweep_max_workers=4,
        reminder_claim_lease_seconds=300,
        log_level="DEBUG",
        log_json=False,
    )


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign key support for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Temporarily override BigInteger to compile as INTEGER for SQLite
    # This is needed because SQLite only supports autoincrement on INTEGER PRIMARY KEY
    from sqlalchemy.dialects import sqlite
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Restore original behavior
    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Time and Collaborators
# -----------------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at 2024-01-01T10:00:00Z."""
    return FixedClock(T0)


@pytest.fixture
def gateway() -> RecordingGateway:
    """A gateway that accepts every notification."""
    return RecordingGateway()


@pytest.fixture
def metrics() -> MetricsCollector:
    """A fresh metrics collector, isolated from the global one."""
    return MetricsCollector()


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_celery_app() -> MagicMock:
    """Celery app stand-in recording ``send_task`` calls."""
    celery_app = MagicMock()
    celery_app.send_task.return_value = MagicMock(id="celery-job-1")
    return celery_app


@pytest.fixture
def test_app(
    test_settings, sync_session_factory, clock, gateway, mock_celery_app
) -> Generator[FastAPI, None, None]:
    """Create a FastAPI test application with test settings and DB override."""
    from recruitflow_core.api.deps import (
        get_app_clock,
        get_app_settings,
        get_celery_app,
        get_db,
        get_gateway,
    )
    from recruitflow_core.main import app

    app.state.settings = test_settings

    # Override the database dependency to use test database
    def override_get_db():
        session = sync_session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_app_settings] = lambda: test_settings
    app.dependency_overrides[get_app_clock] = lambda: clock
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_celery_app] = lambda: mock_celery_app

    yield app

    # Clean up overrides
    app.dependency_overrides.clear()


@pytest.fixture
def client(test_app) -> TestClient:
    """Create an HTTP client for testing FastAPI endpoints."""
    return TestClient(test_app)
