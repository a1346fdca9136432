"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, enable_sqlite_foreign_keys, get_db
from main import app
from api.dependencies import (
    get_reference_service,
    get_refresh_service,
    get_scheduler,
    get_webhook_service,
)
from services.job_lock import JobLockService
from services.refresh_service import RefreshService
from services.reference_data_service import ReferenceDataService
from services.scheduler import JobScheduler
from services.webhook_service import WebhookService
from services.webhook_signature import WebhookSignatureVerifier
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    WEBHOOK_SECRET,
    connection,
    credential,
    external_account,
)
from tests.fixtures.mocks import MockProviderRegistry, MockSnapTradeClient


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine shared by every session in a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create an in-memory SQLite database for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="mock_snaptrade_client")
def mock_snaptrade_client_fixture():
    """A mock SnapTrade client with no data."""
    return MockSnapTradeClient()


@pytest.fixture(name="mock_provider_registry")
def mock_provider_registry_fixture(mock_snaptrade_client):
    return MockProviderRegistry({"SnapTrade": mock_snaptrade_client})


@pytest.fixture(name="lock_service")
def lock_service_fixture(session_factory):
    return JobLockService(session_factory, ttl_seconds=3600, holder_id="test-holder")


@pytest.fixture(name="refresh_service")
def refresh_service_fixture(session_factory, mock_provider_registry, lock_service):
    """RefreshService wired to the test database with no inter-user delay."""
    return RefreshService(
        session_factory,
        provider_registry=mock_provider_registry,
        lock_service=lock_service,
        inter_user_delay=0,
    )


@pytest.fixture(name="webhook_service")
def webhook_service_fixture():
    return WebhookService(
        verifiers={"SnapTrade": WebhookSignatureVerifier(WEBHOOK_SECRET)}
    )


@pytest.fixture(name="reference_service")
def reference_service_fixture(mock_provider_registry):
    return ReferenceDataService(
        ["AAPL", "MSFT"],
        provider_registry=mock_provider_registry,
        delay_seconds=0,
    )


@pytest.fixture(name="scheduler")
def scheduler_fixture(refresh_service, reference_service):
    """A scheduler with both jobs registered but not started."""
    scheduler = JobScheduler(timezone="America/New_York")
    scheduler.add_job("account_refresh", "0 2 * * *", refresh_service.run_scheduled)
    scheduler.add_job("reference_cache", "0 */4 * * 1-5", reference_service.run_scheduled)
    yield scheduler
    scheduler.stop(timeout=1)


@pytest.fixture(name="client")
def client_fixture(db, webhook_service, refresh_service, reference_service, scheduler):
    """Create a test client with the test database and services."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_webhook_service] = lambda: webhook_service
    app.dependency_overrides[get_refresh_service] = lambda: refresh_service
    app.dependency_overrides[get_reference_service] = lambda: reference_service
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
