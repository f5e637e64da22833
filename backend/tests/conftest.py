"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, enable_sqlite_foreign_keys, get_db
from main import app
from api.jobs import get_categorization_service
from api.sync import get_connection_sync_service
from services.categorization_service import CategorizationService
from services.connection_sync_service import ConnectionSyncService
from services.job_runner import BackgroundJobRunner, get_job_runner
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    budget,
    checking_account,
    connection,
    investment_account,
    retirement_account,
    savings_account,
)
from tests.fixtures.mocks import (
    DeferredExecutor,
    MockAggregatorClient,
    MockCategorizationClient,
)


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
    """Sessionmaker bound to the test engine (used by workers and batch runs)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create an in-memory SQLite database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="executor")
def executor_fixture():
    """Executor that holds submitted work until ``run_all()`` is called."""
    return DeferredExecutor()


@pytest.fixture(name="job_runner")
def job_runner_fixture(session_factory, executor):
    """Background job runner on the test database with deferred execution."""
    return BackgroundJobRunner(session_factory, executor=executor)


@pytest.fixture(name="mock_aggregator")
def mock_aggregator_fixture():
    """Configured aggregator client with no scripted data."""
    return MockAggregatorClient()


@pytest.fixture(name="mock_categorizer")
def mock_categorizer_fixture():
    """AI categorization client that assigns categories deterministically."""
    return MockCategorizationClient()


@pytest.fixture(name="client")
def client_fixture(db, session_factory, job_runner, mock_aggregator, mock_categorizer):
    """Create a test client with the test database and mocked collaborators."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    categorization = CategorizationService(client=mock_categorizer, runner=job_runner)

    def override_get_connection_sync_service():
        return ConnectionSyncService(
            client=mock_aggregator,
            session_factory=session_factory,
            categorization=categorization,
        )

    def override_get_categorization_service():
        return categorization

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_runner] = lambda: job_runner
    app.dependency_overrides[get_connection_sync_service] = override_get_connection_sync_service
    app.dependency_overrides[get_categorization_service] = override_get_categorization_service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
