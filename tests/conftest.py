"""Pytest configuration and shared fixtures.

API tests run fully in-process: the database session is an AsyncMock, the
session service is the in-memory fake from tests.fakes, and the external
authentication microservice is an httpx.MockTransport.

Store tests run the real SessionService against an in-memory SQLite
database (aiosqlite) built from the ORM metadata.
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from regportal.api import create_app
from regportal.api.dependencies import get_auth_gateway, get_db_session, get_session_service
from regportal.core.config import AuthServiceSettings, SessionSettings, Settings
from regportal.db.models import Base
from regportal.services.auth_gateway import AuthGatewayConfig, ExternalAuthGateway
from tests.factories import create_mock_db, scalar_result
from tests.fakes import AUTH_BASE_URL, AuthServiceStub, InMemorySessionService


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing at the stubbed auth service."""
    return Settings(
        auth_service=AuthServiceSettings(base_url=AUTH_BASE_URL, timeout=2.0),
        session=SessionSettings(cookie_name="session-token", analytics_requires_admin=True),
        cors_origins=["http://localhost:3000"],
    )


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_db_session():
    """AsyncSession double; lookups find nothing unless a test says otherwise."""
    db = create_mock_db()
    db.execute.return_value = scalar_result(None)
    return db


@pytest.fixture
def session_service() -> InMemorySessionService:
    return InMemorySessionService()


@pytest.fixture
def auth_stub() -> AuthServiceStub:
    """External auth service with one user per coarse role."""
    stub = AuthServiceStub()
    stub.add_user("admin", "admin-password", user_id=1, roles=["admin"], first_name="Ada")
    stub.add_user("agent", "agent-password", user_id=3, roles=["agent"], first_name="Alex")
    stub.add_user("viewer", "viewer-password", user_id=4, roles=[], first_name="", last_name="")
    return stub


# ---------------------------------------------------------------------------
# API client fixture (in-process testing via ASGI transport)
# ---------------------------------------------------------------------------
@pytest.fixture
def test_app(test_settings, mock_db_session, session_service, auth_stub):
    """FastAPI app with database, session service and auth gateway overridden."""
    app = create_app(test_settings)

    async def override_db():
        yield mock_db_session

    def override_service():
        return session_service

    async def override_gateway():
        config = AuthGatewayConfig.from_settings(test_settings.auth_service)
        async with ExternalAuthGateway(config, transport=auth_stub.transport) as gateway:
            yield gateway

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_session_service] = override_service
    app.dependency_overrides[get_auth_gateway] = override_gateway
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API.

    Uses httpx with ASGI transport for in-process testing.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Persistent store (in-memory SQLite)
# ---------------------------------------------------------------------------
def _create_schema(sync_conn) -> None:
    """Create the ORM tables without the PostgreSQL-only server defaults."""
    schema = MetaData()
    for table in Base.metadata.sorted_tables:
        copy = table.to_metadata(schema)
        for column in copy.columns:
            column.server_default = None
    schema.create_all(sync_conn)


@pytest.fixture
async def store_engine():
    """One shared in-memory SQLite connection with real SAVEPOINT support."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's implicit transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(_create_schema)
    yield engine
    await engine.dispose()


@pytest.fixture
def store_session_factory(store_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=store_engine, expire_on_commit=False)


@pytest.fixture
def store_app(test_settings, store_session_factory, auth_stub):
    """FastAPI app on the SQLite store with the real session service."""
    app = create_app(test_settings)

    async def override_db():
        async with store_session_factory() as db:
            try:
                yield db
            except Exception:
                await db.rollback()
                raise

    async def override_gateway():
        config = AuthGatewayConfig.from_settings(test_settings.auth_service)
        async with ExternalAuthGateway(config, transport=auth_stub.transport) as gateway:
            yield gateway

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_auth_gateway] = override_gateway
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def store_client(store_app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=store_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
