"""Tests for request authentication helpers.

Covers client IP resolution, cookie-based auth context, hierarchical role
checks and the local account upsert.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from regportal.api.middleware.auth import (
    UNAUTHENTICATED,
    ensure_account_exists,
    get_auth_context,
    get_client_ip,
    has_role,
    require_auth,
    require_role,
    role_required,
)
from regportal.api.middleware.errors import AuthenticationError, AuthorizationError
from regportal.services.roles import UserRole
from regportal.services.session import ExternalIdentity, SessionSummary
from tests.factories import NOW, create_mock_db

AGENT = ExternalIdentity(id="3", email="alex@example.com", name="Alex Agent", role="AGENT")


def _request(headers: dict[str, str] | None = None, client=("198.51.100.4", 5000)) -> Request:
    app = SimpleNamespace(state=SimpleNamespace(settings=None))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "app": app,
    }
    return Request(scope)


def _service(summary=None, error=None):
    service = MagicMock()
    service.validate_session = AsyncMock(return_value=summary, side_effect=error)
    return service


class TestClientIp:
    def test_forwarded_for_first_hop(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_real_ip(self):
        assert get_client_ip(_request({"X-Real-IP": " 203.0.113.9 "})) == "203.0.113.9"

    def test_reported_fallback(self):
        assert get_client_ip(_request(), fallback="192.0.2.1") == "192.0.2.1"

    def test_socket_peer(self):
        assert get_client_ip(_request()) == "198.51.100.4"

    def test_nothing_known(self):
        assert get_client_ip(_request(client=None)) is None


class TestAuthContext:
    @pytest.mark.asyncio
    async def test_no_cookie_skips_lookup(self):
        service = _service()
        assert await get_auth_context(_request(), service) is UNAUTHENTICATED
        service.validate_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_cookie(self):
        session_id = uuid4()
        service = _service(SessionSummary(session_id=session_id, user=AGENT, expires=NOW))

        context = await get_auth_context(_request({"Cookie": "session-token=abc"}), service)

        assert context.is_authenticated
        assert context.user == AGENT
        assert context.session_id == session_id
        service.validate_session.assert_awaited_once_with("abc")

    @pytest.mark.asyncio
    async def test_invalid_cookie(self):
        context = await get_auth_context(_request({"Cookie": "session-token=abc"}), _service())
        assert context is UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_storage_error_reads_as_unauthenticated(self):
        service = _service(error=SQLAlchemyError("db down"))
        context = await get_auth_context(_request({"Cookie": "session-token=abc"}), service)
        assert context is UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_require_auth(self):
        with pytest.raises(AuthenticationError):
            await require_auth(_request(), _service())


class TestRoles:
    def test_has_role(self):
        assert has_role(AGENT, "VIEWER")
        assert has_role(AGENT, UserRole.AGENT)
        assert not has_role(AGENT, UserRole.SUPERVISOR)

    @pytest.mark.asyncio
    async def test_require_role_forbidden(self):
        service = _service(SessionSummary(session_id=uuid4(), user=AGENT, expires=NOW))
        request = _request({"Cookie": "session-token=abc"})

        with pytest.raises(AuthorizationError, match="Role 'ADMIN' required"):
            await require_role(request, service, UserRole.ADMIN)

    @pytest.mark.asyncio
    async def test_require_role_allowed(self):
        service = _service(SessionSummary(session_id=uuid4(), user=AGENT, expires=NOW))
        request = _request({"Cookie": "session-token=abc"})

        assert await require_role(request, service, "agent") == AGENT

    @pytest.mark.asyncio
    async def test_role_required_dependency(self):
        check = role_required("SUPERVISOR")
        with pytest.raises(AuthorizationError):
            await check(AGENT)


class TestEnsureAccountExists:
    @pytest.mark.asyncio
    async def test_single_upsert_statement(self):
        db = create_mock_db()

        await ensure_account_exists(db, AGENT)

        db.add.assert_not_called()
        db.execute.assert_awaited_once()
        stmt = db.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert sql.startswith("INSERT INTO accounts")
        assert "ON CONFLICT (account_id) DO UPDATE" in sql
        assert "email = excluded.email" in sql

        params = stmt.compile(dialect=postgresql.dialect()).params
        assert params["account_id"] == "3"
        assert params["email"] == "alex@example.com"
        assert params["name"] == "Alex Agent"
        assert params["created_at"] == params["updated_at"]

    @pytest.mark.asyncio
    async def test_sqlite_bind_uses_sqlite_insert(self):
        db = create_mock_db()
        db.bind = SimpleNamespace(dialect=SimpleNamespace(name="sqlite"))

        await ensure_account_exists(db, AGENT)

        stmt = db.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=sqlite.dialect()))
        assert "ON CONFLICT (account_id) DO UPDATE" in sql
