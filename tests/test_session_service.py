"""Tests for the session bridging service.

The database session is an AsyncMock; each test scripts the results the
service's statements receive, in order.
"""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import SQLAlchemyError

from regportal.db.models import Session, SessionAnalytics
from regportal.services.crypto import hash_token
from regportal.services.session import (
    CleanupResult,
    ClientInfo,
    DecodedTokenPayload,
    InvalidTokenPayloadError,
    SessionCandidate,
    SessionService,
)
from tests.factories import (
    NOW,
    create_analytics_row,
    create_mock_db,
    create_payload,
    create_session_row,
    fixed_clock,
    returning_result,
    rowcount_result,
    scalar_result,
    scalars_result,
)


@pytest.fixture
def db():
    return create_mock_db()


@pytest.fixture
def service(db):
    return SessionService(db, retention_days=30, clock=fixed_clock())


def _statement(db, call_index):
    return db.execute.call_args_list[call_index].args[0]


def _params(db, call_index):
    return _statement(db, call_index).compile(dialect=postgresql.dialect()).params


class TestDecodedTokenPayload:
    def test_from_mapping(self):
        payload = DecodedTokenPayload.from_mapping(create_payload(user_id=7, roles=["admin"]))
        assert payload.user_id == "7"
        assert payload.roles == ("admin",)
        assert payload.profile.display_name == "Jane Doe"
        assert payload.expires == NOW + timedelta(hours=1)

    def test_display_name_falls_back_to_username(self):
        payload = DecodedTokenPayload.from_mapping(
            create_payload(first_name="", last_name="", username="jdoe")
        )
        assert payload.profile.display_name == "jdoe"

    def test_fractional_exp_is_kept(self):
        exp = NOW.timestamp() + 3600.25
        payload = DecodedTokenPayload.from_mapping(create_payload(exp=exp))
        assert payload.expires == NOW + timedelta(hours=1, milliseconds=250)

    def test_missing_roles_and_profile_are_tolerated(self):
        payload = DecodedTokenPayload.from_mapping({"user_id": "u1", "exp": 1700000000})
        assert payload.roles == ()
        assert payload.profile.email == ""

    @pytest.mark.parametrize(
        "data",
        [
            {"exp": 1700000000},
            {"user_id": "  ", "exp": 1700000000},
            {"user_id": True, "exp": 1700000000},
            {"user_id": 1},
            {"user_id": 1, "exp": "soon"},
            {"user_id": 1, "exp": 1700000000, "roles": "admin"},
            {"user_id": 1, "exp": 1700000000, "roles": [1, 2]},
            {"user_id": 1, "exp": 1700000000, "profile": ["jdoe"]},
            ["not", "a", "mapping"],
        ],
    )
    def test_rejects_malformed_payload(self, data):
        with pytest.raises(InvalidTokenPayloadError):
            DecodedTokenPayload.from_mapping(data)


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_creates_session_and_analytics_rows(self, service, db):
        payload = DecodedTokenPayload.from_mapping(create_payload(roles=["agent", "admin"]))

        created = await service.create_session(
            payload,
            "access-1",
            "refresh-1",
            ClientInfo(ip_address="10.1.2.3", user_agent="Mozilla/5.0 (iPhone) Mobile"),
        )

        assert created.user.id == "42"
        assert created.user.role == "ADMIN"
        assert created.user.name == "Jane Doe"
        assert created.expires == payload.expires

        session, analytics = (c.args[0] for c in db.add.call_args_list)
        assert isinstance(session, Session)
        assert session.session_token == created.session_token
        assert session.token_hash == hash_token("access-1")
        assert session.is_active is True
        assert session.created_at == NOW
        assert session.device_info == "Mobile"
        assert isinstance(analytics, SessionAnalytics)
        assert analytics.session_id == created.session_id
        assert analytics.login_time == NOW
        assert analytics.device_type == "Mobile"
        assert analytics.logout_time is None

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_persisted(self, service, db):
        payload = DecodedTokenPayload.from_mapping(create_payload())
        await service.create_session(payload, "access-1", "refresh-secret")

        session = db.add.call_args_list[0].args[0]
        stored = {getattr(session, c) for c in ("session_token", "token_hash", "user_agent")}
        assert "refresh-secret" not in stored

    @pytest.mark.asyncio
    async def test_tokens_are_unique_per_session(self, service):
        payload = DecodedTokenPayload.from_mapping(create_payload())
        first = await service.create_session(payload, "access-1")
        second = await service.create_session(payload, "access-1")
        assert first.session_token != second.session_token
        assert first.session_id != second.session_id

    @pytest.mark.asyncio
    async def test_analytics_failure_does_not_fail_creation(self, service, db):
        db.flush.side_effect = [None, SQLAlchemyError("analytics table missing")]
        payload = DecodedTokenPayload.from_mapping(create_payload(roles=[]))

        created = await service.create_session(payload, "access-1")

        assert created.user.role == "VIEWER"
        assert db.nested.failed == 1


class TestValidateSession:
    @pytest.mark.asyncio
    async def test_empty_token(self, service, db):
        assert await service.validate_session("") is None
        db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_token(self, service, db):
        db.execute.return_value = scalar_result(None)
        assert await service.validate_session("nope") is None

    @pytest.mark.asyncio
    async def test_expired_session(self, service, db):
        db.execute.return_value = scalar_result(
            create_session_row(expires=NOW - timedelta(seconds=1))
        )
        assert await service.validate_session("session-token-value") is None

    @pytest.mark.asyncio
    async def test_expiry_boundary_is_invalid(self, service, db):
        db.execute.return_value = scalar_result(create_session_row(expires=NOW))
        assert await service.validate_session("session-token-value") is None

    @pytest.mark.asyncio
    async def test_revoked_session(self, service, db):
        db.execute.return_value = scalar_result(
            create_session_row(is_active=False, revoked_at=NOW - timedelta(minutes=1))
        )
        assert await service.validate_session("session-token-value") is None

    @pytest.mark.asyncio
    async def test_token_hash_mismatch(self, service, db):
        db.execute.return_value = scalar_result(create_session_row(access_token="access-1"))
        result = await service.validate_session("session-token-value", hash_token("other"))
        assert result is None
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_valid_session_touches_last_accessed(self, service, db):
        row = create_session_row(access_token="access-1", role="SUPERVISOR")
        db.execute.side_effect = [scalar_result(row), rowcount_result(1)]

        summary = await service.validate_session("session-token-value", hash_token("access-1"))

        assert summary is not None
        assert summary.session_id == row.session_id
        assert summary.user.role == "SUPERVISOR"
        assert summary.expires == row.expires
        touch = _statement(db, 1)
        assert touch.table.name == "sessions"
        assert _params(db, 1)["last_accessed"] == NOW

    @pytest.mark.asyncio
    async def test_touch_failure_still_validates(self, service, db):
        row = create_session_row()
        db.execute.side_effect = [scalar_result(row), SQLAlchemyError("deadlock")]

        summary = await service.validate_session("session-token-value")

        assert summary is not None
        assert db.nested.failed == 1


class TestRevokeSession:
    @pytest.mark.asyncio
    async def test_unknown_token(self, service, db):
        db.execute.return_value = returning_result(None)
        assert await service.revoke_session("nope") is False
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_revokes_and_closes_analytics(self, service, db):
        session_id = uuid4()
        row = SimpleNamespace(
            session_id=session_id,
            created_at=NOW - timedelta(minutes=10),
            expires=NOW + timedelta(hours=1),
        )
        db.execute.side_effect = [returning_result(row), rowcount_result(1)]

        assert await service.revoke_session("tok", revoked_by="admin-1", reason="logout") is True

        revoke_params = _params(db, 0)
        assert revoke_params["is_active"] is False
        assert revoke_params["revoked_at"] == NOW
        assert revoke_params["revoked_by"] == "admin-1"
        assert revoke_params["revoke_reason"] == "logout"

        close = _statement(db, 1)
        assert close.table.name == "session_analytics"
        close_params = _params(db, 1)
        assert close_params["logout_time"] == NOW
        assert close_params["duration"] == 600

    @pytest.mark.asyncio
    async def test_analytics_close_failure_is_absorbed(self, service, db):
        row = SimpleNamespace(session_id=uuid4(), created_at=NOW, expires=NOW)
        db.execute.side_effect = [returning_result(row), SQLAlchemyError("boom")]

        assert await service.revoke_session("tok") is True


class TestBulkRevocation:
    @pytest.mark.asyncio
    async def test_revoke_all_user_sessions(self, service, db):
        rows = [create_session_row(session_token="a"), create_session_row(session_token="b")]
        db.execute.side_effect = [
            scalars_result(rows),
            rowcount_result(2),
            rowcount_result(1),
            rowcount_result(1),
        ]

        count = await service.revoke_all_user_sessions("42", revoked_by="admin", reason="offboard")

        assert count == 2
        assert db.execute.await_count == 4

    @pytest.mark.asyncio
    async def test_no_active_sessions(self, service, db):
        db.execute.return_value = scalars_result([])
        assert await service.revoke_all_user_sessions("42") == 0
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_apply_revocation_without_candidates(self, service, db):
        assert await service.apply_revocation([]) == 0
        db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_select_revocation_candidates(self, service, db):
        row = create_session_row()
        db.execute.return_value = scalars_result([row])

        candidates = await service.select_revocation_candidates("42")

        assert candidates == [
            SessionCandidate(
                session_id=row.session_id,
                created_at=row.created_at,
                expires=row.expires,
                is_active=True,
                revoked_at=None,
            )
        ]


class TestListings:
    @pytest.mark.asyncio
    async def test_get_user_active_sessions(self, service, db):
        row = create_session_row()
        db.execute.return_value = scalars_result([row])

        sessions = await service.get_user_active_sessions("42")

        assert len(sessions) == 1
        assert sessions[0].session_id == row.session_id
        assert sessions[0].user.email == "jane.doe@example.com"
        assert sessions[0].ip_address == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_get_session_analytics(self, service, db):
        rows = [create_analytics_row(), create_analytics_row()]
        db.execute.return_value = scalars_result(rows)

        result = await service.get_session_analytics("42", days=7)

        assert result == rows
        params = _params(db, 0)
        assert params["login_time_1"] == NOW - timedelta(days=7)
        assert params["external_user_id_1"] == "42"


class TestCleanup:
    def test_candidate_ended_at(self):
        revoked = NOW - timedelta(hours=3)
        candidate = SessionCandidate(
            session_id=uuid4(), created_at=NOW, expires=NOW, is_active=False, revoked_at=revoked
        )
        assert candidate.ended_at == revoked
        expired = SessionCandidate(
            session_id=uuid4(), created_at=NOW, expires=NOW - timedelta(hours=1), is_active=True
        )
        assert expired.ended_at == NOW - timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_sweep(self, service, db):
        expired = create_session_row(
            session_token="expired",
            created_at=NOW - timedelta(hours=2),
            expires=NOW - timedelta(hours=1),
        )
        revoked_at = NOW - timedelta(days=40)
        revoked = create_session_row(
            session_token="revoked",
            created_at=NOW - timedelta(days=41),
            expires=NOW - timedelta(days=40, hours=-1),
            is_active=False,
            revoked_at=revoked_at,
        )
        db.execute.side_effect = [
            scalars_result([expired, revoked]),
            rowcount_result(1),
            rowcount_result(1),
            rowcount_result(1),
            rowcount_result(1),
        ]

        result = await service.cleanup_expired_sessions()

        assert result == CleanupResult(analytics_closed=2, deactivated=1, deleted=1)
        assert _params(db, 1)["logout_time"] == expired.expires
        assert _params(db, 2)["logout_time"] == revoked_at
        delete_params = _params(db, 4)
        assert delete_params["created_at_1"] == NOW - timedelta(days=30)

    @pytest.mark.asyncio
    async def test_sweep_with_nothing_to_do(self, service, db):
        db.execute.side_effect = [scalars_result([]), rowcount_result(0)]

        result = await service.cleanup_expired_sessions()

        assert result == CleanupResult()
        assert not result.changed_anything

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, service, db):
        # Second pass: analytics already closed, nothing left to deactivate
        row = create_session_row(
            is_active=False,
            created_at=NOW - timedelta(days=2),
            revoked_at=NOW - timedelta(days=1),
        )
        db.execute.side_effect = [scalars_result([row]), rowcount_result(0), rowcount_result(0)]

        result = await service.cleanup_expired_sessions()

        assert result == CleanupResult(analytics_closed=0, deactivated=0, deleted=0)


def test_duration_never_negative():
    from regportal.services.session import _duration_seconds

    start = datetime(2026, 1, 1, tzinfo=UTC)
    assert _duration_seconds(start, start - timedelta(seconds=5)) == 0
    assert _duration_seconds(start, start + timedelta(seconds=90)) == 90
