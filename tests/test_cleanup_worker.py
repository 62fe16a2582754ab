"""Tests for the session cleanup worker."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest

from regportal.core.config import SessionSettings, Settings
from regportal.services.session import CleanupResult
from regportal.worker.cleanup import _build_parser, main, run_cleanup_once, run_forever
from tests.factories import create_mock_db, rowcount_result, scalars_result


def _factory(db):
    @asynccontextmanager
    async def factory():
        yield db

    return factory


class TestRunCleanupOnce:
    @pytest.mark.asyncio
    async def test_sweeps_and_commits(self):
        db = create_mock_db()
        db.execute.side_effect = [scalars_result([]), rowcount_result(3)]

        result = await run_cleanup_once(_factory(db), retention_days=7)

        assert result == CleanupResult(deleted=3)
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_propagates_without_commit(self):
        db = create_mock_db()
        db.execute.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await run_cleanup_once(_factory(db))
        db.commit.assert_not_called()


class TestRunForever:
    @pytest.mark.asyncio
    async def test_runs_until_shutdown(self):
        shutdown = asyncio.Event()
        runs = 0

        @asynccontextmanager
        async def factory():
            nonlocal runs
            runs += 1
            if runs == 3:
                shutdown.set()
            db = create_mock_db()
            db.execute.side_effect = [scalars_result([]), rowcount_result(0)]
            yield db

        count = await run_forever(0.01, shutdown, factory)

        assert count == 3

    @pytest.mark.asyncio
    async def test_failed_sweep_does_not_stop_loop(self):
        shutdown = asyncio.Event()
        attempts = 0

        @asynccontextmanager
        async def factory():
            nonlocal attempts
            attempts += 1
            if attempts == 2:
                shutdown.set()
            raise ConnectionError("database unavailable")
            yield  # pragma: no cover

        count = await run_forever(0.01, shutdown, factory)

        assert count == 2


class TestCli:
    def test_parser(self):
        args = _build_parser().parse_args(["--once", "--interval", "15"])
        assert args.once is True
        assert args.interval == 15

    def test_parser_defaults(self):
        args = _build_parser().parse_args([])
        assert args.once is False
        assert args.interval is None

    def test_main_once(self):
        settings = Settings(session=SessionSettings(retention_days=9))
        with (
            patch("regportal.core.settings.get_settings", return_value=settings),
            patch("regportal.worker.cleanup._async_main", new=AsyncMock()) as async_main,
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["--once"])

        assert exc_info.value.code == 0
        async_main.assert_awaited_once_with(True, 60, 9)

    def test_main_failure_exits_nonzero(self):
        with (
            patch("regportal.core.settings.get_settings", return_value=Settings()),
            patch(
                "regportal.worker.cleanup._async_main",
                new=AsyncMock(side_effect=RuntimeError("boom")),
            ),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["--interval", "5"])

        assert exc_info.value.code == 1
