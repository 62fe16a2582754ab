"""Session cleanup runner.

Runs SessionService.cleanup_expired_sessions either once (for cron) or on a
fixed interval until SIGTERM/SIGINT:
- closes analytics rows of sessions that ended without a logout
- marks expired sessions inactive
- purges inactive sessions past the retention window

Usage:
    regportal-worker --once
    regportal-worker --interval 60
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, NoReturn

from regportal.services.session import DEFAULT_RETENTION_DAYS, CleanupResult, SessionService

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager["AsyncSession"]]


def _default_session_factory() -> SessionFactory:
    from regportal.db import get_async_session

    return get_async_session


async def run_cleanup_once(
    session_factory: SessionFactory | None = None,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> CleanupResult:
    """Run one sweep in its own transaction.

    Args:
        session_factory: Async context manager factory yielding a DB session.
        retention_days: Age after which inactive sessions are deleted.

    Returns:
        Counts of analytics rows closed and sessions deactivated/deleted.
    """
    factory = session_factory or _default_session_factory()
    async with factory() as db:
        service = SessionService(db, retention_days=retention_days)
        result = await service.cleanup_expired_sessions()
        await db.commit()

    logger.info(
        "Cleanup finished: analytics_closed=%d, deactivated=%d, deleted=%d",
        result.analytics_closed,
        result.deactivated,
        result.deleted,
    )
    return result


async def run_forever(
    interval_seconds: float,
    shutdown_event: asyncio.Event,
    session_factory: SessionFactory | None = None,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> int:
    """Sweep every ``interval_seconds`` until ``shutdown_event`` is set.

    A failed sweep is logged and retried on the next interval.

    Returns:
        Number of sweeps attempted.
    """
    runs = 0
    while not shutdown_event.is_set():
        runs += 1
        try:
            await run_cleanup_once(session_factory, retention_days=retention_days)
        except Exception as e:
            logger.exception("Session cleanup failed: %s", e)

        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)

    logger.info("Cleanup loop stopped after %d run(s)", runs)
    return runs


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="regportal-worker",
        description="Sweep expired and revoked regportal sessions.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit (for cron or systemd timers)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        metavar="MINUTES",
        help="Minutes between sweeps (default: REGPORTAL_SESSION__CLEANUP_INTERVAL_MINUTES)",
    )
    return parser


async def _async_main(once: bool, interval_minutes: int, retention_days: int) -> None:
    from regportal.db import close_engine

    try:
        if once:
            await run_cleanup_once(retention_days=retention_days)
            return

        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_event.set)

        logger.info("Cleanup loop starting: interval=%d min", interval_minutes)
        await run_forever(interval_minutes * 60, shutdown_event, retention_days=retention_days)
    finally:
        await close_engine()


def main(argv: Sequence[str] | None = None) -> NoReturn:
    """Entry point of the regportal-worker console script."""
    from regportal.core.settings import get_settings

    args = _build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    interval = args.interval or settings.session.cleanup_interval_minutes
    try:
        asyncio.run(_async_main(args.once, interval, settings.session.retention_days))
    except KeyboardInterrupt:
        logger.info("Cleanup worker interrupted")
    except Exception as e:
        logger.exception("Cleanup worker failed: %s", e)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
