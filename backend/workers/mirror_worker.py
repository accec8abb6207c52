"""Mirror worker: runs the fighter scan then the tournament scan on a fixed
interval and writes a DB snapshot after every cycle.

Run from backend dir:
  python -m workers.mirror_worker
"""

from __future__ import annotations

import asyncio
import os
import sys
import time
from datetime import timedelta
from typing import Any, Optional

_BACKEND = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND not in sys.path:
    sys.path.insert(0, _BACKEND)
if os.getcwd() != _BACKEND:
    os.chdir(_BACKEND)

from config import settings
from models.database import AsyncSessionLocal, init_database
from services.fighter_sync import fighter_sync
from services.nft_index import nft_index_client
from services.redvillage import redvillage_client
from services.tournament_sync import tournament_sync
from services.worker_state import (
    read_worker_control,
    read_worker_snapshot,
    update_worker_control,
    write_worker_snapshot,
)
from utils.logger import get_logger, setup_logging
from utils.utcnow import utcnow

logger = get_logger("mirror_worker")

WORKER_NAME = "mirror"
IDLE_POLL_SECONDS = 10


async def run_cycle(
    fighter_engine=None,
    tournament_engine=None,
    *,
    fighters_enabled: bool = True,
    tournaments_enabled: bool = True,
) -> tuple[dict[str, Any], list[str]]:
    """Run the enabled scans in order. A failing scan does not stop the next one."""
    fighter_engine = fighter_engine or fighter_sync
    tournament_engine = tournament_engine or tournament_sync
    stats: dict[str, Any] = {}
    errors: list[str] = []

    scans = []
    if fighters_enabled:
        scans.append(("fighters", fighter_engine))
    if tournaments_enabled:
        scans.append(("tournaments", tournament_engine))

    for name, engine in scans:
        try:
            result = await engine.scan()
            stats[name] = result.to_dict()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Scan failed", scan=name, error=str(exc))
            errors.append(f"{name}: {exc}")
    return stats, errors


async def _write_snapshot(session_factory, **kwargs) -> None:
    try:
        async with session_factory() as session:
            await write_worker_snapshot(session, WORKER_NAME, **kwargs)
    except Exception as exc:
        logger.warning("Failed to write worker snapshot", error=str(exc))


async def _run_loop(
    session_factory=None,
    *,
    run_once: Optional[bool] = None,
    fighter_engine=None,
    tournament_engine=None,
) -> Optional[dict[str, Any]]:
    session_factory = session_factory or AsyncSessionLocal
    run_once = settings.RUN_ONCE if run_once is None else run_once
    async with session_factory() as session:
        previous = await read_worker_snapshot(session, WORKER_NAME)
    logger.info(
        "Mirror worker started",
        run_once=run_once,
        last_run_at=previous["last_run_at"],
        last_error=previous["last_error"],
    )

    await _write_snapshot(
        session_factory,
        running=True,
        enabled=True,
        current_activity="Mirror worker started; first scan pending.",
        interval_seconds=settings.SCAN_INTERVAL_SECONDS,
    )

    next_scheduled_run_at = None

    while True:
        async with session_factory() as session:
            control = await read_worker_control(
                session, WORKER_NAME, default_interval=settings.SCAN_INTERVAL_SECONDS
            )

        interval = control.interval_seconds
        paused = control.is_paused
        enabled = control.active
        requested = control.run_requested
        now = utcnow()

        should_run = run_once or requested or (
            enabled and (next_scheduled_run_at is None or now >= next_scheduled_run_at)
        )

        if not should_run:
            await _write_snapshot(
                session_factory,
                running=True,
                enabled=enabled,
                current_activity="Paused" if paused else "Idle - waiting for next mirror cycle.",
                interval_seconds=interval,
            )
            await asyncio.sleep(min(IDLE_POLL_SECONDS, interval))
            continue

        await _write_snapshot(
            session_factory,
            running=True,
            enabled=enabled,
            current_activity="Scanning fighters and tournaments.",
            interval_seconds=interval,
        )

        started = time.monotonic()
        stats, errors = await run_cycle(
            fighter_engine,
            tournament_engine,
            fighters_enabled=settings.FIGHTER_SYNC_ENABLED,
            tournaments_enabled=settings.TOURNAMENT_SYNC_ENABLED,
        )
        duration = round(time.monotonic() - started, 3)

        if requested:
            async with session_factory() as session:
                await update_worker_control(session, WORKER_NAME, run_requested=False)

        next_scheduled_run_at = utcnow() + timedelta(seconds=interval)
        last_error = "; ".join(errors) or None
        await _write_snapshot(
            session_factory,
            running=not run_once,
            enabled=enabled,
            current_activity=(
                f"Last mirror cycle error: {last_error}"
                if last_error
                else "Idle - waiting for next mirror cycle."
            ),
            interval_seconds=interval,
            last_run_at=utcnow(),
            run_duration_seconds=duration,
            last_error=last_error,
            stats=stats,
        )
        logger.info("Mirror cycle complete", duration_seconds=duration, errors=len(errors))

        if run_once:
            return stats

        await asyncio.sleep(min(IDLE_POLL_SECONDS, interval))


async def main() -> None:
    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
        log_file=settings.LOG_FILE,
    )
    await init_database()
    logger.info("Database initialized")
    try:
        await _run_loop()
    except asyncio.CancelledError:
        logger.info("Mirror worker shutting down")
    finally:
        await redvillage_client.close()
        await nft_index_client.close()


if __name__ == "__main__":
    asyncio.run(main())
