"""DB-backed control and status rows for the mirror worker.

Operators write the control row (pause, interval override, run-now request);
the worker reads it on every poll. The worker writes the snapshot row whenever
its state changes, so status can be inspected from the database alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.database import WorkerControl, WorkerSnapshot
from utils.utcnow import utcnow

DEFAULT_INTERVAL_SECONDS = 2 * 60 * 60
MIN_INTERVAL_SECONDS = 60
MAX_INTERVAL_SECONDS = 7 * 24 * 60 * 60

_UNSET: Any = object()


@dataclass
class WorkerControlState:
    worker_name: str
    is_enabled: bool = True
    is_paused: bool = False
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    requested_run_at: Optional[datetime] = None

    @property
    def run_requested(self) -> bool:
        return self.requested_run_at is not None

    @property
    def active(self) -> bool:
        return self.is_enabled and not self.is_paused


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat() + "Z"


def _clamp_interval(seconds: int) -> int:
    return max(MIN_INTERVAL_SECONDS, min(MAX_INTERVAL_SECONDS, int(seconds)))


async def _control_row(session: AsyncSession, worker_name: str) -> Optional[WorkerControl]:
    result = await session.execute(
        select(WorkerControl).where(WorkerControl.worker_name == worker_name)
    )
    return result.scalar_one_or_none()


async def read_worker_control(
    session: AsyncSession,
    worker_name: str,
    *,
    default_interval: Optional[int] = None,
) -> WorkerControlState:
    """Current control state; a missing row means enabled, unpaused, default interval."""
    fallback = int(default_interval or DEFAULT_INTERVAL_SECONDS)
    row = await _control_row(session, worker_name)
    if row is None:
        return WorkerControlState(worker_name=worker_name, interval_seconds=fallback)
    return WorkerControlState(
        worker_name=worker_name,
        is_enabled=bool(row.is_enabled),
        is_paused=bool(row.is_paused),
        interval_seconds=int(row.interval_seconds or fallback),
        requested_run_at=row.requested_run_at,
    )


async def update_worker_control(
    session: AsyncSession,
    worker_name: str,
    *,
    enabled: Optional[bool] = None,
    paused: Optional[bool] = None,
    interval_seconds: Optional[int] = None,
    run_requested: Optional[bool] = None,
) -> WorkerControlState:
    """Change only the given control fields, creating the row on first use."""
    row = await _control_row(session, worker_name)
    if row is None:
        row = WorkerControl(
            worker_name=worker_name,
            is_enabled=True,
            is_paused=False,
            interval_seconds=DEFAULT_INTERVAL_SECONDS,
        )
        session.add(row)

    if enabled is not None:
        row.is_enabled = enabled
    if paused is not None:
        row.is_paused = paused
    if interval_seconds is not None:
        row.interval_seconds = _clamp_interval(interval_seconds)
    if run_requested is not None:
        row.requested_run_at = utcnow() if run_requested else None
    row.updated_at = utcnow()
    await session.commit()
    return await read_worker_control(session, worker_name)


async def write_worker_snapshot(
    session: AsyncSession,
    worker_name: str,
    *,
    running: bool,
    enabled: bool,
    current_activity: Optional[str],
    interval_seconds: Optional[int] = None,
    last_run_at: Optional[datetime] = None,
    run_duration_seconds: Optional[float] = None,
    last_error: Optional[str] = _UNSET,
    stats: Optional[dict[str, Any]] = None,
) -> None:
    """Upsert the worker's status row.

    ``last_run_at`` and ``run_duration_seconds`` only move forward when given;
    ``last_error`` is kept from the previous cycle unless passed explicitly.
    """
    result = await session.execute(
        select(WorkerSnapshot).where(WorkerSnapshot.worker_name == worker_name)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = WorkerSnapshot(worker_name=worker_name, stats_json={})
        session.add(row)

    row.running = running
    row.enabled = enabled
    row.current_activity = current_activity
    row.updated_at = utcnow()
    if interval_seconds is not None:
        row.interval_seconds = int(interval_seconds)
    if last_run_at is not None:
        row.last_run_at = last_run_at
    if run_duration_seconds is not None:
        row.run_duration_seconds = float(run_duration_seconds)
    if last_error is not _UNSET:
        row.last_error = last_error
    if stats is not None:
        row.stats_json = stats
    await session.commit()


async def read_worker_snapshot(session: AsyncSession, worker_name: str) -> dict[str, Any]:
    result = await session.execute(
        select(WorkerSnapshot).where(WorkerSnapshot.worker_name == worker_name)
    )
    row = result.scalar_one_or_none()
    if row is None:
        control = await read_worker_control(session, worker_name)
        return {
            "worker_name": worker_name,
            "running": False,
            "enabled": control.active,
            "current_activity": "Waiting for worker startup.",
            "interval_seconds": control.interval_seconds,
            "last_run_at": None,
            "run_duration_seconds": None,
            "last_error": None,
            "stats": {},
            "updated_at": None,
        }

    return {
        "worker_name": row.worker_name,
        "running": bool(row.running),
        "enabled": bool(row.enabled),
        "current_activity": row.current_activity,
        "interval_seconds": row.interval_seconds,
        "last_run_at": _iso(row.last_run_at),
        "run_duration_seconds": row.run_duration_seconds,
        "last_error": row.last_error,
        "stats": row.stats_json or {},
        "updated_at": _iso(row.updated_at),
    }
