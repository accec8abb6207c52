import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.worker_state import (  # noqa: E402
    MAX_INTERVAL_SECONDS,
    MIN_INTERVAL_SECONDS,
    read_worker_control,
    read_worker_snapshot,
    update_worker_control,
    write_worker_snapshot,
)
from workers import mirror_worker  # noqa: E402


class _Result:
    def __init__(self, **values):
        self.values = values

    def to_dict(self):
        return dict(self.values)


class _FakeEngine:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    async def scan(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_run_cycle_continues_after_failed_scan():
    fighters = _FakeEngine(error=RuntimeError("index down"))
    tournaments = _FakeEngine(result=_Result(pages_fetched=4))

    stats, errors = await mirror_worker.run_cycle(fighters, tournaments)

    assert fighters.calls == 1
    assert tournaments.calls == 1
    assert stats == {"tournaments": {"pages_fetched": 4}}
    assert errors == ["fighters: index down"]


@pytest.mark.asyncio
async def test_run_cycle_skips_disabled_scans():
    fighters = _FakeEngine(result=_Result(fetched=1))
    tournaments = _FakeEngine(result=_Result(pages_fetched=1))

    stats, errors = await mirror_worker.run_cycle(
        fighters, tournaments, fighters_enabled=False
    )

    assert fighters.calls == 0
    assert list(stats) == ["tournaments"]
    assert errors == []


@pytest.mark.asyncio
async def test_run_once_performs_single_cycle_and_writes_snapshot(session_factory):
    fighters = _FakeEngine(result=_Result(fetched=3))
    tournaments = _FakeEngine(error=RuntimeError("listing unavailable"))

    stats = await mirror_worker._run_loop(
        session_factory,
        run_once=True,
        fighter_engine=fighters,
        tournament_engine=tournaments,
    )

    assert stats == {"fighters": {"fetched": 3}}
    async with session_factory() as session:
        snapshot = await read_worker_snapshot(session, "mirror")
    assert snapshot["running"] is False
    assert snapshot["last_error"] == "tournaments: listing unavailable"
    assert snapshot["stats"] == {"fighters": {"fetched": 3}}
    assert snapshot["last_run_at"] is not None


@pytest.mark.asyncio
async def test_worker_respects_pause_without_manual_request(session_factory, monkeypatch):
    async with session_factory() as session:
        await update_worker_control(session, "mirror", paused=True)
    fighters = _FakeEngine(result=_Result())
    tournaments = _FakeEngine(result=_Result())
    monkeypatch.setattr(
        mirror_worker.asyncio, "sleep", AsyncMock(side_effect=asyncio.CancelledError())
    )

    with pytest.raises(asyncio.CancelledError):
        await mirror_worker._run_loop(
            session_factory, run_once=False, fighter_engine=fighters, tournament_engine=tournaments
        )

    assert fighters.calls == 0
    assert tournaments.calls == 0
    async with session_factory() as session:
        snapshot = await read_worker_snapshot(session, "mirror")
    assert snapshot["current_activity"] == "Paused"


@pytest.mark.asyncio
async def test_manual_request_runs_while_paused_and_is_cleared(session_factory, monkeypatch):
    async with session_factory() as session:
        await update_worker_control(session, "mirror", paused=True, run_requested=True)
    fighters = _FakeEngine(result=_Result(fetched=0))
    tournaments = _FakeEngine(result=_Result(pages_fetched=0))
    monkeypatch.setattr(
        mirror_worker.asyncio, "sleep", AsyncMock(side_effect=asyncio.CancelledError())
    )

    with pytest.raises(asyncio.CancelledError):
        await mirror_worker._run_loop(
            session_factory, run_once=False, fighter_engine=fighters, tournament_engine=tournaments
        )

    assert fighters.calls == 1
    assert tournaments.calls == 1
    async with session_factory() as session:
        control = await read_worker_control(session, "mirror")
    assert control.requested_run_at is None
    assert control.is_paused is True


@pytest.mark.asyncio
async def test_missing_control_row_defaults_to_enabled(session_factory):
    async with session_factory() as session:
        control = await read_worker_control(session, "mirror", default_interval=900)

    assert control.active is True
    assert control.run_requested is False
    assert control.interval_seconds == 900


@pytest.mark.asyncio
async def test_interval_override_is_clamped(session_factory):
    async with session_factory() as session:
        low = await update_worker_control(session, "mirror", interval_seconds=5)
        high = await update_worker_control(session, "mirror", interval_seconds=10**9)

    assert low.interval_seconds == MIN_INTERVAL_SECONDS
    assert high.interval_seconds == MAX_INTERVAL_SECONDS


@pytest.mark.asyncio
async def test_idle_snapshot_keeps_previous_cycle_outcome(session_factory):
    async with session_factory() as session:
        await write_worker_snapshot(
            session,
            "mirror",
            running=True,
            enabled=True,
            current_activity="Last mirror cycle error: fighters: boom",
            last_error="fighters: boom",
            stats={"tournaments": {"pages_fetched": 2}},
        )
        await write_worker_snapshot(
            session, "mirror", running=True, enabled=True, current_activity="Idle"
        )
        snapshot = await read_worker_snapshot(session, "mirror")

    assert snapshot["current_activity"] == "Idle"
    assert snapshot["last_error"] == "fighters: boom"
    assert snapshot["stats"] == {"tournaments": {"pages_fetched": 2}}


@pytest.mark.asyncio
async def test_startup_reports_previous_cycle(session_factory, monkeypatch):
    async with session_factory() as session:
        await write_worker_snapshot(
            session,
            "mirror",
            running=False,
            enabled=True,
            current_activity="Idle",
            last_error="fighters: boom",
        )
    fake_logger = MagicMock()
    monkeypatch.setattr(mirror_worker, "logger", fake_logger)

    await mirror_worker._run_loop(
        session_factory,
        run_once=True,
        fighter_engine=_FakeEngine(result=_Result()),
        tournament_engine=_FakeEngine(result=_Result()),
    )

    startup = fake_logger.info.call_args_list[0]
    assert startup.args == ("Mirror worker started",)
    assert startup.kwargs["last_error"] == "fighters: boom"
