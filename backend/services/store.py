"""Relational persistence for the mirror.

Every write runs in short transactions of at most ``chunk_size`` domain rows.
A failed chunk rolls back alone; chunks committed before it stay committed.

Child tables (traits, lineage edges, participants) are reconciled with
"delete every row of the parents in this chunk, then insert the fresh rows"
inside one transaction per chunk. Chunks are cut on parent boundaries so a
parent's rows never straddle two chunks.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Callable, Hashable, Iterable, Iterator, Optional, Sequence

from sqlalchemy import and_, delete, func, insert, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from models.database import (
    FailedPageLedger,
    Fighter,
    FighterParent,
    FighterTrait,
    ScanCheckpoint,
    Tournament,
    TournamentAttack,
    TournamentChampionStance,
    TournamentParticipant,
)
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger("store")

DEFAULT_CHUNK_SIZE = 100

FIGHTER_MUTABLE_COLUMNS = (
    "wisdom_point",
    "strength_from",
    "strength_to",
    "attack_from",
    "attack_to",
    "defence_from",
    "defence_to",
    "omega_from",
    "omega_to",
    "last_updated",
)

TOURNAMENT_MUTABLE_COLUMNS = (
    "currency",
    "fee_percentage",
    "buy_in",
    "top_up",
    "key",
    "level",
    "modified",
    "start_time",
    "restrictions",
    "status",
    "name",
    "legacy",
    "tournament_type",
    "class_info",
    "solo_optionals",
    "meta_last_updated",
)

STANCE_MUTABLE_COLUMNS = ("stance", "first_wins", "second_wins", "total_fought")

SessionFactory = Callable[[], AsyncSession]
Row = dict[str, Any]


# ==================== HELPERS ====================


def chunked(rows: Sequence[Row], size: int) -> Iterator[Sequence[Row]]:
    size = max(1, int(size))
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def group_chunks(
    keys: Iterable[Hashable],
    rows: Iterable[Row],
    key_of: Callable[[Row], Hashable],
    size: int,
) -> Iterator[tuple[list[Hashable], list[Row]]]:
    """Split rows into chunks of whole parent groups.

    ``keys`` lists every parent being reconciled, including parents whose
    fresh snapshot is empty (their old rows must still be removed). A chunk
    holds at most ``size`` parents and, unless one parent alone is larger,
    at most ``size`` rows.
    """
    size = max(1, int(size))
    groups: "OrderedDict[Hashable, list[Row]]" = OrderedDict((key, []) for key in keys)
    for row in rows:
        groups.setdefault(key_of(row), []).append(row)

    chunk_keys: list[Hashable] = []
    chunk_rows: list[Row] = []
    for key, group in groups.items():
        if chunk_keys and (
            len(chunk_keys) >= size or len(chunk_rows) + len(group) > size
        ):
            yield chunk_keys, chunk_rows
            chunk_keys, chunk_rows = [], []
        chunk_keys.append(key)
        chunk_rows.extend(group)
    if chunk_keys:
        yield chunk_keys, chunk_rows


def _dialect_insert(session: AsyncSession, model):
    """INSERT construct supporting ON CONFLICT for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert(model)
    if dialect == "postgresql":
        return pg_insert(model)
    raise NotImplementedError(f"upserts are not supported on {dialect}")


async def _upsert(
    session_factory: SessionFactory,
    model,
    rows: Sequence[Row],
    key_columns: Sequence[str],
    update_columns: Sequence[str],
    chunk_size: int,
) -> int:
    written = 0
    for chunk in chunked(rows, chunk_size):
        async with session_factory() as session:
            async with session.begin():
                stmt = _dialect_insert(session, model).values(list(chunk))
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(key_columns),
                    set_={name: stmt.excluded[name] for name in update_columns},
                )
                await session.execute(stmt)
        written += len(chunk)
    return written


async def _replace_children(
    session_factory: SessionFactory,
    model,
    parent_columns: Sequence[str],
    parent_keys: Iterable[tuple],
    rows: Sequence[Row],
    chunk_size: int,
) -> int:
    columns = [getattr(model, name) for name in parent_columns]

    def key_of(row: Row) -> tuple:
        return tuple(row[name] for name in parent_columns)

    written = 0
    for keys, chunk_rows in group_chunks(parent_keys, rows, key_of, chunk_size):
        if len(columns) == 1:
            condition = columns[0].in_([key[0] for key in keys])
        else:
            condition = or_(
                *[and_(*[col == value for col, value in zip(columns, key)]) for key in keys]
            )
        async with session_factory() as session:
            async with session.begin():
                await session.execute(delete(model).where(condition))
                if chunk_rows:
                    await session.execute(insert(model), chunk_rows)
        written += len(chunk_rows)
    return written


def _dedupe(rows: Iterable[Row], key_columns: Sequence[str]) -> list[Row]:
    """Keep the last row per key; one statement may not touch a key twice."""
    unique: "OrderedDict[tuple, Row]" = OrderedDict()
    for row in rows:
        unique[tuple(row[name] for name in key_columns)] = row
    return list(unique.values())


# ==================== FIGHTERS ====================


async def max_fighter_id(session_factory: SessionFactory) -> Optional[int]:
    async with session_factory() as session:
        result = await session.execute(select(func.max(Fighter.id)))
        value = result.scalar_one_or_none()
    return int(value) if value is not None else None


async def upsert_fighters(
    session_factory: SessionFactory, rows: Sequence[Row], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> int:
    """Insert fighters; existing ids only get their stats and timestamp refreshed."""
    return await _upsert(
        session_factory,
        Fighter,
        _dedupe(rows, ("id",)),
        ("id",),
        FIGHTER_MUTABLE_COLUMNS,
        chunk_size,
    )


async def replace_fighter_traits(
    session_factory: SessionFactory,
    fighter_ids: Iterable[int],
    rows: Sequence[Row],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    return await _replace_children(
        session_factory,
        FighterTrait,
        ("fighter_id",),
        [(fid,) for fid in fighter_ids],
        _dedupe(rows, ("fighter_id", "trait_type")),
        chunk_size,
    )


async def replace_fighter_parents(
    session_factory: SessionFactory,
    fighter_ids: Iterable[int],
    rows: Sequence[Row],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    return await _replace_children(
        session_factory,
        FighterParent,
        ("fighter_id",),
        [(fid,) for fid in fighter_ids],
        _dedupe(rows, ("fighter_id", "parent_id")),
        chunk_size,
    )


# ==================== TOURNAMENTS ====================


async def count_tournaments(session_factory: SessionFactory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(Tournament))
        return int(result.scalar_one())


async def upsert_tournaments(
    session_factory: SessionFactory, rows: Sequence[Row], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> int:
    return await _upsert(
        session_factory,
        Tournament,
        _dedupe(rows, ("id", "service_id")),
        ("id", "service_id"),
        TOURNAMENT_MUTABLE_COLUMNS,
        chunk_size,
    )


async def replace_tournament_participants(
    session_factory: SessionFactory,
    tournament_keys: Iterable[tuple[int, int]],
    rows: Sequence[Row],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    return await _replace_children(
        session_factory,
        TournamentParticipant,
        ("tournament_id", "service_id"),
        list(tournament_keys),
        _dedupe(rows, ("tournament_id", "service_id", "fighter_id")),
        chunk_size,
    )


async def upsert_champion_stances(
    session_factory: SessionFactory, rows: Sequence[Row], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> int:
    return await _upsert(
        session_factory,
        TournamentChampionStance,
        _dedupe(rows, ("tournament_id", "service_id", "fighter_id")),
        ("tournament_id", "service_id", "fighter_id"),
        STANCE_MUTABLE_COLUMNS,
        chunk_size,
    )


async def insert_attacks(
    session_factory: SessionFactory, rows: Sequence[Row], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> int:
    """Insert battle-log rows; rows whose key already exists are left untouched."""
    key_columns = ["tournament_id", "service_id", "round", "order"]
    submitted = 0
    for chunk in chunked(rows, chunk_size):
        async with session_factory() as session:
            async with session.begin():
                stmt = _dialect_insert(session, TournamentAttack).values(list(chunk))
                stmt = stmt.on_conflict_do_nothing(index_elements=key_columns)
                await session.execute(stmt)
        submitted += len(chunk)
    return submitted


# ==================== LEDGER & CHECKPOINT ====================


async def record_failed_page(session_factory: SessionFactory, page_size: int, page_index: int) -> None:
    async with session_factory() as session:
        async with session.begin():
            stmt = _dialect_insert(session, FailedPageLedger).values(
                page_size=page_size, page_index=page_index, recorded_at=utcnow()
            )
            await session.execute(
                stmt.on_conflict_do_nothing(index_elements=["page_size", "page_index"])
            )


async def list_failed_pages(session_factory: SessionFactory) -> list[tuple[int, int]]:
    async with session_factory() as session:
        result = await session.execute(
            select(FailedPageLedger.page_size, FailedPageLedger.page_index).order_by(
                FailedPageLedger.page_size, FailedPageLedger.page_index
            )
        )
        return [(int(size), int(index)) for size, index in result.all()]


async def remove_failed_page(session_factory: SessionFactory, page_size: int, page_index: int) -> None:
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                delete(FailedPageLedger).where(
                    FailedPageLedger.page_size == page_size,
                    FailedPageLedger.page_index == page_index,
                )
            )


async def read_checkpoint(session_factory: SessionFactory) -> Optional[tuple[int, int]]:
    async with session_factory() as session:
        result = await session.execute(
            select(ScanCheckpoint.page_size, ScanCheckpoint.page_index)
            .order_by(ScanCheckpoint.updated_at.desc())
            .limit(1)
        )
        row = result.first()
    if row is None:
        return None
    return int(row[0]), int(row[1])


async def replace_checkpoint(session_factory: SessionFactory, page_size: int, page_index: int) -> None:
    """Swap the checkpoint row atomically (clear then insert)."""
    async with session_factory() as session:
        async with session.begin():
            await session.execute(delete(ScanCheckpoint))
            session.add(
                ScanCheckpoint(page_size=page_size, page_index=page_index, updated_at=utcnow())
            )
