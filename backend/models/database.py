from sqlalchemy import (
    Column,
    String,
    Integer,
    BigInteger,
    Boolean,
    DateTime,
    Text,
    JSON,
    Float,
    ForeignKeyConstraint,
    Enum as SQLEnum,
    Index,
    event,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

from config import settings
from models.tournament import TournamentStatus
from models.types import Uint256
from utils.utcnow import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==================== FIGHTERS ====================


class Fighter(Base):
    """Champion NFT with its current stat ranges"""

    __tablename__ = "fighter"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    wisdom_point = Column(Integer, nullable=False)
    strength_from = Column(Integer, nullable=False)
    strength_to = Column(Integer, nullable=False)
    attack_from = Column(Integer, nullable=False)
    attack_to = Column(Integer, nullable=False)
    defence_from = Column(Integer, nullable=False)
    defence_to = Column(Integer, nullable=False)
    omega_from = Column(Integer, nullable=False)
    omega_to = Column(Integer, nullable=False)
    mum = Column(BigInteger, nullable=True)  # original mum from the lineage node
    last_updated = Column(DateTime, nullable=False, default=utcnow)


class FighterTrait(Base):
    """Free-form metadata attribute; the set per fighter mirrors upstream exactly"""

    __tablename__ = "fighter_trait"

    fighter_id = Column(BigInteger, primary_key=True, autoincrement=False)
    trait_type = Column(String, primary_key=True)
    value = Column(String, nullable=False)

    __table_args__ = (
        ForeignKeyConstraint(["fighter_id"], ["fighter.id"]),
    )


class FighterParent(Base):
    """Lineage edge: fighter_id was summoned from parent_id"""

    __tablename__ = "fighter_parent"

    fighter_id = Column(BigInteger, primary_key=True, autoincrement=False)
    parent_id = Column(BigInteger, primary_key=True, autoincrement=False)

    __table_args__ = (
        ForeignKeyConstraint(["fighter_id"], ["fighter.id"]),
        Index("idx_fighter_parent_parent", "parent_id"),
    )


# ==================== TOURNAMENTS ====================


class Tournament(Base):
    """Completed tournament, keyed by (tournament id, mode/service id)"""

    __tablename__ = "tournament"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    service_id = Column(Integer, primary_key=True, autoincrement=False)
    currency = Column(String(42), nullable=False)
    fee_percentage = Column(Integer, nullable=False)
    buy_in = Column(Uint256, nullable=False)
    top_up = Column(Uint256, nullable=False)
    key = Column(String, nullable=False)
    level = Column(String, nullable=False)
    modified = Column(DateTime, nullable=False)
    start_time = Column(DateTime, nullable=False)
    restrictions = Column(JSON, nullable=False)
    status = Column(SQLEnum(TournamentStatus), nullable=False)

    # Variant-specific
    name = Column(String, nullable=True)
    legacy = Column(Boolean, nullable=True)
    tournament_type = Column(String, nullable=True)
    class_info = Column(JSON, nullable=True)
    solo_optionals = Column(JSON, nullable=True)

    meta_last_updated = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_tournament_service_modified", "service_id", "modified"),
    )


class TournamentParticipant(Base):
    """Entrant of a tournament; account is only known for PvP modes"""

    __tablename__ = "tournament_participant"

    tournament_id = Column(BigInteger, primary_key=True, autoincrement=False)
    service_id = Column(Integer, primary_key=True, autoincrement=False)
    fighter_id = Column(BigInteger, primary_key=True, autoincrement=False)
    account = Column(String(42), nullable=True)

    __table_args__ = (
        ForeignKeyConstraint(
            ["tournament_id", "service_id"], ["tournament.id", "tournament.service_id"]
        ),
        Index("idx_participant_fighter", "fighter_id"),
    )


class TournamentChampionStance(Base):
    """Per-fighter stance and win counters reported by the battle detail"""

    __tablename__ = "tournament_champion_stance"

    tournament_id = Column(BigInteger, primary_key=True, autoincrement=False)
    service_id = Column(Integer, primary_key=True, autoincrement=False)
    fighter_id = Column(BigInteger, primary_key=True, autoincrement=False)
    stance = Column(Integer, nullable=False)
    first_wins = Column(Integer, nullable=True)
    second_wins = Column(Integer, nullable=True)
    total_fought = Column(Integer, nullable=True)

    __table_args__ = (
        ForeignKeyConstraint(
            ["tournament_id", "service_id"], ["tournament.id", "tournament.service_id"]
        ),
    )


class TournamentAttack(Base):
    """Single hit in a tournament battle log. Rows are never updated."""

    __tablename__ = "tournament_attack"

    tournament_id = Column(BigInteger, primary_key=True, autoincrement=False)
    service_id = Column(Integer, primary_key=True, autoincrement=False)
    round = Column(Integer, primary_key=True, autoincrement=False)
    order = Column(Integer, primary_key=True, autoincrement=False)
    fighter_id = Column(BigInteger, nullable=False)
    special_attack = Column(Boolean, nullable=False)
    special_defend = Column(Boolean, nullable=False)
    missed_hit = Column(Boolean, nullable=False)
    damage = Column(BigInteger, nullable=False)

    __table_args__ = (
        ForeignKeyConstraint(
            ["tournament_id", "service_id"], ["tournament.id", "tournament.service_id"]
        ),
        Index("idx_attack_fighter", "fighter_id"),
    )


# ==================== SYNC BOOKKEEPING ====================


class FailedPageLedger(Base):
    """Tournament listing page whose fetch or persistence failed"""

    __tablename__ = "failed_page_ledger"

    page_size = Column(Integer, primary_key=True, autoincrement=False)
    page_index = Column(Integer, primary_key=True, autoincrement=False)
    recorded_at = Column(DateTime, default=utcnow)


class ScanCheckpoint(Base):
    """Last fully processed tournament listing page (single row)"""

    __tablename__ = "scan_checkpoint"

    page_size = Column(Integer, primary_key=True, autoincrement=False)
    page_index = Column(Integer, primary_key=True, autoincrement=False)
    updated_at = Column(DateTime, default=utcnow)


# ==================== WORKER STATUS ====================


class WorkerControl(Base):
    """Generic worker control row for independently owned worker loops."""

    __tablename__ = "worker_control"

    worker_name = Column(String, primary_key=True)
    is_enabled = Column(Boolean, default=True)
    is_paused = Column(Boolean, default=False)
    interval_seconds = Column(Integer, default=7200)
    requested_run_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class WorkerSnapshot(Base):
    """Latest worker status snapshot."""

    __tablename__ = "worker_snapshot"

    worker_name = Column(String, primary_key=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    last_run_at = Column(DateTime, nullable=True)
    running = Column(Boolean, default=False)
    enabled = Column(Boolean, default=True)
    current_activity = Column(String, nullable=True)
    interval_seconds = Column(Integer, default=7200)
    run_duration_seconds = Column(Float, nullable=True)
    last_error = Column(Text, nullable=True)
    stats_json = Column(JSON, default=dict)


# ==================== DATABASE SETUP ====================

# SQLite-specific: improve concurrency (WAL + busy_timeout applied in _set_sqlite_pragma)
_engine_kw: dict = {"echo": False}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}  # Wait up to 30s when DB is locked

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite for better concurrent access (WAL mode, busy timeout)."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")  # Allow concurrent reads during writes
    cursor.execute("PRAGMA busy_timeout=30000")  # Wait up to 30s when locked (ms)
    cursor.close()


# Apply pragmas on each new SQLite connection
event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


async def init_database(engine=None):
    """Create any missing tables."""
    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")
