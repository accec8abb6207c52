"""Tournament mirror.

A scan first retries every listing page recorded in the failed-page ledger,
then walks the listing forward from the checkpoint (or from an estimate based
on how many tournaments are stored) until upstream reports no next page, and
finally moves the checkpoint to the last page it reached.

Per page: decode each item on its own, drop cancelled tournaments, persist
tournaments and participants, then fetch and persist the battle detail of
every retained tournament. A page whose fetch or persistence fails goes into
the ledger; a failed detail is only logged.
"""

from __future__ import annotations

import enum
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from config import settings
from models.database import AsyncSessionLocal
from models.pagination import TournamentPage
from models.tournament import Tournament, TournamentDetail, decode_tournament
from services import store
from services.redvillage import RedVillageClient, redvillage_client
from utils.concurrency import fetch_all
from utils.logger import get_logger
from utils.retry import PayloadDecodeError, PermanentFetchError
from utils.utcnow import utcnow

logger = get_logger("tournament_sync")


class ScanState(enum.Enum):
    IDLE = "idle"
    RETRYING_FAILED_PAGES = "retrying_failed_pages"
    FORWARD_SCANNING = "forward_scanning"
    DONE = "done"


@dataclass
class TournamentScanResult:
    start_page_index: int = 0
    final_page_index: int = 0
    pages_fetched: int = 0
    pages_failed: int = 0
    ledger_pages_retried: int = 0
    ledger_pages_recovered: int = 0
    items_dropped: int = 0
    cancelled_skipped: int = 0
    tournaments_persisted: int = 0
    details_persisted: int = 0
    details_failed: int = 0
    stopped_at_page_cap: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def tournament_row(tournament: Tournament, now: datetime) -> dict[str, Any]:
    return {
        "id": tournament.tournament_id,
        "service_id": tournament.service_id,
        "currency": tournament.currency,
        "fee_percentage": tournament.fee_percentage,
        "buy_in": tournament.buy_in,
        "top_up": tournament.top_up,
        "key": tournament.key,
        "level": tournament.level,
        "modified": tournament.modified,
        "start_time": tournament.start_time,
        "restrictions": tournament.restrictions,
        "status": tournament.status,
        "name": tournament.name,
        "legacy": tournament.legacy,
        "tournament_type": tournament.tournament_type,
        "class_info": tournament.class_info,
        "solo_optionals": tournament.solo_optionals,
        "meta_last_updated": now,
    }


def participant_rows(tournament: Tournament) -> list[dict[str, Any]]:
    return [
        {
            "tournament_id": tournament.tournament_id,
            "service_id": tournament.service_id,
            "fighter_id": p.fighter_id,
            "account": p.account,
        }
        for p in tournament.participants
    ]


def stance_rows(tournament: Tournament, detail: TournamentDetail) -> list[dict[str, Any]]:
    return [
        {
            "tournament_id": tournament.tournament_id,
            "service_id": tournament.service_id,
            "fighter_id": c.token_id,
            "stance": c.stance,
            "first_wins": c.first_wins,
            "second_wins": c.second_wins,
            "total_fought": c.total_fought,
        }
        for c in detail.champions
    ]


def attack_rows(tournament: Tournament, detail: TournamentDetail) -> list[dict[str, Any]]:
    rows = []
    for battle in detail.battles:
        for champion in battle.champions:
            for attack in champion.attack:
                rows.append(
                    {
                        "tournament_id": tournament.tournament_id,
                        "service_id": tournament.service_id,
                        "round": battle.round,
                        "order": attack.order,
                        "fighter_id": champion.id,
                        "special_attack": attack.special_attack,
                        "special_defend": attack.special_defend,
                        "missed_hit": attack.missed_hit,
                        "damage": attack.damage,
                    }
                )
    return rows


class TournamentSyncEngine:
    """Incremental listing walk with a failed-page ledger and a checkpoint"""

    def __init__(
        self,
        client: Optional[RedVillageClient] = None,
        session_factory=None,
        page_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        chunk_size: Optional[int] = None,
        max_pages_per_scan: Optional[int] = None,
    ):
        self.client = client or redvillage_client
        self.session_factory = session_factory or AsyncSessionLocal
        self.page_size = page_size or settings.TOURNAMENT_PAGE_SIZE
        self.concurrency = concurrency or settings.MAX_CONCURRENT_REQUESTS
        self.chunk_size = chunk_size or settings.SYNC_CHUNK_SIZE
        self.max_pages_per_scan = max_pages_per_scan or settings.TOURNAMENT_MAX_PAGES_PER_SCAN
        self.state = ScanState.IDLE
        self._running = False
        self.last_result: Optional[TournamentScanResult] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def scan(self) -> TournamentScanResult:
        if self._running:
            raise RuntimeError("tournament scan already running")
        self._running = True
        started = time.monotonic()
        result = TournamentScanResult()
        try:
            self.state = ScanState.RETRYING_FAILED_PAGES
            await self._retry_failed_pages(result)

            self.state = ScanState.FORWARD_SCANNING
            await self._scan_forward(result)

            await store.replace_checkpoint(
                self.session_factory, self.page_size, result.final_page_index
            )
            self.state = ScanState.DONE
        finally:
            self._running = False
            if self.state is not ScanState.DONE:
                self.state = ScanState.IDLE
            result.duration_seconds = round(time.monotonic() - started, 3)

        self.last_result = result
        logger.info("Tournament scan finished", **result.to_dict())
        return result

    async def start_page_index(self) -> int:
        checkpoint = await store.read_checkpoint(self.session_factory)
        if checkpoint is not None:
            cp_size, cp_index = checkpoint
            return cp_index * cp_size // self.page_size
        return await store.count_tournaments(self.session_factory) // self.page_size

    # ==================== PHASES ====================

    async def _retry_failed_pages(self, result: TournamentScanResult) -> None:
        failed = await store.list_failed_pages(self.session_factory)
        if failed:
            logger.info("Retrying failed tournament pages", count=len(failed))

        for page_size, page_index in failed:
            result.ledger_pages_retried += 1
            page = await self._fetch_page(page_size, page_index)
            if page is None:
                continue
            if await self._ingest_page(page, page_size, page_index, result):
                await store.remove_failed_page(self.session_factory, page_size, page_index)
                result.ledger_pages_recovered += 1

    async def _scan_forward(self, result: TournamentScanResult) -> None:
        page_index = await self.start_page_index()
        result.start_page_index = page_index
        logger.info("Tournament scan started", page_size=self.page_size, page_index=page_index)

        pages_visited = 0
        while True:
            if pages_visited >= self.max_pages_per_scan:
                result.stopped_at_page_cap = True
                logger.warning(
                    "Tournament scan hit page cap",
                    max_pages=self.max_pages_per_scan,
                    page_index=page_index,
                )
                break
            pages_visited += 1

            page = await self._fetch_page(self.page_size, page_index)
            if page is None:
                result.pages_failed += 1
                await store.record_failed_page(self.session_factory, self.page_size, page_index)
                page_index += 1
                continue

            result.pages_fetched += 1
            if not await self._ingest_page(page, self.page_size, page_index, result):
                result.pages_failed += 1
                await store.record_failed_page(self.session_factory, self.page_size, page_index)

            if not page.pagination.has_next_page:
                break
            page_index += 1

        result.final_page_index = page_index

    # ==================== PAGE STEP ====================

    async def _fetch_page(self, page_size: int, page_index: int) -> Optional[TournamentPage]:
        try:
            return await self.client.get_tournament_page(page_size, page_index)
        except PermanentFetchError as e:
            logger.warning(
                "Tournament page fetch failed",
                page_size=page_size,
                page_index=page_index,
                reason=e.reason,
                error=str(e.cause or e),
            )
            return None

    def _decode_items(self, items: list[Any], result: TournamentScanResult) -> list[Tournament]:
        kept: list[Tournament] = []
        for item in items:
            try:
                tournament = decode_tournament(item)
            except PayloadDecodeError as e:
                result.items_dropped += 1
                logger.warning("Dropping undecodable tournament", error=str(e))
                continue
            if tournament.is_cancelled:
                result.cancelled_skipped += 1
                continue
            kept.append(tournament)
        return kept

    async def _ingest_page(
        self,
        page: TournamentPage,
        page_size: int,
        page_index: int,
        result: TournamentScanResult,
    ) -> bool:
        """Persist one fetched page. Returns False when its persistence failed."""
        tournaments = self._decode_items(page.items, result)
        if not tournaments:
            return True

        now = utcnow()
        try:
            await store.upsert_tournaments(
                self.session_factory,
                [tournament_row(t, now) for t in tournaments],
                self.chunk_size,
            )
            await store.replace_tournament_participants(
                self.session_factory,
                [t.identity for t in tournaments],
                [row for t in tournaments for row in participant_rows(t)],
                self.chunk_size,
            )
        except SQLAlchemyError as e:
            logger.error(
                "Tournament page persistence failed",
                page_size=page_size,
                page_index=page_index,
                error=str(e),
            )
            return False

        result.tournaments_persisted += len(tournaments)
        await self._sync_details(tournaments, result)
        return True

    async def _sync_details(self, tournaments: list[Tournament], result: TournamentScanResult) -> None:
        async def fetch_detail(tournament: Tournament) -> TournamentDetail:
            return await self.client.get_tournament_detail(
                tournament.service_id, tournament.tournament_id
            )

        pairs = await fetch_all(
            tournaments, fetch_detail, self.concurrency, label="tournament detail"
        )
        result.details_failed += len(tournaments) - len(pairs)

        for tournament, detail in pairs:
            try:
                await store.upsert_champion_stances(
                    self.session_factory, stance_rows(tournament, detail), self.chunk_size
                )
                await store.insert_attacks(
                    self.session_factory, attack_rows(tournament, detail), self.chunk_size
                )
            except SQLAlchemyError as e:
                result.details_failed += 1
                logger.error(
                    "Tournament detail persistence failed",
                    tournament_id=tournament.tournament_id,
                    service_id=tournament.service_id,
                    error=str(e),
                )
                continue
            result.details_persisted += 1


# Singleton instance
tournament_sync = TournamentSyncEngine()
