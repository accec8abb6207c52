"""Fighter (champion) mirror.

A scan finds the highest minted champion id through the NFT index, fetches
every id below it from the game API with bounded concurrency, and reconciles
the fighter, trait and lineage tables. Ids that fail permanently (not minted,
undecodable, retries exhausted) are simply absent from the result.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from config import settings
from models.database import AsyncSessionLocal
from models.fighter import Fighter
from services import store
from services.nft_index import NftIndexClient, nft_index_client
from services.redvillage import RedVillageClient, redvillage_client
from utils.concurrency import fetch_all
from utils.logger import get_logger
from utils.retry import PayloadDecodeError
from utils.utcnow import utcnow

logger = get_logger("fighter_sync")


@dataclass
class FighterScanResult:
    high_water_mark: int = 0
    fetched: int = 0
    persisted: int = 0
    traits_written: int = 0
    parents_written: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def fighter_row(fighter: Fighter, now: datetime) -> dict[str, Any]:
    return {
        "id": fighter.id,
        "wisdom_point": fighter.wisdom_point,
        "strength_from": fighter.strength.low,
        "strength_to": fighter.strength.high,
        "attack_from": fighter.attack.low,
        "attack_to": fighter.attack.high,
        "defence_from": fighter.defence.low,
        "defence_to": fighter.defence.high,
        "omega_from": fighter.omega.low,
        "omega_to": fighter.omega.high,
        "mum": fighter.mum,
        "last_updated": now,
    }


def trait_rows(fighter: Fighter) -> list[dict[str, Any]]:
    return [
        {"fighter_id": fighter.id, "trait_type": t.trait_type, "value": t.value}
        for t in fighter.traits
    ]


def parent_rows(fighter: Fighter) -> list[dict[str, Any]]:
    return [{"fighter_id": fighter.id, "parent_id": parent} for parent in fighter.parents]


class FighterSyncEngine:
    """Full rescan of every champion id below the collection high-water mark"""

    def __init__(
        self,
        client: Optional[RedVillageClient] = None,
        index_client: Optional[NftIndexClient] = None,
        session_factory=None,
        concurrency: Optional[int] = None,
        chunk_size: Optional[int] = None,
        baseline_id: Optional[int] = None,
        contract_address: Optional[str] = None,
    ):
        self.client = client or redvillage_client
        self.index_client = index_client or nft_index_client
        self.session_factory = session_factory or AsyncSessionLocal
        self.concurrency = concurrency or settings.MAX_CONCURRENT_REQUESTS
        self.chunk_size = chunk_size or settings.SYNC_CHUNK_SIZE
        self.baseline_id = settings.FIGHTER_BASELINE_ID if baseline_id is None else baseline_id
        self.contract_address = contract_address or settings.FIGHTER_CONTRACT_ADDRESS
        self._running = False
        self.last_result: Optional[FighterScanResult] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def discover_high_water_mark(self) -> int:
        """Walk the collection listing from the highest known id.

        Starts at the largest stored fighter id (or the baseline when the
        table is empty) and follows ``next_token`` until the last page; the
        mark is that page's start plus the number of tokens it lists.
        """
        start = await store.max_fighter_id(self.session_factory)
        if start is None:
            start = self.baseline_id

        while True:
            page = await self.index_client.get_nfts_for_collection(self.contract_address, start)
            next_id = page.next_token_id()
            if next_id is None:
                return start + len(page.nfts)
            if next_id <= start:
                raise PayloadDecodeError(
                    f"collection cursor did not advance ({start} -> {next_id})"
                )
            logger.debug("Following collection cursor", start=start, next_token=next_id)
            start = next_id

    async def scan(self) -> FighterScanResult:
        if self._running:
            raise RuntimeError("fighter scan already running")
        self._running = True
        started = time.monotonic()
        result = FighterScanResult()
        try:
            result.high_water_mark = await self.discover_high_water_mark()
            logger.info("Fighter scan started", high_water_mark=result.high_water_mark)

            pairs = await fetch_all(
                range(result.high_water_mark),
                self.client.get_fighter,
                self.concurrency,
                label="fighter",
            )
            fighters = sorted((fighter for _, fighter in pairs), key=lambda f: f.id)
            result.fetched = len(fighters)

            await self._persist(fighters, result)
        finally:
            self._running = False
            result.duration_seconds = round(time.monotonic() - started, 3)

        self.last_result = result
        logger.info("Fighter scan finished", **result.to_dict())
        return result

    async def _persist(self, fighters: list[Fighter], result: FighterScanResult) -> None:
        now = utcnow()
        for offset in range(0, len(fighters), self.chunk_size):
            chunk = fighters[offset : offset + self.chunk_size]
            ids = [f.id for f in chunk]

            result.persisted += await store.upsert_fighters(
                self.session_factory, [fighter_row(f, now) for f in chunk], self.chunk_size
            )
            result.traits_written += await store.replace_fighter_traits(
                self.session_factory,
                ids,
                [row for f in chunk for row in trait_rows(f)],
                self.chunk_size,
            )
            result.parents_written += await store.replace_fighter_parents(
                self.session_factory,
                ids,
                [row for f in chunk for row in parent_rows(f)],
                self.chunk_size,
            )


# Singleton instance
fighter_sync = FighterSyncEngine()
