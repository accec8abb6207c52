import sys
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from models.database import Fighter as FighterRow, FighterParent, FighterTrait  # noqa: E402
from models.fighter import Fighter  # noqa: E402
from services import store  # noqa: E402
from services.fighter_sync import FighterScanResult, FighterSyncEngine  # noqa: E402
from services.nft_index import CollectionPage  # noqa: E402
from services.redvillage import RedVillageClient  # noqa: E402
from utils.retry import PayloadDecodeError, PermanentFetchError, RetryConfig  # noqa: E402


class _FakeGameClient:
    def __init__(self, payloads):
        self.payloads = payloads
        self.requested = []

    async def get_fighter(self, fighter_id):
        self.requested.append(fighter_id)
        if fighter_id not in self.payloads:
            raise PermanentFetchError(f"fighter {fighter_id}", reason="not_found")
        return Fighter.from_api_response(self.payloads[fighter_id])


class _FakeIndexClient:
    def __init__(self, pages):
        self.pages = pages
        self.starts = []

    async def get_nfts_for_collection(self, contract_address, start_token):
        self.starts.append(start_token)
        return self.pages[start_token]


def _page(count, next_token=None):
    return CollectionPage(nfts=[{"id": {"tokenId": hex(i)}} for i in range(count)], next_token=next_token)


def _engine(session_factory, game, index, baseline_id=0):
    return FighterSyncEngine(
        client=game,
        index_client=index,
        session_factory=session_factory,
        concurrency=4,
        chunk_size=2,
        baseline_id=baseline_id,
        contract_address="0x57f698d99d964aef66d974739b98ec694724b1b8",
    )


async def _rows(session_factory, stmt):
    async with session_factory() as session:
        return list((await session.execute(stmt)).all())


class TestDiscoverHighWaterMark:
    @pytest.mark.asyncio
    async def test_empty_table_starts_at_baseline_and_follows_cursor(self, session_factory):
        index = _FakeIndexClient({29000: _page(100, next_token="0x71c4"), 29124: _page(7)})
        engine = _engine(session_factory, _FakeGameClient({}), index, baseline_id=29000)

        assert await engine.discover_high_water_mark() == 29131
        assert index.starts == [29000, 29124]

    @pytest.mark.asyncio
    async def test_starts_from_highest_stored_fighter(self, session_factory, fighter_payload):
        game = _FakeGameClient({500: fighter_payload(500)})
        engine = _engine(session_factory, game, _FakeIndexClient({}), baseline_id=29000)
        await engine._persist([await game.get_fighter(500)], FighterScanResult())

        engine.index_client = _FakeIndexClient({500: _page(3)})

        assert await engine.discover_high_water_mark() == 503

    @pytest.mark.asyncio
    async def test_cursor_must_advance(self, session_factory):
        index = _FakeIndexClient({10: _page(1, next_token="a")})
        engine = _engine(session_factory, _FakeGameClient({}), index, baseline_id=10)

        with pytest.raises(PayloadDecodeError):
            await engine.discover_high_water_mark()


class TestScan:
    @pytest.mark.asyncio
    async def test_scan_mirrors_every_minted_fighter(self, session_factory, fighter_payload):
        payloads = {
            0: fighter_payload(0),
            1: fighter_payload(1),
            2: fighter_payload(2, traits={}),
            4: fighter_payload(4, parents=[0, 1], mum=0),
            5: fighter_payload(5),
        }
        game = _FakeGameClient(payloads)
        engine = _engine(session_factory, game, _FakeIndexClient({0: _page(6)}))

        result = await engine.scan()

        assert result.high_water_mark == 6
        assert sorted(game.requested) == [0, 1, 2, 3, 4, 5]
        assert result.fetched == 5
        assert result.persisted == 5
        ids = [row[0] for row in await _rows(session_factory, select(FighterRow.id).order_by(FighterRow.id))]
        assert ids == [0, 1, 2, 4, 5]
        assert await _rows(
            session_factory, select(FighterParent.fighter_id, FighterParent.parent_id).order_by(FighterParent.parent_id)
        ) == [(4, 0), (4, 1)]
        traits = await _rows(session_factory, select(FighterTrait.fighter_id))
        assert len(traits) == 8
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent_and_reconciles_traits(self, session_factory, fighter_payload):
        payloads = {
            0: fighter_payload(0, traits={"A": "a", "B": "b"}),
            1: fighter_payload(1, parents=[7, 8]),
        }
        game = _FakeGameClient(payloads)
        index = _FakeIndexClient({0: _page(2), 1: _page(1)})
        engine = _engine(session_factory, game, index)

        await engine.scan()
        payloads[0] = fighter_payload(0, traits={"B": "b", "C": "c"})
        second = await engine.scan()

        assert index.starts == [0, 1]
        assert second.high_water_mark == 2
        assert await _rows(session_factory, select(FighterRow.id).order_by(FighterRow.id)) == [(0,), (1,)]
        traits = await _rows(
            session_factory,
            select(FighterTrait.trait_type).where(FighterTrait.fighter_id == 0).order_by(FighterTrait.trait_type),
        )
        assert [t for (t,) in traits] == ["B", "C"]
        parents = await _rows(session_factory, select(FighterParent.parent_id).where(FighterParent.fighter_id == 1))
        assert sorted(p for (p,) in parents) == [7, 8]

    @pytest.mark.asyncio
    async def test_refuses_to_overlap(self, session_factory):
        engine = _engine(session_factory, _FakeGameClient({}), _FakeIndexClient({}))
        engine._running = True

        with pytest.raises(RuntimeError):
            await engine.scan()

    @pytest.mark.asyncio
    async def test_persistence_failure_aborts_scan(self, session_factory, fighter_payload, monkeypatch):
        game = _FakeGameClient({0: fighter_payload(0)})
        engine = _engine(session_factory, game, _FakeIndexClient({0: _page(1)}))
        monkeypatch.setattr(store, "upsert_fighters", AsyncMock(side_effect=SQLAlchemyError("disk full")))

        with pytest.raises(SQLAlchemyError):
            await engine.scan()
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_undecodable_body_drops_only_that_fighter(self, session_factory, fighter_payload):
        def handler(request):
            fighter_id = int(request.url.path.rsplit("/", 1)[-1])
            if fighter_id == 1:
                return httpx.Response(200, content=b'{"attributes": "\xff\xfe"}')
            return httpx.Response(200, json=fighter_payload(fighter_id))

        game = RedVillageClient(
            base_url="https://game.example/api/v2",
            retry_config=RetryConfig(max_attempts=2, base_delay=0, max_delay=0, jitter=False),
            transport=httpx.MockTransport(handler),
        )
        engine = _engine(session_factory, game, _FakeIndexClient({0: _page(3)}))

        result = await engine.scan()
        await game.close()

        assert result.fetched == 2
        assert await _rows(session_factory, select(FighterRow.id).order_by(FighterRow.id)) == [(0,), (2,)]
