"""Shared fixtures for mirror tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from models.database import init_database

CURRENCY = "0x" + "ab" * 20
ACCOUNT = "0x" + "cd" * 20


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}")
    await init_database(engine)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


# ---------------------------------------------------------------------------
# Raw API payload builders (mimicking the game API)
# ---------------------------------------------------------------------------


def _stat(low, high):
    return {"current_range": 1, "range": [low, high]}


@pytest.fixture
def fighter_payload():
    """Build a /champions/id/{id} payload."""

    def build(fighter_id, traits=None, parents=None, mum=None, strength=(10, 20)):
        if traits is None:
            traits = {"Background": "Forest", "Weapon": "Axe"}
        payload = {
            "attributes": {
                "id": fighter_id,
                "champion_type": "Fighter",
                "name": f"Champion #{fighter_id}",
                "attributes": [
                    {"trait_type": key, "value": value} for key, value in traits.items()
                ],
            },
            "statistic": {
                "wisdom": {
                    "point": 42,
                    "strength": _stat(*strength),
                    "attack": _stat(5, 15),
                    "defence": _stat(7, 9),
                    "omega": _stat(0, 3),
                },
                "elo": 1200,
                "owner_address": ACCOUNT,
            },
        }
        if parents is not None:
            payload["lineage_node"] = {"parents": parents, "original_mum": mum}
        return payload

    return build


@pytest.fixture
def tournament_item():
    """Build one raw /tournaments listing item."""

    def build(tournament_id, service_id=1, status="COMPLETE_SUCCEED", warriors=(11, 12)):
        item = {
            "service_id": service_id,
            "tournament_id": tournament_id,
            "configs": {
                "currency": CURRENCY.upper().replace("0X", "0x"),
                "fee_percentage": 5,
                "buy_in": "1000000000000000000",
                "top_up": "0",
            },
            "key": f"tournament-{tournament_id}",
            "level": {"nav_key": "bronze"},
            "modified": "2023-01-10T12:00:00+02:00",
            "restrictions": {"min_level": 1},
            "start_time": "2023-01-10 11:00",
            "status": status,
        }
        if service_id == 0:
            item["solo_warriors"] = [{"id": w} for w in warriors]
            item["solo_optionals"] = {"rounds": 3}
        else:
            item["warriors"] = [{"id": w, "account": ACCOUNT} for w in warriors]
            item["name"] = f"Arena {tournament_id}"
            item["legacy"] = False
            item["tournament_type"] = "elimination"
            item["class"] = {"name": "open"}
        return item

    return build


@pytest.fixture
def tournament_detail_payload():
    """Build a /battles/service/{sid}/tournament/{tid} document."""

    def build(damage=10, stance=0, fighters=(11, 12)):
        return {
            "champions": [
                {
                    "token_id": fid,
                    "first_wins": 1,
                    "second_wins": 0,
                    "total_fought": 1,
                    "stance": stance,
                }
                for fid in fighters
            ],
            "battles": [
                {
                    "round": 0,
                    "champions": [
                        {
                            "id": str(fid),
                            "attack": [
                                {
                                    "special_attack": False,
                                    "special_defend": False,
                                    "missed_hit": False,
                                    "damage": damage,
                                    "order": position,
                                }
                            ],
                        }
                        for position, fid in enumerate(fighters)
                    ],
                }
            ],
        }

    return build
