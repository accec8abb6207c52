"""Tournament listing items and battle-detail documents.

Listing items are tagged by ``service_id``. Decoding goes through a
permissive intermediate (``RawTournament``) holding every field any mode may
carry; the discriminator then picks the variant and the fields that variant
requires are checked individually.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from models.types import UINT256_MAX
from utils.retry import PayloadDecodeError
from utils.utcnow import parse_start_time, to_naive_utc

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class TournamentStatus(enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


RAW_STATUS = {
    "COMPLETE_SUCCEED": TournamentStatus.COMPLETED,
    "CANCEL_SUCCEED": TournamentStatus.CANCELLED,
}


class TournamentShape(enum.Enum):
    SOLO = "solo"
    PVP = "pvp"


class TournamentMode(BaseModel):
    service_id: int
    name: str
    shape: TournamentShape


# service_id -> mode. New PvP modes only need an entry here.
TOURNAMENT_MODES: dict[int, TournamentMode] = {
    mode.service_id: mode
    for mode in (
        TournamentMode(service_id=0, name="OneVOne", shape=TournamentShape.SOLO),
        TournamentMode(service_id=1, name="Blooding", shape=TournamentShape.PVP),
        TournamentMode(service_id=2, name="Bloodbath", shape=TournamentShape.PVP),
        TournamentMode(service_id=3, name="BloodElo", shape=TournamentShape.PVP),
    )
}


def _normalize_address(value: Any) -> str:
    if not isinstance(value, str) or not _ADDRESS_RE.match(value.strip()):
        raise ValueError(f"invalid address {value!r}")
    return value.strip().lower()


def _parse_uint256(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not a uint256")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        raise ValueError(f"invalid decimal uint256 {value!r}")
    if number > UINT256_MAX:
        raise ValueError("uint256 overflow")
    return number


class Configs(BaseModel):
    currency: str
    fee_percentage: int = Field(ge=0)
    buy_in: int
    top_up: int

    @field_validator("currency", mode="before")
    @classmethod
    def _check_currency(cls, value: Any) -> str:
        return _normalize_address(value)

    @field_validator("buy_in", "top_up", mode="before")
    @classmethod
    def _check_amount(cls, value: Any) -> int:
        return _parse_uint256(value)


class Level(BaseModel):
    nav_key: str


class Warrior(BaseModel):
    id: int = Field(ge=0)
    account: str

    @field_validator("account", mode="before")
    @classmethod
    def _check_account(cls, value: Any) -> str:
        return _normalize_address(value)


class SoloWarrior(BaseModel):
    id: int = Field(ge=0)


class RawTournament(BaseModel):
    """Every field any mode carries; variant fields are optional here."""

    service_id: int
    tournament_id: int
    configs: Configs
    key: str
    level: Level
    modified: datetime
    restrictions: Any
    start_time: datetime
    status: TournamentStatus
    # PvP only
    class_info: Optional[Any] = Field(default=None, alias="class")
    legacy: Optional[bool] = None
    name: Optional[str] = None
    tournament_type: Optional[str] = None
    warriors: list[Warrior] = []
    # Solo only
    solo_warriors: list[SoloWarrior] = []
    solo_optionals: Optional[Any] = None

    @field_validator("modified", mode="after")
    @classmethod
    def _modified_to_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @field_validator("start_time", mode="before")
    @classmethod
    def _parse_start_time(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return parse_start_time(value)
            except ValueError:
                return value  # let pydantic try ISO 8601
        return value

    @field_validator("start_time", mode="after")
    @classmethod
    def _start_time_to_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> TournamentStatus:
        if isinstance(value, TournamentStatus):
            return value
        try:
            return RAW_STATUS[value]
        except (KeyError, TypeError):
            raise ValueError(f"unknown tournament status {value!r}") from None


class Participant(BaseModel):
    fighter_id: int
    account: Optional[str] = None


class Tournament(BaseModel):
    """A decoded tournament of one concrete mode"""

    tournament_id: int
    service_id: int
    mode: str
    currency: str
    fee_percentage: int
    buy_in: int
    top_up: int
    key: str
    level: str
    modified: datetime
    start_time: datetime
    restrictions: Any
    status: TournamentStatus
    participants: list[Participant] = []
    name: Optional[str] = None
    legacy: Optional[bool] = None
    tournament_type: Optional[str] = None
    class_info: Optional[Any] = None
    solo_optionals: Optional[Any] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == TournamentStatus.CANCELLED

    @property
    def identity(self) -> tuple[int, int]:
        return (self.tournament_id, self.service_id)


def _require(value: Any, field: str, mode: TournamentMode) -> Any:
    if value is None:
        raise PayloadDecodeError(f"{mode.name} tournament missing {field}")
    return value


def decode_tournament(data: Any) -> Tournament:
    """Decode one raw listing item, raising PayloadDecodeError when invalid."""
    if not isinstance(data, dict):
        raise PayloadDecodeError("tournament item must be an object")

    service_id = data.get("service_id")
    if isinstance(service_id, bool) or not isinstance(service_id, int):
        raise PayloadDecodeError(f"missing or non-integer service_id {service_id!r}")
    mode = TOURNAMENT_MODES.get(service_id)
    if mode is None:
        raise PayloadDecodeError(f"{service_id} not a valid service id")

    try:
        raw = RawTournament.model_validate(data)
    except ValidationError as e:
        raise PayloadDecodeError(f"invalid {mode.name} tournament: {e}") from e

    common = dict(
        tournament_id=raw.tournament_id,
        service_id=raw.service_id,
        mode=mode.name,
        currency=raw.configs.currency,
        fee_percentage=raw.configs.fee_percentage,
        buy_in=raw.configs.buy_in,
        top_up=raw.configs.top_up,
        key=raw.key,
        level=raw.level.nav_key,
        modified=raw.modified,
        start_time=raw.start_time,
        restrictions=raw.restrictions,
        status=raw.status,
    )

    if mode.shape is TournamentShape.SOLO:
        return Tournament(
            **common,
            participants=[Participant(fighter_id=w.id) for w in raw.solo_warriors],
            solo_optionals=_require(raw.solo_optionals, "solo_optionals", mode),
        )

    return Tournament(
        **common,
        participants=[Participant(fighter_id=w.id, account=w.account) for w in raw.warriors],
        name=_require(raw.name, "name", mode),
        legacy=_require(raw.legacy, "legacy", mode),
        tournament_type=_require(raw.tournament_type, "tournament_type", mode),
        class_info=_require(raw.class_info, "class", mode),
    )


# ==================== BATTLE DETAIL ====================


class ChampionStanding(BaseModel):
    token_id: int
    first_wins: int = 0
    second_wins: int = 0
    total_fought: int = 0
    stance: int


class Attack(BaseModel):
    special_attack: bool
    special_defend: bool
    missed_hit: bool
    damage: int = Field(ge=0)
    order: int = Field(ge=0)


class ChampionAttacks(BaseModel):
    id: int  # numeric strings are coerced
    attack: list[Attack] = []


class Battle(BaseModel):
    round: int = Field(ge=0)
    champions: list[ChampionAttacks] = []


class TournamentDetail(BaseModel):
    """Decoded /battles/service/{service_id}/tournament/{id} document"""

    champions: list[ChampionStanding] = []
    battles: list[Battle] = []

    @classmethod
    def from_api_response(cls, data: Any) -> "TournamentDetail":
        if not isinstance(data, dict):
            raise PayloadDecodeError("tournament detail must be an object")
        if isinstance(data.get("match"), dict):
            data = data["match"]

        raw_champions = data.get("champions") or []
        raw_battles = data.get("battles") or []
        if not isinstance(raw_champions, list):
            raise PayloadDecodeError("tournament detail champions must be a list")
        if not isinstance(raw_battles, list):
            raise PayloadDecodeError("tournament detail battles must be a list")

        battles = []
        for entry in raw_battles:
            if isinstance(entry, dict) and isinstance(entry.get("engagement"), dict):
                entry = entry["engagement"]
            battles.append(entry)

        try:
            return cls(champions=raw_champions, battles=battles)
        except ValidationError as e:
            raise PayloadDecodeError(f"invalid tournament detail: {e}") from e
