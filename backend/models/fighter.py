from pydantic import BaseModel, Field, ValidationError
from typing import Any, Optional

from utils.retry import PayloadDecodeError


def _require_dict(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise PayloadDecodeError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _trait_value_text(value: Any) -> str:
    """Metadata values are strings or numbers; numbers are stored as text."""
    if isinstance(value, bool):
        raise PayloadDecodeError("boolean trait values are not supported")
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    raise PayloadDecodeError(f"unsupported trait value type {type(value).__name__}")


class StatRange(BaseModel):
    """One of the four wisdom stat ranges (strength/attack/defence/omega)"""

    current_range: int = Field(default=0, ge=0)
    low: int = Field(ge=0)
    high: int = Field(ge=0)

    @classmethod
    def from_api_response(cls, data: Any, name: str) -> "StatRange":
        data = _require_dict(data, f"stat {name}")
        bounds = data.get("range")
        if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
            raise PayloadDecodeError(f"stat {name} range must be a [from, to] pair")
        return cls(
            current_range=data.get("current_range") or 0,
            low=bounds[0],
            high=bounds[1],
        )


class Trait(BaseModel):
    trait_type: str
    value: str


class Fighter(BaseModel):
    """Decoded /champions/id/{id} payload"""

    id: int = Field(ge=0)
    champion_type: Optional[str] = None
    traits: list[Trait] = []
    wisdom_point: int = Field(ge=0)
    strength: StatRange
    attack: StatRange
    defence: StatRange
    omega: StatRange
    elo: Optional[int] = None
    owner_address: Optional[str] = None
    # Lineage: either no parents or exactly two
    parents: list[int] = []
    mum: Optional[int] = None

    @classmethod
    def from_api_response(cls, data: Any) -> "Fighter":
        """Parse a fighter payload, raising PayloadDecodeError on bad shape"""
        try:
            return cls._parse(data)
        except ValidationError as e:
            raise PayloadDecodeError(f"invalid fighter payload: {e}") from e

    @classmethod
    def _parse(cls, data: Any) -> "Fighter":
        data = _require_dict(data, "fighter payload")
        attributes = _require_dict(data.get("attributes"), "attributes")
        statistic = _require_dict(data.get("statistic"), "statistic")
        wisdom = _require_dict(statistic.get("wisdom"), "wisdom")

        if "id" not in attributes:
            raise PayloadDecodeError("attributes.id missing")

        raw_traits = attributes.get("attributes") or []
        if not isinstance(raw_traits, list):
            raise PayloadDecodeError("attributes.attributes must be a list")

        # Later duplicates of a trait type win
        traits: dict[str, Trait] = {}
        for entry in raw_traits:
            entry = _require_dict(entry, "trait entry")
            trait_type = entry.get("trait_type")
            if not isinstance(trait_type, str) or not trait_type:
                raise PayloadDecodeError("trait entry without trait_type")
            traits[trait_type] = Trait(
                trait_type=trait_type, value=_trait_value_text(entry.get("value"))
            )

        parents: list[int] = []
        mum: Optional[int] = None
        lineage = data.get("lineage_node")
        if lineage is not None:
            lineage = _require_dict(lineage, "lineage_node")
            raw_parents = lineage.get("parents")
            if not isinstance(raw_parents, list) or len(raw_parents) != 2:
                raise PayloadDecodeError("lineage_node must carry exactly two parents")
            try:
                parents = [int(p) for p in raw_parents]
            except (TypeError, ValueError) as e:
                raise PayloadDecodeError(f"invalid parent id: {e}") from e
            mum = lineage.get("original_mum")

        return cls(
            id=attributes["id"],
            champion_type=attributes.get("champion_type"),
            traits=list(traits.values()),
            wisdom_point=wisdom.get("point"),
            strength=StatRange.from_api_response(wisdom.get("strength"), "strength"),
            attack=StatRange.from_api_response(wisdom.get("attack"), "attack"),
            defence=StatRange.from_api_response(wisdom.get("defence"), "defence"),
            omega=StatRange.from_api_response(wisdom.get("omega"), "omega"),
            elo=statistic.get("elo"),
            owner_address=statistic.get("owner_address"),
            parents=parents,
            mum=mum,
        )
