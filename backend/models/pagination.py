from pydantic import BaseModel, Field, ValidationError
from typing import Any

from utils.retry import PayloadDecodeError

_PAGINATION_FIELDS = ("total_count", "total_pages", "has_next_page", "current_page", "item_count")


class Pagination(BaseModel):
    total_count: int = Field(ge=0)
    total_pages: int = Field(ge=0)
    has_next_page: bool
    current_page: int = Field(ge=0)
    item_count: int = Field(ge=0)


class TournamentPage(BaseModel):
    """One page of the tournament listing.

    Items stay untyped here; each one is decoded on its own so a single bad
    entry never fails the whole page.
    """

    pagination: Pagination
    items: list[Any] = []

    @classmethod
    def from_api_response(cls, data: Any) -> "TournamentPage":
        if not isinstance(data, dict):
            raise PayloadDecodeError("tournament page must be an object")

        # Envelope fields are either nested or flattened beside ``items``
        envelope = data.get("pagination")
        if not isinstance(envelope, dict):
            envelope = {name: data.get(name) for name in _PAGINATION_FIELDS}

        items = data.get("items")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise PayloadDecodeError("tournament page items must be a list")

        try:
            return cls(pagination=Pagination(**envelope), items=items)
        except ValidationError as e:
            raise PayloadDecodeError(f"invalid pagination envelope: {e}") from e
