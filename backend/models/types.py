"""Shared SQLAlchemy column types used across ORM models."""

from __future__ import annotations

from typing import Any

from sqlalchemy.types import String, TypeDecorator

UINT256_MAX = (1 << 256) - 1
_UINT256_DIGITS = len(str(UINT256_MAX))


class Uint256(TypeDecorator):
    """Persist unsigned 256-bit integers losslessly.

    Values travel as Python ``int`` and are stored as zero-padded decimal
    text, so lexical order on the column matches numeric order on every
    backend (SQLite has no native wide integer type).
    """

    impl = String(_UINT256_DIGITS)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect):
        if value is None:
            return None
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid uint256 value: {value!r}") from exc
        if number < 0 or number > UINT256_MAX:
            raise ValueError(f"uint256 out of range: {value!r}")
        return str(number).zfill(_UINT256_DIGITS)

    def process_result_value(self, value: Any, dialect):
        if value is None:
            return None
        return int(value)
