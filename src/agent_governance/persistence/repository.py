"""
agent-governance — repository base

File: src/agent_governance/persistence/repository.py

Purpose
- Shared base class, pagination result type, and strict value coercion helpers
  for every governance repository/service that reads or writes the state DB.

Functional requirements
- Pagination is validated to ``limit in [1, MAX_PAGE_SIZE]`` and ``offset >= 0``.
- Validation failures raise ``ValidationError`` with a ``"{path}: ..."`` message
  before any state change.
- Timestamps are stored as ISO-8601 UTC strings with a ``Z`` suffix so that
  lexicographic order matches chronological order.
"""

from __future__ import annotations

import json
import math
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final, Generic, TypeVar

from agent_governance.constants import MAX_PAGE_SIZE
from agent_governance.errors import ConflictError, ValidationError
from agent_governance.persistence.state_db import RowValue, StateDB

T = TypeVar("T")

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_UNIQUE_CONSTRAINT_MARKERS: Final[tuple[str, ...]] = (
    "unique constraint failed",
    "primary key must be unique",
)

__all__ = [
    "BaseRepo",
    "JSONValue",
    "Page",
    "as_json_object",
    "as_mapping",
    "as_non_empty_str",
    "as_non_negative_float",
    "as_non_negative_int",
    "as_optional_str",
    "as_utc_datetime",
    "iso8601z",
    "load_json_object",
    "optional_iso8601z",
    "parse_optional_datetime",
    "row_float",
    "row_int",
    "row_optional_text",
    "row_text",
    "sql_placeholders",
    "utc_now",
    "validate_page",
]


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a paginated listing."""

    items: tuple[T, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


class BaseRepo:
    """Common plumbing: schema migration on construction and conflict mapping."""

    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.ensure_migrated()

    @property
    def db(self) -> StateDB:
        return self._db

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        validate_page(limit, offset)

    @contextmanager
    def _conflict_on_duplicate(self, message: str) -> Iterator[None]:
        """Translate unique-key violations into ``ConflictError``."""

        try:
            yield
        except sqlite3.IntegrityError as exc:
            lowered = str(exc).lower()
            if any(marker in lowered for marker in _UNIQUE_CONSTRAINT_MARKERS):
                raise ConflictError(message) from exc
            raise


def validate_page(limit: int, offset: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be in [1, {MAX_PAGE_SIZE}]")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationError("offset must be >= 0")


def row_text(row: Mapping[str, RowValue], key: str, path: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValidationError(f"{path}: expected text value")
    return value


def row_optional_text(row: Mapping[str, RowValue], key: str) -> str | None:
    value = row.get(key)
    return value if isinstance(value, str) else None


def row_int(row: Mapping[str, RowValue], key: str, default: int = 0) -> int:
    value = row.get(key)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return default


def row_float(row: Mapping[str, RowValue], key: str, default: float = 0.0) -> float:
    value = row.get(key)
    if isinstance(value, (int, float)):
        return float(value)
    return default


def as_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"{path}: expected object")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ValidationError(f"{path}: object keys must be strings")
        parsed[key] = item
    return parsed


def load_json_object(payload: object, path: str) -> dict[str, object]:
    if not isinstance(payload, str):
        raise ValidationError(f"{path}: expected JSON string")
    try:
        loaded = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(loaded, dict):
        raise ValidationError(f"{path}: JSON root must be object")
    out: dict[str, object] = {}
    for key, value in loaded.items():
        if not isinstance(key, str):
            raise ValidationError(f"{path}: key must be text")
        out[key] = value
    return out


def as_non_empty_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{path}: expected string")
    parsed = value.strip()
    if not parsed:
        raise ValidationError(f"{path}: must not be empty")
    return parsed


def as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return as_non_empty_str(value, path)


def as_non_negative_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{path}: expected integer")
    if value < 0:
        raise ValidationError(f"{path}: must be >= 0")
    return value


def as_non_negative_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{path}: expected number")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValidationError(f"{path}: must be finite")
    if parsed < 0:
        raise ValidationError(f"{path}: must be >= 0")
    return parsed


def as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"{path}: expected object")
    parsed: dict[str, JSONValue] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ValidationError(f"{path}: key must be string")
        parsed[key] = _as_json_value(item, f"{path}.{key}")
    return parsed


def _as_json_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"{path}: float must be finite")
        return value
    if isinstance(value, (list, tuple)):
        return [_as_json_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(f"{path}: object key must be string")
            out[key] = _as_json_value(item, f"{path}.{key}")
        return out
    raise ValidationError(f"{path}: value is not JSON-serializable")


def as_utc_datetime(value: object, path: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"{path}: invalid ISO-8601 datetime ({exc})") from exc
    else:
        raise ValidationError(f"{path}: expected datetime or ISO-8601 string")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValidationError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def parse_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    return as_utc_datetime(value, path)


def iso8601z(value: datetime) -> str:
    return as_utc_datetime(value, "datetime").isoformat(timespec="microseconds").replace("+00:00", "Z")


def optional_iso8601z(value: datetime | None) -> str | None:
    return None if value is None else iso8601z(value)


def utc_now() -> datetime:
    return datetime.now(UTC)


def sql_placeholders(values: Sequence[object]) -> str:
    return ",".join("?" for _ in values)
