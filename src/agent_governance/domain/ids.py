"""Time-ordered ID generation and validation for governance entities.

IDs are ULIDs (48-bit millisecond timestamp + 80 random bits, Crockford base32),
optionally prefixed as ``<prefix>-<ulid>``. Lexicographic order of the encoded
string matches creation time, so trace and audit ids sort chronologically.
``MonotonicULIDGenerator`` also keeps ids created within the same millisecond
strictly increasing.
"""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable
from typing import Final

from agent_governance.constants import AUDIT_ID_PREFIX, TRACE_ID_PREFIX

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_ULID_MAX_RANDOM: Final[int] = (1 << 80) - 1
_ULID_MAX_VALUE: Final[int] = (1 << 128) - 1
_PREFIX_SEPARATOR: Final[str] = "-"

_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]
_Clock = Callable[[], int]

__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "MonotonicULIDGenerator",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_audit_id",
    "generate_prefixed_id",
    "generate_trace_id",
    "generate_ulid",
    "parse_ulid_timestamp_ms",
    "validate_prefixed_id",
    "validate_trace_id",
    "validate_ulid",
]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class MonotonicULIDGenerator:
    """Thread-safe ULID source whose output never decreases within a process.

    When two ids fall into the same millisecond (or the clock moves backwards),
    the random component of the previous id is incremented instead of drawn
    fresh.
    """

    def __init__(
        self,
        *,
        clock_ms: _Clock | None = None,
        randbytes: _RandBytes | None = None,
    ) -> None:
        self._clock_ms = clock_ms if clock_ms is not None else _now_ms
        self._randbytes = randbytes
        self._lock = threading.Lock()
        self._last_ts = -1
        self._last_random = 0

    def generate(self) -> str:
        with self._lock:
            ts_ms = _check_timestamp(self._clock_ms())
            if ts_ms <= self._last_ts:
                ts_ms = self._last_ts
                random_part = self._last_random + 1
                if random_part > _ULID_MAX_RANDOM:
                    ts_ms += 1
                    random_part = int.from_bytes(_resolve_random_bytes(self._randbytes), "big")
            else:
                random_part = int.from_bytes(_resolve_random_bytes(self._randbytes), "big")
            self._last_ts = ts_ms
            self._last_random = random_part
            return _encode_crockford_base32((ts_ms << 80) | random_part, ULID_LENGTH)

    def prefixed(self, prefix: str) -> str:
        _validate_prefix(prefix)
        return f"{prefix}{_PREFIX_SEPARATOR}{self.generate()}"


_DEFAULT_GENERATOR = MonotonicULIDGenerator()


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    if timestamp_ms is None and randbytes is None:
        return _DEFAULT_GENERATOR.generate()
    ts_ms = _check_timestamp(_now_ms() if timestamp_ms is None else timestamp_ms)
    random_bytes = _resolve_random_bytes(randbytes)
    return _encode_crockford_base32((ts_ms << 80) | int.from_bytes(random_bytes, "big"), ULID_LENGTH)


def validate_ulid(s: str) -> None:
    """Validate a ULID and raise ``ValueError`` with precise context on failure."""
    _ = _decode_validated_ulid(s)


def parse_ulid_timestamp_ms(s: str) -> int:
    """Extract the 48-bit millisecond timestamp from a validated ULID."""
    return _decode_validated_ulid(s) >> 80


def generate_prefixed_id(
    prefix: str,
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a prefixed ID in the form ``<prefix>-<ulid>``."""
    _validate_prefix(prefix)
    return f"{prefix}{_PREFIX_SEPARATOR}{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    """Validate ``<prefix>-<ulid>`` format and enforce ``expected_prefix``."""
    _validate_prefix(expected_prefix)
    if not isinstance(id_str, str):
        raise ValueError(f"prefixed id must be a string, got {type(id_str).__name__}")

    expected_lead = f"{expected_prefix}{_PREFIX_SEPARATOR}"
    if not id_str.startswith(expected_lead):
        raise ValueError(f"expected prefix '{expected_lead}'")
    try:
        validate_ulid(id_str[len(expected_lead) :])
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def generate_trace_id(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    return generate_prefixed_id(TRACE_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_trace_id(id_str: str) -> None:
    validate_prefixed_id(id_str, TRACE_ID_PREFIX)


def generate_audit_id() -> str:
    return generate_prefixed_id(AUDIT_ID_PREFIX)


def _check_timestamp(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(value).__name__}")
    if not 0 <= value <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {value}"
        )
    return value


def _resolve_random_bytes(randbytes: _RandBytes | None) -> bytes:
    provider = secrets.token_bytes if randbytes is None else randbytes
    raw = provider(ULID_RANDOM_BYTES)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return as_bytes


def _decode_validated_ulid(value: str) -> int:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")

    decoded = 0
    for index, char in enumerate(value):
        digit = _DECODE_TABLE.get(char.upper())
        if digit is None:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
        decoded = (decoded << 5) | digit

    if decoded > _ULID_MAX_VALUE:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")
    return decoded


def _encode_crockford_base32(value: int, length: int) -> str:
    chars = ["0"] * length
    working = value
    for index in range(length - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[working & 0b11111]
        working >>= 5
    if working != 0:
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(chars)


def _validate_prefix(prefix: str) -> None:
    if not isinstance(prefix, str) or not prefix:
        raise ValueError("prefix must be a non-empty string")
    if _PREFIX_SEPARATOR in prefix:
        raise ValueError(f"prefix must not contain '{_PREFIX_SEPARATOR}'")
