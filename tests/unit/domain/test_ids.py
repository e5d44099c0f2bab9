"""Unit tests for canonical ID helpers."""

from __future__ import annotations

import pytest

from agent_governance.domain import ids


def _zero_bytes(size: int) -> bytes:
    return b"\x00" * size


def _ff_bytes(size: int) -> bytes:
    return b"\xff" * size


def test_generate_ulid_no_collision_10000() -> None:
    generated = {ids.generate_ulid() for _ in range(10_000)}
    assert len(generated) == 10_000


def test_ulid_charset_length_and_reject_invalid_chars() -> None:
    ulid_value = ids.generate_ulid(timestamp_ms=123_456, randbytes=_ff_bytes)
    assert len(ulid_value) == ids.ULID_LENGTH
    assert ulid_value == ulid_value.upper()
    assert all(char in ids.CROCKFORD_BASE32_ALPHABET for char in ulid_value)

    with pytest.raises(ValueError):
        ids.validate_ulid("0" * 25)

    for invalid in ["I" + "0" * 25, "O" + "0" * 25, "U" + "0" * 25, "*" + "0" * 25]:
        with pytest.raises(ValueError):
            ids.validate_ulid(invalid)


def test_ulid_timestamp_boundaries() -> None:
    assert ids.parse_ulid_timestamp_ms("0" * 26) == 0

    top = ids.generate_ulid(timestamp_ms=ids.ULID_MAX_TIMESTAMP_MS, randbytes=_zero_bytes)
    assert ids.parse_ulid_timestamp_ms(top) == ids.ULID_MAX_TIMESTAMP_MS

    with pytest.raises(ValueError):
        ids.generate_ulid(timestamp_ms=ids.ULID_MAX_TIMESTAMP_MS + 1, randbytes=_zero_bytes)


def test_monotonic_generator_orders_ids_within_one_millisecond() -> None:
    generator = ids.MonotonicULIDGenerator(clock_ms=lambda: 1_700_000_000_000, randbytes=_zero_bytes)

    generated = [generator.generate() for _ in range(50)]

    assert generated == sorted(generated)
    assert len(set(generated)) == 50


def test_monotonic_generator_never_goes_backwards_when_clock_does() -> None:
    ticks = iter([2_000, 1_000, 1_000, 3_000])
    generator = ids.MonotonicULIDGenerator(clock_ms=lambda: next(ticks), randbytes=_zero_bytes)

    generated = [generator.generate() for _ in range(4)]

    assert generated == sorted(generated)
    assert ids.parse_ulid_timestamp_ms(generated[1]) == 2_000


def test_prefixed_trace_and_audit_ids() -> None:
    trace_id = ids.generate_trace_id(timestamp_ms=1, randbytes=_ff_bytes)
    audit_id = ids.generate_audit_id()

    ids.validate_trace_id(trace_id)
    ids.validate_prefixed_id(audit_id, "aud")
    assert trace_id.startswith("trc-")

    with pytest.raises(ValueError, match="expected prefix"):
        ids.validate_trace_id(audit_id)
    with pytest.raises(ValueError, match="invalid ULID part"):
        ids.validate_trace_id("trc-not-a-ulid")
