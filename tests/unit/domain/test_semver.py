"""Semantic version parsing and numeric ordering."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from agent_governance.domain.semver import (
    compare_versions,
    is_valid_semver,
    latest_version,
    parse_semver,
    sort_versions,
)

_part = st.integers(min_value=0, max_value=500)
_versions = st.tuples(_part, _part, _part).map(lambda parts: ".".join(str(p) for p in parts))


def test_numeric_ordering_not_lexical() -> None:
    assert compare_versions("1.10.0", "1.9.0") == 1
    assert compare_versions("1.9.0", "1.10.0") == -1
    assert compare_versions("2.0.0", "2.0.0") == 0
    assert sort_versions(["1.10.0", "1.2.0", "1.9.3"]) == ["1.2.0", "1.9.3", "1.10.0"]


def test_prerelease_sorts_before_release() -> None:
    assert parse_semver("2.0.0-rc.1") < parse_semver("2.0.0")
    assert parse_semver("2.0.0-rc.2") < parse_semver("2.0.0-rc.10")
    assert latest_version(["2.0.0-rc.1", "1.9.9", "2.0.0"]) == "2.0.0"


def test_latest_of_empty_is_none() -> None:
    assert latest_version([]) is None


@pytest.mark.parametrize("raw", ["1.0", "01.0.0", "1.0.0.0", "", "latest", "1.a.0"])
def test_invalid_versions_rejected(raw: str) -> None:
    assert not is_valid_semver(raw)
    with pytest.raises(ValueError):
        parse_semver(raw)


@given(st.lists(_versions, min_size=1, max_size=20))
def test_sorted_versions_are_pairwise_non_decreasing(versions: list[str]) -> None:
    ordered = sort_versions(versions)
    for left, right in zip(ordered, ordered[1:]):
        assert compare_versions(left, right) <= 0
    assert latest_version(versions) is not None
    assert compare_versions(latest_version(versions) or "", ordered[-1]) == 0


@given(_versions, _versions)
def test_comparison_is_antisymmetric(left: str, right: str) -> None:
    assert compare_versions(left, right) == -compare_versions(right, left)
