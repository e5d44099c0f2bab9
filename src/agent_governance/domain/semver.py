"""Numeric semantic-version parsing and ordering.

Versions are compared by integer major/minor/patch, never as strings, so
``1.10.0`` sorts after ``1.9.0``. A pre-release tag sorts before the release it
qualifies (``2.0.0-rc.1 < 2.0.0``); pre-release identifiers compare numerically
when both are digits and lexically otherwise.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import total_ordering
from typing import Final

_SEMVER_RE: Final[re.Pattern[str]] = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


@total_ordering
@dataclass(frozen=True, slots=True)
class SemVer:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return f"{core}-{'.'.join(self.prerelease)}"
        return core

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def _sort_key(self) -> tuple[int, int, int, int, tuple[tuple[int, int, str], ...]]:
        # A release (no pre-release) ranks above any of its pre-releases.
        release_rank = 1 if not self.prerelease else 0
        pre = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part) for part in self.prerelease
        )
        return (self.major, self.minor, self.patch, release_rank, pre)


def parse_semver(value: str) -> SemVer:
    """Parse ``major.minor.patch[-prerelease][+build]``; raise ``ValueError`` otherwise."""

    if not isinstance(value, str):
        raise ValueError(f"version must be a string, got {type(value).__name__}")
    match = _SEMVER_RE.match(value.strip())
    if match is None:
        raise ValueError(f"invalid semantic version {value!r}; expected major.minor.patch")
    major, minor, patch, pre = match.groups()
    return SemVer(
        major=int(major),
        minor=int(minor),
        patch=int(patch),
        prerelease=tuple(pre.split(".")) if pre else (),
    )


def is_valid_semver(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return _SEMVER_RE.match(value.strip()) is not None


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 comparing two version strings numerically."""

    a = parse_semver(left)
    b = parse_semver(right)
    if a < b:
        return -1
    if b < a:
        return 1
    return 0


def sort_versions(versions: Iterable[str], *, descending: bool = False) -> list[str]:
    return sorted(versions, key=parse_semver, reverse=descending)


def latest_version(versions: Iterable[str]) -> str | None:
    """Return the highest version from ``versions`` or ``None`` when empty."""

    best: str | None = None
    best_parsed: SemVer | None = None
    for version in versions:
        parsed = parse_semver(version)
        if best_parsed is None or best_parsed < parsed:
            best, best_parsed = version, parsed
    return best


__all__ = [
    "SemVer",
    "compare_versions",
    "is_valid_semver",
    "latest_version",
    "parse_semver",
    "sort_versions",
]
