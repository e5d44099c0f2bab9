"""Content hashing and filesystem helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from hypothesis import given
from hypothesis import strategies as st

from agent_governance.utils.fs import atomic_write, is_within, safe_unlink
from agent_governance.utils.hashing import (
    content_hash,
    create_manifest,
    normalize_relative_path,
    read_tree,
    sha256_bytes,
)

if TYPE_CHECKING:
    from pathlib import Path

_names = st.text(alphabet="abcdefghij", min_size=1, max_size=8)
_trees = st.dictionaries(_names, st.binary(max_size=32), min_size=1, max_size=8)


@given(_trees)
def test_content_hash_is_independent_of_insertion_order(files: dict[str, bytes]) -> None:
    reversed_files = dict(reversed(list(files.items())))
    assert content_hash(files) == content_hash(reversed_files)


def test_content_hash_changes_with_content_and_path() -> None:
    base = content_hash({"SOUL.md": b"hello"})
    assert content_hash({"SOUL.md": b"hello!"}) != base
    assert content_hash({"soul.md": b"hello"}) != base
    assert content_hash({"SOUL.md": "hello"}) == base


@pytest.mark.parametrize("raw", ["/etc/passwd", "../escape", "a/../b", ""])
def test_unsafe_relative_paths_rejected(raw: str) -> None:
    with pytest.raises(ValueError):
        normalize_relative_path(raw)


def test_read_tree_skips_hidden_files_by_default(tmp_path: Path) -> None:
    (tmp_path / "skills").mkdir()
    (tmp_path / "skills" / "search.md").write_text("search", encoding="utf-8")
    (tmp_path / "AGENTS.md").write_text("agents", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref", encoding="utf-8")

    tree = read_tree(tmp_path)

    assert sorted(tree) == ["AGENTS.md", "skills/search.md"]
    assert ".git/HEAD" in read_tree(tmp_path, include_hidden=True)
    assert create_manifest(tmp_path)["AGENTS.md"] == sha256_bytes(b"agents")


def test_atomic_write_and_safe_unlink(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "file.txt"
    atomic_write(target, "payload")
    assert target.read_text(encoding="utf-8") == "payload"
    assert is_within(target, tmp_path)

    safe_unlink(target, tmp_path)
    assert not target.exists()

    outside = tmp_path.parent / "outside.txt"
    with pytest.raises(ValueError, match="outside workspace root"):
        safe_unlink(outside, tmp_path)
