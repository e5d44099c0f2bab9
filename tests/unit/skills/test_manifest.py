"""Skill manifest parsing, validation and checksum stability."""

from __future__ import annotations

import pytest

from agent_governance.errors import ValidationError
from agent_governance.skills.manifest import (
    FilesystemAccess,
    SkillManifest,
    coerce_manifest,
    load_manifest_yaml,
)

from . import make_manifest

_YAML = """
name: summarizer
version: 1.2.0
description: Summarize documents
instructions: |
  Read the document and produce a short summary.
permissions:
  tools: [read_file, search]
  filesystem: read
extensions:
  owner: docs-team
"""


def test_yaml_manifest_round_trips_through_mapping() -> None:
    manifest = load_manifest_yaml(_YAML)

    assert manifest.name == "summarizer"
    assert manifest.permissions.tools == ("read_file", "search")
    assert manifest.permissions.filesystem is FilesystemAccess.READ
    assert manifest.extensions == {"owner": "docs-team"}
    assert SkillManifest.from_mapping(manifest.to_dict()) == manifest


def test_checksum_ignores_source_key_order() -> None:
    payload = make_manifest()
    reordered = dict(reversed(list(payload.items())))
    assert coerce_manifest(payload).checksum == coerce_manifest(reordered).checksum
    assert len(coerce_manifest(payload).checksum) == 64


def test_checksum_changes_with_content() -> None:
    base = coerce_manifest(make_manifest())
    changed = coerce_manifest(make_manifest(instructions="Different instructions."))
    assert base.checksum != changed.checksum


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"name": "x", "version": "1.0.0"}, "missing required fields"),
        (make_manifest(owner="me"), "unexpected fields"),
        (make_manifest(name="Summarizer"), "must start with a lowercase letter"),
        (make_manifest(version="1.0"), "not a semantic version"),
        (make_manifest(permissions={"filesystem": "root"}), "filesystem"),
        (make_manifest(inputs=[{"name": "a"}, {"name": "a"}]), "duplicate name"),
        (make_manifest(inputs=[{"name": "a", "type": "blob"}]), "inputs[0].type"),
        (make_manifest(tests="not-a-list"), "expected list"),
    ],
)
def test_invalid_manifests_name_the_field(payload: dict[str, object], message: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        coerce_manifest(payload)
    assert message in str(excinfo.value)


def test_yaml_must_be_a_mapping() -> None:
    with pytest.raises(ValidationError, match="top-level YAML mapping"):
        load_manifest_yaml("- just\n- a list\n")
    with pytest.raises(ValidationError, match="invalid YAML"):
        load_manifest_yaml("name: [unclosed")
