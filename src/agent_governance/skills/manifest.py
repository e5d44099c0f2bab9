"""
agent-governance — skill manifest schema

File: src/agent_governance/skills/manifest.py

Purpose
- Typed, versioned representation of a publishable skill definition.

Functional requirements
- Manifests load from a mapping or YAML text and fail closed with
  ``ValidationError`` naming the offending field path.
- Unknown top-level keys are rejected; free-form metadata belongs in the
  ``extensions`` bag.
- ``checksum`` is the SHA-256 of the canonical JSON form and is stable across
  key ordering of the source document.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

import yaml

from agent_governance.constants import SKILL_MANIFEST_SCHEMA_VERSION
from agent_governance.domain.semver import is_valid_semver
from agent_governance.errors import ValidationError
from agent_governance.persistence.repository import (
    JSONValue,
    as_json_object,
    as_mapping,
    as_non_empty_str,
)
from agent_governance.persistence.state_db import canonical_json
from agent_governance.utils.hashing import sha256_text

SKILL_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z][a-z0-9_-]*$")
MAX_SKILL_NAME_LENGTH: Final[int] = 64

FIELD_TYPES: Final[frozenset[str]] = frozenset(
    {"string", "number", "integer", "boolean", "object", "array", "any"}
)

_MANIFEST_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "schema_version",
        "name",
        "version",
        "description",
        "instructions",
        "inputs",
        "outputs",
        "permissions",
        "tests",
        "extensions",
    }
)
_REQUIRED_FIELDS: Final[frozenset[str]] = frozenset({"name", "version", "description", "instructions"})


class FilesystemAccess(StrEnum):
    NONE = "none"
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True, slots=True)
class SkillField:
    name: str
    type: str = "string"
    description: str | None = None
    required: bool = True

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "required": self.required,
        }


@dataclass(frozen=True, slots=True)
class SkillPermissions:
    tools: tuple[str, ...] = ()
    network: bool = False
    filesystem: FilesystemAccess = FilesystemAccess.NONE

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tools": list(self.tools),
            "network": self.network,
            "filesystem": self.filesystem.value,
        }


@dataclass(frozen=True, slots=True)
class SkillTestCase:
    name: str
    input: dict[str, JSONValue] = field(default_factory=dict)
    expected: JSONValue = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {"name": self.name, "input": self.input, "expected": self.expected}


@dataclass(frozen=True, slots=True)
class SkillManifest:
    name: str
    version: str
    description: str
    instructions: str
    inputs: tuple[SkillField, ...] = ()
    outputs: tuple[SkillField, ...] = ()
    permissions: SkillPermissions = field(default_factory=SkillPermissions)
    tests: tuple[SkillTestCase, ...] = ()
    extensions: dict[str, JSONValue] = field(default_factory=dict)
    schema_version: int = SKILL_MANIFEST_SCHEMA_VERSION

    def __post_init__(self) -> None:
        validate_skill_name(self.name)
        if not is_valid_semver(self.version):
            raise ValidationError(
                f"SkillManifest.version: {self.version!r} is not a semantic version (major.minor.patch)"
            )
        if self.schema_version != SKILL_MANIFEST_SCHEMA_VERSION:
            raise ValidationError(
                f"SkillManifest.schema_version: unsupported version {self.schema_version}; "
                f"expected {SKILL_MANIFEST_SCHEMA_VERSION}"
            )
        as_non_empty_str(self.description, "SkillManifest.description")
        as_non_empty_str(self.instructions, "SkillManifest.instructions")
        _reject_duplicate_names((item.name for item in self.inputs), "SkillManifest.inputs")
        _reject_duplicate_names((item.name for item in self.outputs), "SkillManifest.outputs")
        _reject_duplicate_names((item.name for item in self.tests), "SkillManifest.tests")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> SkillManifest:
        parsed = as_mapping(payload, "SkillManifest")
        keys = set(parsed)
        missing = sorted(_REQUIRED_FIELDS - keys)
        if missing:
            raise ValidationError(f"SkillManifest: missing required fields: {missing}")
        unknown = sorted(keys - _MANIFEST_FIELDS)
        if unknown:
            raise ValidationError(
                f"SkillManifest: unexpected fields: {unknown}; put custom metadata under 'extensions'"
            )

        schema_version = parsed.get("schema_version", SKILL_MANIFEST_SCHEMA_VERSION)
        if isinstance(schema_version, bool) or not isinstance(schema_version, int):
            raise ValidationError("SkillManifest.schema_version: expected integer")

        version = parsed["version"]
        if not isinstance(version, str):
            raise ValidationError("SkillManifest.version: expected string")

        return cls(
            name=as_non_empty_str(parsed["name"], "SkillManifest.name"),
            version=version.strip(),
            description=as_non_empty_str(parsed["description"], "SkillManifest.description"),
            instructions=as_non_empty_str(parsed["instructions"], "SkillManifest.instructions"),
            inputs=_parse_fields(parsed.get("inputs"), "SkillManifest.inputs"),
            outputs=_parse_fields(parsed.get("outputs"), "SkillManifest.outputs"),
            permissions=_parse_permissions(parsed.get("permissions"), "SkillManifest.permissions"),
            tests=_parse_tests(parsed.get("tests"), "SkillManifest.tests"),
            extensions=(
                {}
                if parsed.get("extensions") is None
                else as_json_object(parsed["extensions"], "SkillManifest.extensions")
            ),
            schema_version=schema_version,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": self.schema_version,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "instructions": self.instructions,
            "inputs": [item.to_dict() for item in self.inputs],
            "outputs": [item.to_dict() for item in self.outputs],
            "permissions": self.permissions.to_dict(),
            "tests": [item.to_dict() for item in self.tests],
            "extensions": self.extensions,
        }

    def canonical_json(self) -> str:
        return canonical_json(self.to_dict())

    @property
    def checksum(self) -> str:
        return sha256_text(self.canonical_json())


def validate_skill_name(name: object) -> str:
    if not isinstance(name, str):
        raise ValidationError("SkillManifest.name: expected string")
    if len(name) > MAX_SKILL_NAME_LENGTH:
        raise ValidationError(f"SkillManifest.name: must be at most {MAX_SKILL_NAME_LENGTH} characters")
    if SKILL_NAME_PATTERN.fullmatch(name) is None:
        raise ValidationError(
            f"SkillManifest.name: {name!r} must start with a lowercase letter and contain only "
            "lowercase letters, digits, '-' or '_'"
        )
    return name


def load_manifest_yaml(text: str) -> SkillManifest:
    """Parse a manifest from YAML text."""

    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValidationError(f"SkillManifest: invalid YAML ({exc})") from exc
    if not isinstance(loaded, Mapping):
        raise ValidationError(
            f"SkillManifest: expected top-level YAML mapping, got {type(loaded).__name__}"
        )
    return SkillManifest.from_mapping(loaded)


def coerce_manifest(value: SkillManifest | Mapping[str, object] | str) -> SkillManifest:
    if isinstance(value, SkillManifest):
        return value
    if isinstance(value, str):
        return load_manifest_yaml(value)
    if isinstance(value, Mapping):
        return SkillManifest.from_mapping(value)
    raise ValidationError("SkillManifest: expected manifest, mapping or YAML text")


def _parse_fields(value: object, path: str) -> tuple[SkillField, ...]:
    if value is None:
        return ()
    items = _as_sequence(value, path)
    fields: list[SkillField] = []
    for index, raw in enumerate(items):
        location = f"{path}[{index}]"
        item = as_mapping(raw, location)
        field_type = item.get("type", "string")
        if not isinstance(field_type, str) or field_type not in FIELD_TYPES:
            raise ValidationError(
                f"{location}.type: expected one of {sorted(FIELD_TYPES)}, got {field_type!r}"
            )
        description = item.get("description")
        if description is not None and not isinstance(description, str):
            raise ValidationError(f"{location}.description: expected string")
        required = item.get("required", True)
        if not isinstance(required, bool):
            raise ValidationError(f"{location}.required: expected boolean")
        fields.append(
            SkillField(
                name=as_non_empty_str(item.get("name"), f"{location}.name"),
                type=field_type,
                description=description,
                required=required,
            )
        )
    return tuple(fields)


def _parse_permissions(value: object, path: str) -> SkillPermissions:
    if value is None:
        return SkillPermissions()
    item = as_mapping(value, path)
    tools_raw = item.get("tools", ())
    tools = tuple(
        as_non_empty_str(tool, f"{path}.tools[{index}]")
        for index, tool in enumerate(_as_sequence(tools_raw, f"{path}.tools"))
    )
    network = item.get("network", False)
    if not isinstance(network, bool):
        raise ValidationError(f"{path}.network: expected boolean")
    filesystem_raw = item.get("filesystem", FilesystemAccess.NONE.value)
    try:
        filesystem = FilesystemAccess(filesystem_raw)
    except ValueError as exc:
        allowed = ", ".join(access.value for access in FilesystemAccess)
        raise ValidationError(f"{path}.filesystem: expected one of: {allowed}") from exc
    return SkillPermissions(tools=tools, network=network, filesystem=filesystem)


def _parse_tests(value: object, path: str) -> tuple[SkillTestCase, ...]:
    if value is None:
        return ()
    cases: list[SkillTestCase] = []
    for index, raw in enumerate(_as_sequence(value, path)):
        location = f"{path}[{index}]"
        item = as_mapping(raw, location)
        raw_input = item.get("input")
        expected = as_json_object({"expected": item.get("expected")}, location)["expected"]
        cases.append(
            SkillTestCase(
                name=as_non_empty_str(item.get("name"), f"{location}.name"),
                input={} if raw_input is None else as_json_object(raw_input, f"{location}.input"),
                expected=expected,
            )
        )
    return tuple(cases)


def _as_sequence(value: object, path: str) -> Sequence[object]:
    if isinstance(value, (str, bytes, bytearray)) or not isinstance(value, Sequence):
        raise ValidationError(f"{path}: expected list")
    return value


def _reject_duplicate_names(names: Iterable[str], path: str) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValidationError(f"{path}: duplicate name {name!r}")
        seen.add(name)


__all__ = [
    "FIELD_TYPES",
    "MAX_SKILL_NAME_LENGTH",
    "SKILL_NAME_PATTERN",
    "FilesystemAccess",
    "SkillField",
    "SkillManifest",
    "SkillPermissions",
    "SkillTestCase",
    "coerce_manifest",
    "load_manifest_yaml",
    "validate_skill_name",
]
