"""Builders for skill registry tests."""

from __future__ import annotations

from typing import Any


def make_manifest(
    name: str = "summarizer",
    version: str = "1.0.0",
    *,
    tools: tuple[str, ...] = ("read_file",),
    description: str | None = None,
    instructions: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": name,
        "version": version,
        "description": description or f"{name} skill",
        "instructions": instructions or f"Use {name} carefully.",
        "inputs": [{"name": "text", "type": "string"}],
        "outputs": [{"name": "summary", "type": "string"}],
        "permissions": {"tools": list(tools), "network": False, "filesystem": "read"},
        "tests": [{"name": "basic", "input": {"text": "hello"}, "expected": "hello"}],
    }
    payload.update(extra)
    return payload
