"""
agent-governance — PII redaction for traces

File: src/agent_governance/tracing/redaction.py

Purpose
- Detect personal and secret data in trace text and rewrite it before the
  trace is stored, producing the ``redacted_prompt`` and a ``RedactionInfo``
  summary that operator views report.

Functional requirements
- Built-in detectors run in priority order; when two matches overlap, the
  higher-priority detector wins and the other is discarded.
- Strategies: ``mask`` writes the detector's placeholder (``[EMAIL]``),
  ``hash`` writes ``[HASH:xxxxxxxx]`` from a salted SHA-256, ``drop`` removes
  the value and ``summarize`` keeps the first and last two characters.
- Match positions always refer to the input text.
- Redaction is idempotent for ``mask``: placeholders never match a detector.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Final

import structlog

from agent_governance.constants import PII_PATTERN_NAMES
from agent_governance.errors import ValidationError
from agent_governance.persistence.repository import JSONValue
from agent_governance.tracing.trace import AgentTrace, StepType, ToolCallTrace, TraceStep

DEFAULT_HASH_SALT: Final[str] = "agent-governance-redaction"

_REDACTED_STEP_TYPES: Final[frozenset[StepType]] = frozenset({StepType.TOOL_CALL, StepType.TOOL_RESULT})


class RedactionStrategy(StrEnum):
    MASK = "mask"
    HASH = "hash"
    DROP = "drop"
    SUMMARIZE = "summarize"


@dataclass(frozen=True, slots=True)
class RedactionPattern:
    """One detector. ``sensitive_group`` limits the rewrite to a capture group."""

    name: str
    pattern: re.Pattern[str]
    replacement: str | None = None
    strategy: RedactionStrategy | None = None
    sensitive_group: int | None = None

    @property
    def placeholder(self) -> str:
        return self.replacement or f"[{self.name.upper()}]"


@dataclass(frozen=True, slots=True)
class RedactionMatch:
    pattern: str
    start: int
    end: int
    replacement: str
    original: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class RedactionInfo:
    applied: bool
    types_detected: tuple[str, ...]
    count: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "applied": self.applied,
            "types_detected": list(self.types_detected),
            "count": self.count,
        }


@dataclass(frozen=True, slots=True)
class RedactionResult:
    redacted: str
    matches: tuple[RedactionMatch, ...] = ()

    @property
    def has_redactions(self) -> bool:
        return bool(self.matches)

    def info(self) -> RedactionInfo:
        types: list[str] = []
        for match in self.matches:
            if match.pattern not in types:
                types.append(match.pattern)
        return RedactionInfo(
            applied=self.has_redactions, types_detected=tuple(types), count=len(self.matches)
        )


DEFAULT_PATTERNS: Final[tuple[RedactionPattern, ...]] = (
    RedactionPattern(
        name="email",
        pattern=re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    ),
    RedactionPattern(name="ssn", pattern=re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    RedactionPattern(
        name="credit_card",
        pattern=re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
    ),
    RedactionPattern(
        name="phone",
        pattern=re.compile(r"(?<!\w)(?:\+1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    ),
    RedactionPattern(
        name="ip_address",
        pattern=re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
    ),
    RedactionPattern(
        name="api_key",
        pattern=re.compile(r"\b(?:sk-|pk-|api[_-]?key[=:]\s*)[A-Za-z0-9_-]{20,}\b", re.IGNORECASE),
    ),
    RedactionPattern(
        name="jwt",
        pattern=re.compile(r"\beyJ[A-Za-z0-9_-]*\.eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\b"),
    ),
    RedactionPattern(
        name="password_field",
        pattern=re.compile(r"(?:password|passwd|pwd)[\"']?\s*[:=]\s*[\"']?[^\s\"']+", re.IGNORECASE),
    ),
    RedactionPattern(
        name="address",
        pattern=re.compile(
            r"\b\d{1,5}\s+(?:[A-Z][a-z]+\s+){1,3}"
            r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|Way)\b\.?"
        ),
    ),
    RedactionPattern(
        name="name",
        pattern=re.compile(r"(?i:\b(?:my name is|name\s*[:=])\s*)([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"),
        sensitive_group=1,
    ),
)


class Redactor:
    """Rewrites sensitive substrings in trace text and JSON payloads."""

    def __init__(
        self,
        patterns: tuple[RedactionPattern, ...] | None = None,
        *,
        strategy: RedactionStrategy | str = RedactionStrategy.MASK,
        hash_salt: str = DEFAULT_HASH_SALT,
        logger: Any | None = None,
    ) -> None:
        self._patterns: list[RedactionPattern] = list(DEFAULT_PATTERNS if patterns is None else patterns)
        self._strategy = _coerce_strategy(strategy, "strategy")
        self._hash_salt = hash_salt
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def strategy(self) -> RedactionStrategy:
        return self._strategy

    @property
    def pattern_names(self) -> tuple[str, ...]:
        return tuple(item.name for item in self._patterns)

    def add_pattern(
        self,
        name: str,
        pattern: str | re.Pattern[str],
        *,
        replacement: str | None = None,
        strategy: RedactionStrategy | str | None = None,
        sensitive_group: int | None = None,
    ) -> RedactionPattern:
        """Register a detector after the existing ones; a same-named one is replaced in place."""

        if not isinstance(name, str) or not name.strip():
            raise ValidationError("redaction pattern name is required")
        if isinstance(pattern, str):
            try:
                compiled = re.compile(pattern)
            except re.error as exc:
                raise ValidationError(f"invalid redaction pattern {name!r}: {exc}") from exc
        else:
            compiled = pattern
        if sensitive_group is not None and not 0 < sensitive_group <= compiled.groups:
            raise ValidationError(f"redaction pattern {name!r} has no group {sensitive_group}")
        created = RedactionPattern(
            name=name.strip(),
            pattern=compiled,
            replacement=replacement,
            strategy=None if strategy is None else _coerce_strategy(strategy, f"{name}.strategy"),
            sensitive_group=sensitive_group,
        )
        for index, existing in enumerate(self._patterns):
            if existing.name == created.name:
                self._patterns[index] = created
                return created
        self._patterns.append(created)
        return created

    def remove_pattern(self, name: str) -> bool:
        before = len(self._patterns)
        self._patterns = [item for item in self._patterns if item.name != name]
        return len(self._patterns) != before

    def redact(self, text: str) -> RedactionResult:
        if not isinstance(text, str) or not text:
            return RedactionResult(redacted=text)
        matches = self._select_matches(text)
        if not matches:
            return RedactionResult(redacted=text)
        parts: list[str] = []
        cursor = 0
        for match in matches:
            parts.append(text[cursor : match.start])
            parts.append(match.replacement)
            cursor = match.end
        parts.append(text[cursor:])
        return RedactionResult(redacted="".join(parts), matches=tuple(matches))

    def redact_value(self, value: JSONValue) -> JSONValue:
        """Return a copy of ``value`` with every string redacted; keys are kept."""

        if isinstance(value, str):
            return self.redact(value).redacted
        if isinstance(value, list):
            return [self.redact_value(item) for item in value]
        if isinstance(value, Mapping):
            return {key: self.redact_value(item) for key, item in value.items()}
        return value

    def redact_trace(self, trace: AgentTrace, *, prompt: str | None = None) -> AgentTrace:
        """Redact messages, tool payloads and the prompt.

        ``prompt`` is the raw prompt sent to the model; when given it becomes
        the trace's ``redacted_prompt`` after redaction. Otherwise an existing
        ``redacted_prompt`` is passed through the detectors again.
        """

        total = 0

        def scrub(text: str) -> str:
            nonlocal total
            result = self.redact(text)
            total += result.has_redactions
            return result.redacted

        def scrub_value(value: JSONValue) -> JSONValue:
            nonlocal total
            redacted = self.redact_value(value)
            if redacted != value:
                total += 1
            return redacted

        output = trace.output
        if output is not None:
            output = replace(
                output,
                message=scrub(output.message),
                tool_calls=tuple(self._redact_tool_call(call, scrub_value) for call in output.tool_calls),
            )
        source_prompt = prompt if prompt is not None else trace.redacted_prompt
        redacted = replace(
            trace,
            input=replace(trace.input, message=scrub(trace.input.message)),
            output=output,
            steps=tuple(self._redact_step(step, scrub_value) for step in trace.steps),
            redacted_prompt=None if source_prompt is None else scrub(source_prompt),
        )
        if total:
            self._logger.debug("trace_redacted", trace_id=trace.id, redacted_fields=total)
        return redacted

    def contains_sensitive_data(self, text: str) -> bool:
        return any(item.pattern.search(text) for item in self._patterns)

    def detect_patterns(self, text: str) -> tuple[str, ...]:
        return tuple(item.name for item in self._patterns if item.pattern.search(text))

    def _select_matches(self, text: str) -> list[RedactionMatch]:
        taken: list[RedactionMatch] = []
        for detector in self._patterns:
            group = detector.sensitive_group or 0
            for found in detector.pattern.finditer(text):
                start, end = found.span(group)
                if start == end or any(start < other.end and other.start < end for other in taken):
                    continue
                original = text[start:end]
                taken.append(
                    RedactionMatch(
                        pattern=detector.name,
                        start=start,
                        end=end,
                        replacement=self._replacement(original, detector),
                        original=original,
                    )
                )
        taken.sort(key=lambda item: item.start)
        return taken

    def _replacement(self, value: str, detector: RedactionPattern) -> str:
        strategy = detector.strategy or self._strategy
        if strategy is RedactionStrategy.MASK:
            return detector.placeholder
        if strategy is RedactionStrategy.HASH:
            digest = hashlib.sha256(f"{self._hash_salt}{value}".encode()).hexdigest()
            return f"[HASH:{digest[:8]}]"
        if strategy is RedactionStrategy.DROP:
            return ""
        if len(value) <= 4:
            return detector.placeholder
        return f"{value[:2]}..{value[-2:]}"

    @staticmethod
    def _redact_tool_call(call: ToolCallTrace, scrub_value: Any) -> ToolCallTrace:
        return replace(call, arguments=scrub_value(call.arguments), result=scrub_value(call.result))

    @staticmethod
    def _redact_step(step: TraceStep, scrub_value: Any) -> TraceStep:
        if step.type not in _REDACTED_STEP_TYPES:
            return step
        return replace(step, data=scrub_value(step.data))


def redactor_from_config(section: Mapping[str, Any], *, logger: Any | None = None) -> Redactor | None:
    """Build the redactor described by the ``[redaction]`` config section.

    Returns ``None`` when redaction is disabled. An empty ``patterns`` list
    selects every built-in detector.
    """

    if not section.get("enabled", True):
        return None
    selected = list(section.get("patterns") or ())
    unknown = sorted(set(selected) - set(PII_PATTERN_NAMES))
    if unknown:
        raise ValidationError(f"unknown redaction patterns: {', '.join(unknown)}")
    patterns = DEFAULT_PATTERNS
    if selected:
        patterns = tuple(item for item in DEFAULT_PATTERNS if item.name in selected)
    return Redactor(patterns, strategy=section.get("strategy", RedactionStrategy.MASK), logger=logger)


def _coerce_strategy(value: RedactionStrategy | str, path: str) -> RedactionStrategy:
    try:
        return RedactionStrategy(value)
    except ValueError as exc:
        raise ValidationError(f"{path}: unknown redaction strategy {value!r}") from exc


__all__ = [
    "DEFAULT_HASH_SALT",
    "DEFAULT_PATTERNS",
    "RedactionInfo",
    "RedactionMatch",
    "RedactionPattern",
    "RedactionResult",
    "RedactionStrategy",
    "Redactor",
    "redactor_from_config",
]
