"""Structured-output extraction from free-form LLM text.

Models are asked for JSON but often wrap it in prose or code fences. The
first balanced ``[...]`` or ``{...}`` block is extracted and validated
against a pydantic schema. Any failure raises
:class:`~agentloop_core.errors.LLMOutputParseError`; callers decide the
fallback.
"""
from __future__ import annotations

import json
from typing import Any, Literal, TypeVar

from agentloop_core.errors import LLMOutputParseError
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

T = TypeVar("T")

_OPENERS = {"[": "]", "{": "}"}


def extract_json_block(text: str, kind: Literal["[", "{"]) -> str:
    """Return the first balanced block opened by ``kind``.

    Brackets inside JSON strings are ignored.
    """
    closer = _OPENERS[kind]
    start = text.find(kind)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == kind:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find(kind, start + 1)
    msg = f"No {kind}{closer} block found in LLM output"
    raise LLMOutputParseError(msg)


def parse_structured(text: str, schema: Any, kind: Literal["[", "{"] = "[") -> Any:
    """Extract a JSON block from ``text`` and validate it against ``schema``."""
    block = extract_json_block(text, kind)
    try:
        data = json.loads(block)
    except json.JSONDecodeError as exc:
        msg = f"Malformed JSON in LLM output: {exc}"
        raise LLMOutputParseError(msg) from exc
    try:
        return TypeAdapter(schema).validate_python(data)
    except ValidationError as exc:
        msg = f"LLM output failed schema validation: {exc.error_count()} error(s)"
        raise LLMOutputParseError(msg) from exc


# ── Wire schemas ───────────────────────────────────────────────


class PatternPayload(BaseModel):
    pattern: str = Field(min_length=1)
    category: str = "other"
    example: str = ""


class VariationPayload(BaseModel):
    prompt: str = Field(min_length=1)
    rationale: str = ""
    addressed_patterns: list[str] = Field(default_factory=list, alias="addressedPatterns")

    model_config = {"populate_by_name": True}


class IntentPayload(BaseModel):
    agent_name: str = Field(min_length=1, alias="agentName")
    purpose: str = ""
    capabilities: list[str] = Field(default_factory=list)
    category: str = "productivity"
    data_sources: list[str] = Field(default_factory=list, alias="dataSources")
    output_format: str | None = Field(None, alias="outputFormat")
    tone: str | None = None
    language: str | None = None

    model_config = {"populate_by_name": True}
