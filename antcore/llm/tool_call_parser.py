"""
Tool-call recovery from free text.

Some backends (local models, CLI-wrapped models) answer a tool-enabled
request with the tool call written into the text instead of the structured
``tool_calls`` field. This module recovers those calls. Supported shapes,
tried in order:

1. JSON: the whole text, a fenced ```json block, or an object embedded in
   prose that carries a ``"tool_calls"`` / ``"toolCalls"`` key. Accepts
   ``{"tool_calls": [...]}``, a list of calls, or a single ``{"name",
   "arguments"}`` object; OpenAI ``{"function": {...}}`` entries too.
2. XML-ish: ``<tool_call>name<arg_key>k</arg_key><arg_value>v</arg_value></tool_call>``
   with scalar coercion of values (booleans, null, numbers, JSON).
"""

import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import ToolCall

_TOOL_CALL_TAG_RE = re.compile(r"<tool_call\b[^>]*>", re.IGNORECASE)
_TOOL_CALL_END_TAG_RE = re.compile(r"</tool_call>", re.IGNORECASE)
_TOOL_CALL_JSON_HINT_RE = re.compile(r'"tool_calls"\s*:|"toolCalls"\s*:')
_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_XML_ARG_RE = re.compile(
    r"<arg_key>([\s\S]*?)</arg_key>\s*<arg_value>([\s\S]*?)</arg_value>", re.IGNORECASE
)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

PARSE_FAILED = "tool_call_parse_failed"
NO_MARKUP = "no_tool_call_markup"


@dataclass
class ToolCallParseResult:
    """Outcome of ``parse_tool_calls_from_text``."""

    ok: bool
    tool_calls: List[ToolCall] = field(default_factory=list)
    cleaned_content: str = ""
    """Text with the recovered markup removed (success only)."""
    had_markup: bool = False
    truncated: bool = False
    """An opening ``<tool_call>`` tag without a closing tag was seen."""
    error: Optional[str] = None


def looks_like_tool_call_markup(text: str) -> bool:
    return bool(_TOOL_CALL_TAG_RE.search(text or "") or _TOOL_CALL_JSON_HINT_RE.search(text or ""))


def parse_tool_calls_from_text(text: str) -> ToolCallParseResult:
    """Recover tool calls from a free-text model reply."""
    trimmed = (text or "").strip()
    had_markup = looks_like_tool_call_markup(trimmed)

    result = _parse_json_tool_calls(trimmed) or _parse_xml_tool_calls(trimmed)
    if result is not None:
        return result

    truncated = bool(_TOOL_CALL_TAG_RE.search(trimmed)) and not _TOOL_CALL_END_TAG_RE.search(trimmed)
    return ToolCallParseResult(
        ok=False,
        had_markup=had_markup,
        truncated=truncated,
        error=PARSE_FAILED if had_markup else NO_MARKUP,
    )


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def _parse_json_tool_calls(text: str) -> Optional[ToolCallParseResult]:
    candidates: List[str] = []
    if text.startswith("{") or text.startswith("["):
        candidates.append(text)

    fenced = _FENCED_JSON_RE.search(text)
    if fenced and fenced.group(1).strip():
        candidates.append(fenced.group(1).strip())

    embedded = _extract_embedded_json_object(text)
    if embedded:
        candidates.append(embedded)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        calls = _coerce_tool_calls(parsed)
        if not calls:
            continue
        return ToolCallParseResult(
            ok=True,
            tool_calls=calls,
            cleaned_content=_strip_candidate(text, candidate),
            had_markup=True,
        )
    return None


def _extract_embedded_json_object(text: str) -> Optional[str]:
    hint = _TOOL_CALL_JSON_HINT_RE.search(text)
    if not hint:
        return None
    before = text.rfind("{", 0, hint.start())
    after = text.rfind("}")
    if before == -1 or after <= before:
        return None
    return text[before:after + 1].strip()


def _strip_candidate(text: str, candidate: str) -> str:
    idx = text.find(candidate)
    if idx == -1:
        return text.strip()
    remainder = text[:idx] + text[idx + len(candidate):]
    # Drop an emptied code fence left behind by a fenced candidate
    remainder = re.sub(r"```(?:json)?\s*```", "", remainder, flags=re.IGNORECASE)
    return remainder.strip()


def _coerce_tool_calls(value: Any) -> List[ToolCall]:
    if isinstance(value, list):
        calls: List[ToolCall] = []
        for item in value:
            calls.extend(_coerce_tool_calls(item))
        return calls

    if not isinstance(value, dict):
        return []

    entries = value.get("toolCalls")
    if not isinstance(entries, list):
        entries = value.get("tool_calls")
    if isinstance(entries, list):
        calls = []
        for idx, entry in enumerate(entries):
            call = _coerce_single_tool_call(entry, idx)
            if call is not None:
                calls.append(call)
        return calls

    # A bare object is a call only with an "arguments" key; {"name": "Alice", "age": 3} is an answer
    name = value.get("name")
    if "arguments" in value and isinstance(name, str) and name.strip():
        call_id = value.get("id")
        if not (isinstance(call_id, str) and call_id.strip()):
            call_id = f"parsed-{uuid.uuid4()}"
        return [ToolCall(id=call_id, name=name.strip(), arguments=_coerce_arguments(value.get("arguments")))]

    return []


def _coerce_single_tool_call(value: Any, idx: int) -> Optional[ToolCall]:
    if not isinstance(value, dict):
        return None
    func = value.get("function") if isinstance(value.get("function"), dict) else {}

    name = value.get("name", func.get("name"))
    if not isinstance(name, str) or not name.strip():
        return None

    call_id = value.get("id")
    if not (isinstance(call_id, str) and call_id.strip()):
        call_id = f"parsed-{idx + 1}"

    return ToolCall(
        id=call_id,
        name=name.strip(),
        arguments=_coerce_arguments(value.get("arguments", func.get("arguments"))),
    )


def _coerce_arguments(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if not isinstance(value, str) or not value.strip():
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

def _parse_xml_tool_calls(text: str) -> Optional[ToolCallParseResult]:
    if not _TOOL_CALL_TAG_RE.search(text) or not _TOOL_CALL_END_TAG_RE.search(text):
        return None

    calls: List[ToolCall] = []
    cleaned: List[str] = []
    cursor = 0
    while True:
        start = _TOOL_CALL_TAG_RE.search(text, cursor)
        if start is None:
            cleaned.append(text[cursor:])
            break
        end = _TOOL_CALL_END_TAG_RE.search(text, start.end())
        if end is None:
            return None

        cleaned.append(text[cursor:start.start()])
        call = _coerce_xml_tool_call(text[start.end():end.start()], len(calls))
        if call is not None:
            calls.append(call)
        cursor = end.end()

    if not calls:
        return None
    return ToolCallParseResult(
        ok=True,
        tool_calls=calls,
        cleaned_content="".join(cleaned).strip(),
        had_markup=True,
    )


def _coerce_xml_tool_call(inner: str, idx: int) -> Optional[ToolCall]:
    body = inner.strip()
    if not body:
        return None
    name = body.split("<", 1)[0].strip()
    if not name:
        return None

    args: Dict[str, Any] = {}
    for match in _XML_ARG_RE.finditer(body):
        key = match.group(1).strip()
        if key:
            args[key] = _coerce_xml_value(match.group(2))
    return ToolCall(id=f"parsed-xml-{idx + 1}", name=name, arguments=args)


def _coerce_xml_value(value: str) -> Any:
    trimmed = value.strip()
    if not trimmed:
        return ""
    lowered = trimmed.lower()
    if lowered in ("true", "false", "null"):
        return {"true": True, "false": False, "null": None}[lowered]
    if _NUMBER_RE.fullmatch(trimmed):
        return float(trimmed) if "." in trimmed else int(trimmed)
    if trimmed.startswith("{") or trimmed.startswith("["):
        try:
            return json.loads(trimmed)
        except json.JSONDecodeError:
            pass
    return trimmed
