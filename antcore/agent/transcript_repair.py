"""
Transcript repair - keep tool calls and tool results paired before a provider call

Two passes over OpenAI-format messages:

1. ``drop_invalid_tool_calls``: tool calls without a name are removed; an
   assistant message left with no calls and no text is removed.
2. ``pair_tool_results``: every tool call gets exactly one result placed
   right after its assistant message. Missing results become a synthetic
   "interrupted" failure, duplicates and orphan results are dropped,
   displaced results are moved.

Both passes return the input list itself when nothing changed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Set, Tuple

from ..constants import INTERRUPTED_TOOL_RESULT
from ..tools.models import ToolFailure, format_tool_result

logger = logging.getLogger(__name__)

Message = Dict[str, Any]


@dataclass
class RepairStats:
    dropped_calls: int = 0
    dropped_assistant: int = 0
    synthetic: int = 0
    duplicates: int = 0
    orphans: int = 0
    moved: int = 0

    @property
    def changed(self) -> bool:
        return any((
            self.dropped_calls, self.dropped_assistant, self.synthetic,
            self.duplicates, self.orphans, self.moved,
        ))


def interrupted_tool_result(tool_call_id: str, name: str = "") -> Message:
    """Synthetic result for a tool call whose result was never recorded."""
    message: Message = {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "content": format_tool_result(ToolFailure(INTERRUPTED_TOOL_RESULT)),
    }
    if name:
        message["name"] = name
    return message


def _call_name(call: Dict[str, Any]) -> str:
    return (call.get("function") or {}).get("name") or ""


def drop_invalid_tool_calls(messages: List[Message], stats: RepairStats) -> List[Message]:
    repaired: List[Message] = []
    changed = False

    for msg in messages:
        calls = msg.get("tool_calls")
        if msg.get("role") != "assistant" or not calls:
            repaired.append(msg)
            continue

        valid = [c for c in calls if c.get("id") and _call_name(c)]
        if len(valid) == len(calls):
            repaired.append(msg)
            continue

        changed = True
        stats.dropped_calls += len(calls) - len(valid)
        if valid:
            repaired.append({**msg, "tool_calls": valid})
        elif msg.get("content"):
            stripped = {k: v for k, v in msg.items() if k != "tool_calls"}
            repaired.append(stripped)
        else:
            stats.dropped_assistant += 1
            logger.warning("[TranscriptRepair] dropped assistant message with only invalid tool calls")

    return repaired if changed else messages


def pair_tool_results(messages: List[Message], stats: RepairStats) -> List[Message]:
    results_by_id: Dict[str, List[Tuple[int, Message]]] = {}
    for i, msg in enumerate(messages):
        if msg.get("role") == "tool" and msg.get("tool_call_id"):
            results_by_id.setdefault(msg["tool_call_id"], []).append((i, msg))

    repaired: List[Message] = []
    consumed: Set[int] = set()
    changed = False

    for i, msg in enumerate(messages):
        role = msg.get("role")

        if role == "tool":
            if i in consumed:
                continue
            # Results not consumed by an earlier assistant message are orphans
            stats.orphans += 1
            changed = True
            logger.warning(f"[TranscriptRepair] dropped orphan tool result {msg.get('tool_call_id')}")
            continue

        repaired.append(msg)
        if role != "assistant" or not msg.get("tool_calls"):
            continue

        expected_index = i + 1
        seen: Set[str] = set()
        for call in msg["tool_calls"]:
            call_id = call["id"]
            if call_id in seen:
                continue
            seen.add(call_id)

            found = [(idx, r) for idx, r in results_by_id.get(call_id, []) if idx > i and idx not in consumed]
            if not found:
                repaired.append(interrupted_tool_result(call_id, _call_name(call)))
                stats.synthetic += 1
                changed = True
                logger.warning(f"[TranscriptRepair] inserted interrupted result for tool call {call_id}")
                continue

            first_idx, first = found[0]
            consumed.add(first_idx)
            repaired.append(first)
            if first_idx != expected_index:
                stats.moved += 1
                changed = True
            expected_index += 1

            for dup_idx, _ in found[1:]:
                consumed.add(dup_idx)
                stats.duplicates += 1
                changed = True

    return repaired if changed else messages


def repair_transcript(messages: List[Message]) -> List[Message]:
    """Run both repair passes. Returns ``messages`` itself when it was already valid."""
    stats = RepairStats()
    repaired = drop_invalid_tool_calls(messages, stats)
    repaired = pair_tool_results(repaired, stats)
    if stats.changed:
        logger.info(
            "[TranscriptRepair] dropped_calls=%d synthetic=%d duplicates=%d orphans=%d moved=%d",
            stats.dropped_calls, stats.synthetic, stats.duplicates, stats.orphans, stats.moved,
        )
    return repaired
