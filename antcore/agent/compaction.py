"""Context compaction with three tiers.

Tier 1 -- Proactive: at the start of an iteration, summarize old messages
          once the history reaches 75% of the budget.
Tier 2 -- Reactive: after tool results are appended, summarize above 60%.
Tier 3 -- Emergency: after an assistant tool-call message is appended,
          shrink below 50% by summarizing, dropping the oldest third of the
          history, and finally keeping only the last exchange.

Token counts are estimates (``ceil(chars / 4)``). No tier ever returns a
history whose estimate is larger than its input, and a kept tail never
starts with a tool result whose assistant message was summarized away.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..config import CompactionConfig
from ..errors import ContextOverflow

logger = logging.getLogger(__name__)

Message = Dict[str, Any]

SUMMARY_HEADER = "Summary of earlier conversation:"
TRUNCATION_MARKER = "\n[...truncated]"
_SUMMARY_LINE_CHARS = 400


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate tokens in *text* as one per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def _content_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                text = part.get("text") or part.get("content") or ""
                if isinstance(text, str):
                    parts.append(text)
            elif isinstance(part, str):
                parts.append(part)
        return "".join(parts)
    return str(content)


def estimate_message_tokens(message: Message) -> int:
    """Content plus tool-call names and argument JSON."""
    total = estimate_tokens(_content_text(message.get("content")))
    for call in message.get("tool_calls") or []:
        func = call.get("function") or {}
        arguments = func.get("arguments") or ""
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        total += estimate_tokens(func.get("name") or "") + estimate_tokens(arguments)
    return total


def estimate_messages_tokens(messages: List[Message]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)


@dataclass
class CompactionResult:
    """Outcome of one compaction tier."""

    messages: List[Message]
    tier: str
    tokens_before: int
    tokens_after: int
    removed_messages: int = 0

    @property
    def compacted(self) -> bool:
        return self.tokens_after < self.tokens_before


def _split_system(messages: List[Message]) -> Tuple[List[Message], List[Message]]:
    if messages and messages[0].get("role") == "system":
        return [messages[0]], list(messages[1:])
    return [], list(messages)


def _safe_split(history: List[Message], keep: int) -> int:
    """Index where the kept tail starts, moved back so it never opens on a tool result."""
    split = max(len(history) - keep, 0)
    while 0 < split < len(history) and history[split].get("role") == "tool":
        split -= 1
    return split


def _drop_leading_tool_results(history: List[Message]) -> List[Message]:
    start = 0
    while start < len(history) and history[start].get("role") == "tool":
        start += 1
    return history[start:]


def _summary_line(message: Message) -> str:
    role = message.get("role", "unknown")
    text = _content_text(message.get("content")).strip()
    calls = [
        (c.get("function") or {}).get("name", "") for c in message.get("tool_calls") or []
    ]
    if calls:
        text = (text + " " if text else "") + f"[called {', '.join(calls)}]"
    if role == "tool" and message.get("name"):
        role = f"tool {message['name']}"
    if len(text) > _SUMMARY_LINE_CHARS:
        text = text[:_SUMMARY_LINE_CHARS] + "..."
    return f"{role}: {text}"


class ContextCompactor:
    """Keeps a run's message history inside ``max_history_tokens``.

    Args:
        max_history_tokens: History budget in estimated tokens
        config: Thresholds and tool-result guard settings
    """

    def __init__(self, max_history_tokens: int = 40_000, config: Optional[CompactionConfig] = None) -> None:
        self.max_history_tokens = max_history_tokens
        self.config = config or CompactionConfig()

    # ------------------------------------------------------------------
    # Summarization
    # ------------------------------------------------------------------

    def summarize(
        self,
        messages: List[Message],
        keep: int,
        max_summary_tokens: Optional[int] = None,
    ) -> List[Message]:
        """Replace all but the last *keep* non-system messages with one summary.

        The leading system message is kept untouched. The summary is a system
        message of role-prefixed lines capped at *max_summary_tokens*.
        """
        system, history = _split_system(messages)
        split = _safe_split(history, keep)
        if split <= 0:
            return messages

        cap_tokens = max_summary_tokens if max_summary_tokens is not None else self.config.max_summary_tokens
        cap_chars = max(cap_tokens, 1) * 4
        body = "\n".join(_summary_line(m) for m in history[:split])
        text = f"{SUMMARY_HEADER}\n{body}"
        if len(text) > cap_chars:
            text = text[: max(cap_chars - 3, 0)] + "..."

        return system + [{"role": "system", "content": text}] + history[split:]

    def _summarize_tier(self, messages: List[Message], tier: str, keep: int) -> CompactionResult:
        before = estimate_messages_tokens(messages)
        compacted = self.summarize(messages, keep)
        after = estimate_messages_tokens(compacted)
        if after >= before:
            return CompactionResult(messages, tier, before, before)
        logger.info(f"[Compaction] {tier}: {before} -> {after} tokens ({len(messages)} -> {len(compacted)} messages)")
        return CompactionResult(compacted, tier, before, after, len(messages) - len(compacted))

    # ------------------------------------------------------------------
    # Tier 1 / Tier 2
    # ------------------------------------------------------------------

    def proactive(self, messages: List[Message]) -> CompactionResult:
        """Tier 1: run at the start of each iteration."""
        tokens = estimate_messages_tokens(messages)
        _, history = _split_system(messages)
        keep = self.config.proactive_min_recent
        if (
            not self.config.enabled
            or tokens < self.max_history_tokens * self.config.proactive_threshold
            or len(history) <= keep
        ):
            return CompactionResult(messages, "proactive", tokens, tokens)
        return self._summarize_tier(messages, "proactive", keep)

    def reactive(self, messages: List[Message]) -> CompactionResult:
        """Tier 2: run after tool results are appended."""
        tokens = estimate_messages_tokens(messages)
        if not self.config.enabled or tokens <= self.max_history_tokens * self.config.reactive_threshold:
            return CompactionResult(messages, "reactive", tokens, tokens)
        return self._summarize_tier(messages, "reactive", self.config.reactive_min_recent)

    # ------------------------------------------------------------------
    # Tier 3
    # ------------------------------------------------------------------

    def emergency(self, messages: List[Message]) -> CompactionResult:
        """Tier 3: run after an assistant tool-call message is appended.

        Raises:
            ContextOverflow: If the history could not be shrunk, or is still
                larger than the whole budget afterwards.
        """
        before = estimate_messages_tokens(messages)
        if not self.config.enabled or before < self.max_history_tokens * self.config.emergency_threshold:
            return CompactionResult(messages, "emergency", before, before)

        target = self.max_history_tokens * self.config.emergency_target
        summary_cap = min(self.config.max_summary_tokens, max(int(target) // 4, 1))

        current = self.summarize(messages, self.config.reactive_min_recent, summary_cap)
        if estimate_messages_tokens(current) >= before:
            current = messages

        system, history = _split_system(current)
        while estimate_messages_tokens(system + history) >= target and len(history) > 2:
            history = self._drop_oldest_third(history)
        current = system + history

        if estimate_messages_tokens(current) >= target:
            current = system + self._last_exchange(history)

        after = estimate_messages_tokens(current)
        if after >= before or after > self.max_history_tokens:
            logger.error(f"[Compaction] emergency failed: {before} -> {after} tokens (budget {self.max_history_tokens})")
            raise ContextOverflow(after, self.max_history_tokens)

        logger.warning(f"[Compaction] emergency: {before} -> {after} tokens ({len(messages)} -> {len(current)} messages)")
        return CompactionResult(current, "emergency", before, after, len(messages) - len(current))

    @staticmethod
    def _drop_oldest_third(history: List[Message]) -> List[Message]:
        total = estimate_messages_tokens(history)
        dropped = 0
        cut = 0
        # Always keep the final message
        while cut < len(history) - 1 and dropped * 3 < total:
            dropped += estimate_message_tokens(history[cut])
            cut += 1
        remaining = _drop_leading_tool_results(history[max(cut, 1):])
        return remaining or history[-1:]

    @staticmethod
    def _last_exchange(history: List[Message]) -> List[Message]:
        start = max(len(history) - 2, 0)
        while start > 0 and history[start].get("role") == "tool":
            start -= 1
        return history[start:]

    # ------------------------------------------------------------------
    # Tool-result guard
    # ------------------------------------------------------------------

    @property
    def max_tool_result_chars(self) -> int:
        return int(min(
            self.max_history_tokens * self.config.max_tool_result_share * 4,
            self.config.max_tool_result_chars,
        ))

    def truncate_tool_result(self, text: str) -> str:
        """Truncate one tool result to its share of the budget.

        Cuts at the last newline when that keeps more than half the allowance.
        """
        if not self.config.tool_result_guard:
            return text
        max_chars = self.max_tool_result_chars
        if len(text) <= max_chars:
            return text

        cut = text[:max_chars]
        newline_pos = cut.rfind("\n")
        if newline_pos > max_chars // 2:
            cut = cut[: newline_pos + 1]
        logger.info(f"[Compaction] tool result truncated {len(text)} -> {len(cut)} chars")
        return cut + TRUNCATION_MARKER
