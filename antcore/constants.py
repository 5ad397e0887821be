"""
Shared constants for antcore.

Centralizes values needed by both the engine and its collaborators to avoid
circular imports and duplication.
"""

from typing import Tuple

# ── Provider roles ──

ROLE_CHAT = "chat"
ROLE_TOOLS = "tools"
ROLE_PARENT_FOR_CLI = "parent_for_cli"
PROVIDER_ROLES: Tuple[str, ...] = (ROLE_CHAT, ROLE_TOOLS, ROLE_PARENT_FOR_CLI)

# ── Routing tiers ──

TIER_FAST = "fast"
TIER_QUALITY = "quality"
TIER_BACKGROUND = "background"
TIER_BACKGROUND_IMPORTANT = "background_important"
TIER_MAINTENANCE = "maintenance"
ROUTING_TIERS: Tuple[str, ...] = (
    TIER_FAST, TIER_QUALITY, TIER_BACKGROUND, TIER_BACKGROUND_IMPORTANT, TIER_MAINTENANCE,
)

# ── Engine messages ──

MAX_ITERATIONS_RESPONSE = (
    "I've reached the maximum number of tool iterations. Here's what I've done so far."
)
MAX_ITERATIONS_ERROR = "Max iterations reached"
TOOL_BLOCKED_RESPONSE = "Tool blocked by policy"
CONTEXT_OVERFLOW_RESPONSE = (
    "The conversation grew too large for my context window, so I stopped here. "
    "Please start a new conversation or ask a narrower question."
)
ERROR_RESPONSE_PREFIX = "I encountered an error: "

FINALIZE_INSTRUCTION = (
    "Write the final answer for the user now. Do not call tools. "
    "Use only the tool results summarized below."
)
TOOL_CALL_REPAIR_INSTRUCTION = (
    "Your previous reply contained a malformed or truncated tool call. "
    "Respond again with a single valid structured tool call using the provided "
    "tool schemas, and no other text."
)

INTERRUPTED_TOOL_RESULT = "Tool call was interrupted before a result was recorded."

# ── Limits ──

MAX_POLICY_DENIALS = 3
"""Denials of one tool name tolerated per run; the next one aborts the run."""

TOOL_DIGEST_MAX_CHARS = 6000
"""Cap on the tool-output digest handed to the chat provider at finalization."""

HISTORY_SHARE_OF_CONTEXT_WINDOW = 0.75
"""Part of a model's context window the message history may use; the rest is
reserved for the system prompt, tool schemas and the completion."""
