"""
antcore Tool Models - Data structures for LLM tool calling

ToolResult is a tagged union of ToolSuccess and ToolFailure. Both carry an
``ok`` discriminator so results can be matched on either the type or the
flag. ``format_tool_result`` / ``parse_tool_result`` define the JSON text
that goes into tool-result messages.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union


@dataclass
class ToolMeta:
    """
    Descriptive metadata of a tool

    Attributes:
        name: Unique tool name (the dispatch key)
        description: Description shown to the model
        category: Tool group, used by policy allow/deny groups
        version: Tool version string
        timeout: Execution deadline in seconds (engine default if None)
    """
    name: str
    description: str = ""
    category: str = "general"
    version: str = "1.0.0"
    timeout: Optional[float] = None


@dataclass
class ToolContext:
    """
    Per-run context handed to every tool execution

    Attributes:
        session_key: Opaque conversation identifier
        channel: Channel the run originated from
        run_id: Id of the run executing the tool
        chat_id: Chat identifier on the channel (if any)
        is_subagent: Whether the run belongs to a subagent
        metadata: Free-form extra values
    """
    session_key: str
    channel: str
    run_id: str = ""
    chat_id: Optional[str] = None
    is_subagent: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolSuccess:
    """Successful tool execution."""
    data: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    ok = True

    @property
    def error(self) -> None:
        return None


@dataclass
class ToolFailure:
    """Failed tool execution. Tool errors never propagate as exceptions."""
    error: str
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    ok = False

    @property
    def data(self) -> None:
        return None


ToolResult = Union[ToolSuccess, ToolFailure]

ToolHandler = Callable[[Dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass
class Tool:
    """
    A callable tool: metadata, JSON Schema parameters and an async handler.

    The handler receives ``(args, context)`` and may return a ToolResult or
    any JSON-serializable value, which is wrapped in ToolSuccess.
    """
    meta: ToolMeta
    handler: ToolHandler
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def name(self) -> str:
        return self.meta.name

    def to_definition(self) -> Dict[str, Any]:
        """OpenAI function-calling schema for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.meta.name,
                "description": self.meta.description,
                "parameters": self.parameters,
            },
        }


def to_tool_result(value: Any) -> ToolResult:
    """Normalize a handler return value into a ToolResult."""
    if isinstance(value, (ToolSuccess, ToolFailure)):
        return value
    return ToolSuccess(data=value)


def format_tool_result(result: ToolResult) -> str:
    """Serialize a ToolResult into tool-message content.

    Success: ``{"ok": true, "data": ...}``; failure: ``{"ok": false, "error": "..."}``.
    Metadata stays out of the model-facing text.
    """
    if result.ok:
        payload: Dict[str, Any] = {"ok": True, "data": result.data}
    else:
        payload = {"ok": False, "error": result.error}
    return json.dumps(payload, ensure_ascii=False, default=str)


def parse_tool_result(text: str) -> ToolResult:
    """Inverse of ``format_tool_result``.

    Raises:
        ValueError: If the text is not a serialized ToolResult.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Not a tool result: {e}") from e
    if not isinstance(payload, dict) or not isinstance(payload.get("ok"), bool):
        raise ValueError("Not a tool result: missing boolean 'ok'")
    if payload["ok"]:
        return ToolSuccess(data=payload.get("data"))
    return ToolFailure(error=str(payload.get("error", "")))
