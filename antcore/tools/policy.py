"""
Tool policy filter layer.

A ToolPolicy narrows the tools a run may call. It is evaluated in two steps:

1. **Context** -- channel, model and audience (chat id, else session key)
   allow/deny sets. A context that fails these checks gets no tools at all.
2. **Tool** -- per-tool name and per-group (tool category) allow/deny sets.

Filter order: context (channel -> model -> audience), then tool deny ->
group deny -> tool allow -> group allow. Empty allow sets mean "no
restriction".

Usage::

    policy = ToolPolicy(denied_tools={"shell"}, allowed_channels={"cli", "web"})
    ctx = ToolPolicyContext(channel="cli", session_key="cli:alice")

    allowed = filter_tools_by_policy(registry.get_all(), policy, ctx)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, TypeVar

T = TypeVar("T")


@dataclass
class ToolPolicyContext:
    """Run attributes a policy is evaluated against."""

    channel: str
    session_key: str
    chat_id: Optional[str] = None
    model: Optional[str] = None
    is_subagent: bool = False

    @property
    def audience(self) -> str:
        return self.chat_id or self.session_key


@dataclass
class ToolPolicy:
    """Named allow/deny sets restricting which tools a run may invoke."""

    allowed_groups: Set[str] = field(default_factory=set)
    denied_groups: Set[str] = field(default_factory=set)
    allowed_tools: Set[str] = field(default_factory=set)
    denied_tools: Set[str] = field(default_factory=set)
    allowed_channels: Set[str] = field(default_factory=set)
    denied_channels: Set[str] = field(default_factory=set)
    allowed_models: Set[str] = field(default_factory=set)
    denied_models: Set[str] = field(default_factory=set)
    allowed_audiences: Set[str] = field(default_factory=set)
    denied_audiences: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        # Accept any iterable from callers, compare models case-insensitively
        for name in self.__dataclass_fields__:
            values = set(getattr(self, name) or ())
            if name.endswith("_models"):
                values = {v.lower() for v in values}
            setattr(self, name, values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolPolicy":
        """Build from a config mapping; accepts snake_case or camelCase keys."""
        values: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            camel = name.split("_")[0] + "".join(p.title() for p in name.split("_")[1:])
            raw = data.get(name, data.get(camel))
            if raw:
                values[name] = set(raw)
        return cls(**values)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def context_denial_reason(self, context: ToolPolicyContext) -> Optional[str]:
        """Return why the whole context is denied, or None if it passes."""
        if self.allowed_channels and context.channel not in self.allowed_channels:
            return f"channel '{context.channel}' is not in the allowed channels"
        if context.channel in self.denied_channels:
            return f"channel '{context.channel}' is denied"

        if context.model:
            model = context.model.lower()
            if self.allowed_models and model not in self.allowed_models:
                return f"model '{context.model}' is not in the allowed models"
            if model in self.denied_models:
                return f"model '{context.model}' is denied"

        audience = context.audience
        if self.allowed_audiences and audience not in self.allowed_audiences:
            return f"audience '{audience}' is not in the allowed audiences"
        if audience in self.denied_audiences:
            return f"audience '{audience}' is denied"
        return None

    def tool_denial_reason(self, tool_name: str, category: Optional[str] = None) -> Optional[str]:
        """Return why a single tool is denied, or None if it is allowed."""
        if tool_name in self.denied_tools:
            return f"tool '{tool_name}' is in the denied tools"
        if category and category in self.denied_groups:
            return f"tool group '{category}' is denied"
        if self.allowed_tools and tool_name not in self.allowed_tools:
            return f"tool '{tool_name}' is not in the allowed tools"
        if self.allowed_groups and category not in self.allowed_groups:
            return f"tool group '{category}' is not in the allowed groups"
        return None

    def is_tool_allowed(
        self,
        tool_name: str,
        category: Optional[str],
        context: ToolPolicyContext,
    ) -> bool:
        return self.get_filter_reason(tool_name, category, context) is None

    def get_filter_reason(
        self,
        tool_name: str,
        category: Optional[str],
        context: ToolPolicyContext,
    ) -> Optional[str]:
        """Return a human-readable reason why a tool was filtered, or None if allowed."""
        return self.context_denial_reason(context) or self.tool_denial_reason(tool_name, category)


def filter_tools_by_policy(
    tools: Iterable[T],
    policy: Optional[ToolPolicy],
    context: ToolPolicyContext,
) -> List[T]:
    """Filter tools (anything with ``meta.name`` / ``meta.category``) through a policy.

    Args:
        tools: Registered tools.
        policy: Policy to apply; ``None`` allows everything.
        context: Run context the policy is evaluated against.

    Returns:
        Allowed tools, order preserved.
    """
    tools = list(tools)
    if policy is None:
        return tools
    if policy.context_denial_reason(context) is not None:
        return []
    return [
        tool for tool in tools
        if policy.tool_denial_reason(tool.meta.name, tool.meta.category) is None
    ]
