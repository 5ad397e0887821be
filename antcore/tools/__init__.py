"""
antcore Tools - tool models, registry, policy and the @tool decorator
"""

from .models import (
    Tool,
    ToolMeta,
    ToolContext,
    ToolSuccess,
    ToolFailure,
    ToolResult,
    to_tool_result,
    format_tool_result,
    parse_tool_result,
)
from .policy import ToolPolicy, ToolPolicyContext, filter_tools_by_policy
from .registry import ToolRegistry
from .decorator import tool

__all__ = [
    "Tool",
    "ToolMeta",
    "ToolContext",
    "ToolSuccess",
    "ToolFailure",
    "ToolResult",
    "to_tool_result",
    "format_tool_result",
    "parse_tool_result",
    "ToolPolicy",
    "ToolPolicyContext",
    "filter_tools_by_policy",
    "ToolRegistry",
    "tool",
]
