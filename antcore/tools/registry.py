"""
antcore Tool Registry - name-keyed tool lookup and execution

Tools are stored in a dict keyed by tool name; dispatch is a plain lookup.
``execute`` never raises for tool-side failures: unknown tools and handler
exceptions both come back as ToolFailure.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from .models import Tool, ToolContext, ToolFailure, ToolMeta, ToolResult, to_tool_result
from .policy import ToolPolicy, ToolPolicyContext, filter_tools_by_policy

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Registry of callable tools.

    Constructed explicitly and injected into AgentEngine; there is no global
    instance.

    Example:
        registry = ToolRegistry([fetch_page, search_notes])
        await registry.initialize()
        result = await registry.execute("fetch_page", {"url": "https://example.com"}, ctx)
        if result.ok:
            print(result.data)
    """

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        self._initialized = False
        for t in tools or []:
            self.register(t)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        logger.info(f"Tool registry initialized with {len(self._tools)} tools")

    async def shutdown(self) -> None:
        self._initialized = False
        logger.info("Tool registry shut down")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, tool: Tool) -> None:
        if tool.meta.name in self._tools:
            logger.warning(f"Tool already registered, replacing: {tool.meta.name}")
        self._tools[tool.meta.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get_all(self) -> List[Tool]:
        return list(self._tools.values())

    def get_by_category(self, category: str) -> List[Tool]:
        return [t for t in self._tools.values() if t.meta.category == category]

    def get_metadata(self) -> List[ToolMeta]:
        return [t.meta for t in self._tools.values()]

    @property
    def count(self) -> int:
        return len(self._tools)

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    def get_definitions(self) -> List[Dict[str, Any]]:
        """OpenAI-format schemas for every registered tool."""
        return [t.to_definition() for t in self._tools.values()]

    def get_definitions_for_policy(
        self,
        policy: Optional[ToolPolicy],
        context: ToolPolicyContext,
    ) -> List[Dict[str, Any]]:
        """OpenAI-format schemas for the tools *policy* allows in *context*."""
        allowed = filter_tools_by_policy(self._tools.values(), policy, context)
        return [t.to_definition() for t in allowed]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, name: str, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        """
        Execute a tool by name.

        Args:
            name: Registered tool name
            args: Arguments produced by the model
            context: Run context

        Returns:
            ToolSuccess or ToolFailure, with ``duration_ms`` in metadata
        """
        tool = self._tools.get(name)
        if tool is None:
            return ToolFailure(error=f"Unknown tool: {name}")

        start = time.monotonic()
        logger.debug(f"Executing tool {name} args={args}")
        try:
            result = to_tool_result(await tool.handler(args, context))
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            result = ToolFailure(error=str(e) or type(e).__name__)

        result.metadata = {
            **result.metadata,
            "duration_ms": int((time.monotonic() - start) * 1000),
        }
        return result
