"""
antcore Protocols - Abstract interfaces for dependency injection

These protocols define the contracts that collaborators must fulfill, so the
engine can run against any LLM backend or tool backend.
"""

from typing import Protocol, List, Dict, Any, Optional, runtime_checkable


@runtime_checkable
class LLMClientProtocol(Protocol):
    """
    Abstract interface for LLM clients

    Implement this protocol to plug any model backend into the ProviderManager.
    The returned object must look like ``antcore.llm.base.LLMResponse``
    (``content``, ``tool_calls``, ``stop_reason``, ``model``).

    Example:
        class MyLLMClient:
            async def chat_completion(self, messages, tools=None, config=None, **kwargs):
                return LLMResponse(content="hi", model="my-model")

            async def close(self):
                pass
    """

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict]] = None,
        config: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Call the model for a chat completion

        Args:
            messages: OpenAI-format message dicts
            tools: Optional list of tool schemas (OpenAI format)
            config: Optional per-call overrides (temperature, max_tokens, ...)

        Returns:
            LLMResponse-compatible object
        """
        ...

    async def close(self) -> None:
        """Release client resources"""
        ...


@runtime_checkable
class ToolRegistryProtocol(Protocol):
    """
    Abstract interface for the tool backend consumed by AgentEngine.

    ``antcore.tools.ToolRegistry`` is the in-process implementation.
    """

    def get_definitions(self) -> List[Dict[str, Any]]:
        """Return OpenAI-format schemas for every registered tool."""
        ...

    def get_definitions_for_policy(self, policy: Any, context: Any) -> List[Dict[str, Any]]:
        """Return schemas for the tools the policy allows in this context."""
        ...

    def get(self, name: str) -> Any:
        """Return the registered Tool (with its ``meta``) or None."""
        ...

    async def execute(self, name: str, args: Dict[str, Any], context: Any) -> Any:
        """Execute a tool by name and return a ToolResult."""
        ...


@runtime_checkable
class ToolResultSinkProtocol(Protocol):
    """
    Receives every tool result of a run, e.g. to persist it into a session log.

    Called with a record shaped like
    ``{"tool", "tool_call_id", "ok", "data", "error"}``.
    """

    async def __call__(self, session_key: str, record: Dict[str, Any]) -> None:
        ...
