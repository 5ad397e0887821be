"""
antcore - execution core of an autonomous LLM agent runtime

antcore drives a bounded request/tool-execution loop against one or more
language-model backends and returns a final answer, tolerating backend
failures, token-budget overruns and malformed tool-calling output.

Key Features:
- Provider failover with retry, backoff and per-reason cooldown
- Three-tier context compaction (proactive, reactive, emergency)
- Tool policies, tool timeouts and transcript repair
- Priority message router with middleware and session tracking
- FastAPI bridge exposing the same API over HTTP

Quick Start:
    from antcore import AntCore, tool

    @tool
    async def word_count(text: str) -> int:
        '''Count the words in a text'''
        return len(text.split())

    async with AntCore("antcore.yaml", tools=[word_count]) as core:
        output = await core.execute("How many words are in 'to be or not to be'?")
        print(output.response, output.tools_used)
"""

from .errors import (
    AntCoreError,
    ContextOverflow,
    MaxIterationsReached,
    NoProviderAvailable,
    ProviderError,
    ProviderTimeoutError,
    ToolExecutionError,
    ToolPolicyDenied,
    ToolTimeoutError,
)
from .config import (
    AntCoreConfig,
    CompactionConfig,
    CooldownConfig,
    EngineConfig,
    ProviderConfig,
    RetryConfig,
    RouterConfig,
    RoutingConfig,
    ToolLoopConfig,
    load_config,
)
from .tools import Tool, ToolContext, ToolFailure, ToolPolicy, ToolRegistry, ToolResult, ToolSuccess, tool
from .llm import ProviderManager, call_provider_with_fallback
from .agent import AgentEngine, AgentInput, AgentOutput, ContextCompactor, estimate_tokens
from .channels import BaseChannelAdapter, MessageRouter, NormalizedMessage
from .app import AntCore

__version__ = "0.1.0"

__all__ = [
    "AntCore",
    "AgentEngine",
    "AgentInput",
    "AgentOutput",
    "ContextCompactor",
    "estimate_tokens",
    "ProviderManager",
    "call_provider_with_fallback",
    "Tool",
    "ToolContext",
    "ToolFailure",
    "ToolPolicy",
    "ToolRegistry",
    "ToolResult",
    "ToolSuccess",
    "tool",
    "BaseChannelAdapter",
    "MessageRouter",
    "NormalizedMessage",
    "AntCoreConfig",
    "CompactionConfig",
    "CooldownConfig",
    "EngineConfig",
    "ProviderConfig",
    "RetryConfig",
    "RouterConfig",
    "RoutingConfig",
    "ToolLoopConfig",
    "load_config",
    "AntCoreError",
    "ContextOverflow",
    "MaxIterationsReached",
    "NoProviderAvailable",
    "ProviderError",
    "ProviderTimeoutError",
    "ToolExecutionError",
    "ToolPolicyDenied",
    "ToolTimeoutError",
    "__version__",
]
