"""
antcore LLM - model clients, provider management and failover

Usage:
    from antcore.llm import ProviderManager, call_provider_with_fallback

    manager = ProviderManager(config.providers, routing=config.routing)
    await manager.initialize()

    primary = manager.select_best_provider("tools", require_tools=True)
    result = await call_provider_with_fallback(manager, primary.id, messages, tools=tools)
    print(result.provider_id, result.response.content)
"""

from .base import BaseLLMClient, LLMConfig, LLMResponse, StopReason, ToolCall, Usage, parse_tool_arguments
from .litellm_client import LiteLLMClient, build_litellm_model_string
from .providers import (
    Provider,
    ProviderHealth,
    ProviderHealthEvent,
    FailureRecord,
    ProviderManager,
    classify_provider_error,
    is_retryable_error,
    sort_providers_by_priority,
)
from .failover import (
    ProviderAttempt,
    ProviderCallResult,
    call_provider_with_fallback,
    compute_backoff,
    repair_tool_calls,
    with_retry,
)
from .tiers import resolve_tier_for_intent
from .tool_call_parser import (
    ToolCallParseResult,
    looks_like_tool_call_markup,
    parse_tool_calls_from_text,
)

__all__ = [
    "BaseLLMClient",
    "LLMConfig",
    "LLMResponse",
    "StopReason",
    "ToolCall",
    "Usage",
    "parse_tool_arguments",
    "LiteLLMClient",
    "build_litellm_model_string",
    "Provider",
    "ProviderHealth",
    "ProviderHealthEvent",
    "FailureRecord",
    "ProviderManager",
    "classify_provider_error",
    "is_retryable_error",
    "sort_providers_by_priority",
    "ProviderAttempt",
    "ProviderCallResult",
    "call_provider_with_fallback",
    "compute_backoff",
    "repair_tool_calls",
    "with_retry",
    "resolve_tier_for_intent",
    "ToolCallParseResult",
    "looks_like_tool_call_markup",
    "parse_tool_calls_from_text",
]
