"""
Model client contract and the response types shared by every backend.

Messages and tool schemas are OpenAI-format dicts throughout antcore. A
client turns them into one ``LLMResponse``; the failover layer and the
engine never look at provider-specific payloads.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    """Why a completion ended."""
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    TOOL_USE = "tool_use"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"

    @classmethod
    def from_finish_reason(cls, finish_reason: Optional[str]) -> "StopReason":
        """Map an OpenAI/Anthropic style ``finish_reason``; unknown values end the turn."""
        return _FINISH_REASONS.get(finish_reason or "", cls.END_TURN)


_FINISH_REASONS: Dict[str, StopReason] = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "max_tokens": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "tool_use": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "content_filter": StopReason.CONTENT_FILTER,
    "stop_sequence": StopReason.STOP_SEQUENCE,
}


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """Decode tool-call arguments sent as a dict or JSON text.

    Anything that is not a JSON object (malformed text, lists, scalars)
    becomes ``{}`` so a bad call still reaches the tool as a failure instead
    of breaking the provider response.
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Dropping unparsable tool arguments: {raw[:200]!r}")
        return {}
    return value if isinstance(value, dict) else {}


@dataclass
class ToolCall:
    """One tool invocation requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    def to_openai(self) -> Dict[str, Any]:
        """Entry for the ``tool_calls`` list of an assistant message."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }

    @classmethod
    def from_openai(cls, entry: Dict[str, Any]) -> "ToolCall":
        func = entry.get("function") or {}
        return cls(
            id=entry.get("id", ""),
            name=func.get("name", ""),
            arguments=parse_tool_arguments(func.get("arguments")),
        )


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_openai(cls, usage: Any) -> Optional["Usage"]:
        """Read an OpenAI-style usage object; ``None`` stays ``None``."""
        if usage is None:
            return None
        return cls(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class LLMResponse:
    """
    Provider-neutral completion.

    ``tool_calls`` is None (not an empty list) when the model asked for no
    tools. ``raw_response`` keeps the backend object for debugging only.
    """
    content: str
    tool_calls: Optional[List[ToolCall]] = None
    stop_reason: StopReason = StopReason.END_TURN
    usage: Optional[Usage] = None
    model: Optional[str] = None
    raw_response: Optional[Any] = field(default=None, repr=False)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_assistant_message(self) -> Dict[str, Any]:
        """The assistant message to append to the conversation history."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content or ""}
        if self.has_tool_calls:
            message["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        return message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "tool_calls": [call.to_dict() for call in self.tool_calls] if self.tool_calls else None,
            "stop_reason": self.stop_reason.value,
            "usage": self.usage.to_dict() if self.usage else None,
            "model": self.model,
        }


@dataclass
class LLMConfig:
    """Connection and sampling defaults of one client."""

    model: str
    api_key: Optional[str] = None
    """Falls back to the provider's environment variable when unset."""
    base_url: Optional[str] = None
    """OpenAI-compatible endpoint override (local servers, proxies)."""
    temperature: float = 0.2
    max_tokens: Optional[int] = None
    timeout: int = 60
    """Transport timeout in seconds; failover applies its own deadline too."""
    extra: Dict[str, Any] = field(default_factory=dict)
    """Provider-specific request fields passed through unchanged."""


class BaseLLMClient(ABC):
    """
    Base class of model clients.

    Subclasses implement ``_call_api``; ``chat_completion`` is the
    ``LLMClientProtocol`` entry point used by the ProviderManager. Per-call
    ``config`` values override the client's LLMConfig for that call only.
    """

    provider: str = "unknown"

    def __init__(self, config: LLMConfig):
        self.config = config

    @abstractmethod
    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **overrides: Any,
    ) -> LLMResponse:
        ...

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        config: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        overrides = {**kwargs, **(config or {})}
        return await self._call_api(messages, tools or None, **overrides)

    def _sampling_params(self, overrides: Dict[str, Any]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "temperature": overrides.get("temperature", self.config.temperature),
            "timeout": overrides.get("timeout", self.config.timeout),
        }
        max_tokens = overrides.get("max_tokens", self.config.max_tokens)
        if max_tokens:
            params["max_tokens"] = max_tokens
        return params

    async def close(self) -> None:
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
