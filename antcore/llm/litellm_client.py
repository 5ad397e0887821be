"""
litellm-backed model client.

Every configured provider is served through ``litellm.acompletion``; the
provider name only decides the model-string prefix and where the API key
comes from. OpenAI-compatible servers (vLLM, LM Studio, proxies) use the
``openai`` provider with a ``base_url``.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from ..config import ProviderConfig
from .base import BaseLLMClient, LLMConfig, LLMResponse, StopReason, ToolCall, Usage, parse_tool_arguments

logger = logging.getLogger(__name__)

# Provider -> environment variable holding its API key
_API_KEY_ENV: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
    "gemini": "GOOGLE_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

# Providers litellm routes by a "<provider>/<model>" prefix
_PREFIXED = frozenset({"anthropic", "azure", "gemini", "ollama", "openrouter"})


def build_litellm_model_string(provider: str, model: str) -> str:
    """``("anthropic", "claude-x")`` -> ``"anthropic/claude-x"``.

    OpenAI and unknown providers keep the bare model name.
    See https://docs.litellm.ai/docs/providers
    """
    provider = provider.lower()
    return f"{provider}/{model}" if provider in _PREFIXED else model


class LiteLLMClient(BaseLLMClient):
    """
    Model client for any litellm provider.

    Example:
        client = LiteLLMClient(LLMConfig(model="claude-3-5-sonnet-20241022"), provider_name="anthropic")
        response = await client.chat_completion([{"role": "user", "content": "Hello!"}])
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        provider_name: str = "openai",
        **overrides: Any,
    ):
        if config is None:
            if "model" not in overrides:
                raise ValueError("LiteLLMClient needs an LLMConfig or a model")
            config = LLMConfig(**overrides)
        super().__init__(config)

        self.provider = provider_name.lower()
        self.litellm_model = build_litellm_model_string(self.provider, config.model)

        api_key = config.api_key
        if not api_key and self.provider in _API_KEY_ENV:
            api_key = os.environ.get(_API_KEY_ENV[self.provider])

        self._connection_kwargs: Dict[str, Any] = {}
        if config.base_url:
            self._connection_kwargs["api_base"] = config.base_url
        if api_key:
            self._connection_kwargs["api_key"] = api_key

        logger.info(f"[LiteLLM] client ready: provider={self.provider}, model={self.litellm_model}")

    @classmethod
    def from_provider_config(cls, cfg: ProviderConfig) -> "LiteLLMClient":
        return cls(
            LLMConfig(model=cfg.model, api_key=cfg.api_key, base_url=cfg.base_url, timeout=cfg.timeout),
            provider_name=cfg.provider,
        )

    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **overrides: Any,
    ) -> LLMResponse:
        import litellm

        request: Dict[str, Any] = {
            "model": overrides.get("model") or self.litellm_model,
            "messages": messages,
            **self.config.extra,
            **self._sampling_params(overrides),
            **self._connection_kwargs,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = overrides.get("tool_choice", "auto")
        if "stop" in overrides:
            request["stop"] = overrides["stop"]

        logger.debug(
            f"[LiteLLM] {request['model']}: {len(messages)} messages, {len(tools or [])} tools"
        )
        return self._to_response(await litellm.acompletion(**request))

    def _to_response(self, raw: Any) -> LLMResponse:
        """Convert a litellm ModelResponse (OpenAI shape) into an LLMResponse."""
        choice = raw.choices[0]
        message = choice.message
        calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=parse_tool_arguments(tc.function.arguments))
            for tc in (message.tool_calls or [])
        ]
        return LLMResponse(
            content=message.content or "",
            tool_calls=calls or None,
            stop_reason=StopReason.from_finish_reason(choice.finish_reason),
            usage=Usage.from_openai(getattr(raw, "usage", None)),
            model=getattr(raw, "model", None) or self.config.model,
            raw_response=raw,
        )
