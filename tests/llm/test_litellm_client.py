"""Tests for antcore.llm.litellm_client and the response types in antcore.llm.base"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from antcore.config import ProviderConfig
from antcore.llm.base import LLMConfig, LLMResponse, StopReason, ToolCall, Usage, parse_tool_arguments
from antcore.llm.litellm_client import LiteLLMClient, build_litellm_model_string


# ── helpers ──


def _litellm_response(content="hi", tool_calls=None, finish_reason="stop", usage=True):
    message = MagicMock()
    message.content = content
    message.tool_calls = tool_calls
    choice = MagicMock()
    choice.message = message
    choice.finish_reason = finish_reason
    response = MagicMock()
    response.choices = [choice]
    response.model = "gpt-4o-2024"
    if usage:
        response.usage = MagicMock(prompt_tokens=10, completion_tokens=5, total_tokens=15)
    else:
        response.usage = None
    return response


def _tool_call(call_id, name, arguments):
    tc = MagicMock()
    tc.id = call_id
    tc.function.name = name
    tc.function.arguments = arguments
    return tc


# =========================================================================
# Model strings
# =========================================================================


class TestBuildModelString:

    def test_openai_unprefixed(self):
        assert build_litellm_model_string("openai", "gpt-4o") == "gpt-4o"

    @pytest.mark.parametrize("provider", ["anthropic", "azure", "gemini", "ollama", "openrouter"])
    def test_prefixed(self, provider):
        assert build_litellm_model_string(provider, "m1") == f"{provider}/m1"

    def test_case_insensitive(self):
        assert build_litellm_model_string("Anthropic", "claude") == "anthropic/claude"

    def test_unknown_passthrough(self):
        assert build_litellm_model_string("mystery", "m1") == "m1"


# =========================================================================
# LiteLLMClient
# =========================================================================


class TestLiteLLMClient:

    def test_requires_model(self):
        with pytest.raises(ValueError):
            LiteLLMClient(provider_name="openai")

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")
        client = LiteLLMClient(LLMConfig(model="claude"), provider_name="anthropic")
        assert client._connection_kwargs == {"api_key": "env-key"}

    def test_explicit_key_and_base_url(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "env-key")
        client = LiteLLMClient(
            LLMConfig(model="local", api_key="sk-1", base_url="http://localhost:8000/v1"),
        )
        assert client._connection_kwargs == {"api_base": "http://localhost:8000/v1", "api_key": "sk-1"}

    def test_from_provider_config(self):
        cfg = ProviderConfig(id="local", model="llama3", provider="Ollama",
                             base_url="http://localhost:11434", timeout=15)
        client = LiteLLMClient.from_provider_config(cfg)
        assert client.provider == "ollama"
        assert client.litellm_model == "ollama/llama3"
        assert client.config.timeout == 15
        assert client._connection_kwargs == {"api_base": "http://localhost:11434"}

    @pytest.mark.asyncio
    async def test_plain_completion(self):
        client = LiteLLMClient(LLMConfig(model="gpt-4o", api_key="sk-1", temperature=0.3))
        mock = AsyncMock(return_value=_litellm_response("hello there"))

        with patch("litellm.acompletion", mock):
            response = await client.chat_completion([{"role": "user", "content": "hi"}])

        assert response.content == "hello there"
        assert response.stop_reason == StopReason.END_TURN
        assert response.usage.total_tokens == 15
        assert response.model == "gpt-4o-2024"
        assert not response.has_tool_calls

        params = mock.await_args.kwargs
        assert params["model"] == "gpt-4o"
        assert params["temperature"] == 0.3
        assert params["api_key"] == "sk-1"
        assert "tools" not in params

    @pytest.mark.asyncio
    async def test_tool_calls_decoded(self):
        client = LiteLLMClient(LLMConfig(model="claude", api_key="k"), provider_name="anthropic")
        raw = _litellm_response(
            content=None,
            tool_calls=[
                _tool_call("c1", "search", '{"q": "tea"}'),
                _tool_call("c2", "broken", "{not json"),
            ],
            finish_reason="tool_calls",
            usage=False,
        )
        tools = [{"type": "function", "function": {"name": "search", "parameters": {}}}]
        mock = AsyncMock(return_value=raw)

        with patch("litellm.acompletion", mock):
            response = await client.chat_completion([], tools=tools)

        assert response.content == ""
        assert response.stop_reason == StopReason.TOOL_USE
        assert response.usage is None
        assert [tc.arguments for tc in response.tool_calls] == [{"q": "tea"}, {}]
        params = mock.await_args.kwargs
        assert params["model"] == "anthropic/claude"
        assert params["tools"] == tools
        assert params["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_config_overrides_per_call(self):
        client = LiteLLMClient(LLMConfig(model="gpt-4o", api_key="k"))
        mock = AsyncMock(return_value=_litellm_response())

        with patch("litellm.acompletion", mock):
            await client.chat_completion([], config={"max_tokens": 256, "temperature": 0.0})

        params = mock.await_args.kwargs
        assert params["max_tokens"] == 256
        assert params["temperature"] == 0.0

    @pytest.mark.parametrize("finish,expected", [
        ("stop", StopReason.END_TURN),
        ("length", StopReason.MAX_TOKENS),
        ("tool_calls", StopReason.TOOL_USE),
        ("content_filter", StopReason.CONTENT_FILTER),
        (None, StopReason.END_TURN),
        ("weird", StopReason.END_TURN),
    ])
    def test_stop_reason_mapping(self, finish, expected):
        assert StopReason.from_finish_reason(finish) == expected

    def test_parse_arguments(self):
        assert parse_tool_arguments({"a": 1}) == {"a": 1}
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments("[1, 2]") == {}
        assert parse_tool_arguments('{"a": 1}') == {"a": 1}


# =========================================================================
# Response types
# =========================================================================


class TestResponseTypes:

    def test_tool_call_openai_shape(self):
        entry = ToolCall(id="c1", name="add", arguments={"a": 1}).to_openai()
        assert entry["type"] == "function"
        assert json.loads(entry["function"]["arguments"]) == {"a": 1}

        back = ToolCall.from_openai(entry)
        assert (back.id, back.name, back.arguments) == ("c1", "add", {"a": 1})

    def test_from_openai_tolerates_bad_arguments(self):
        assert ToolCall.from_openai({"id": "x", "function": {"name": "f", "arguments": "{oops"}}).arguments == {}
        assert ToolCall.from_openai({"id": "x", "function": {"name": "f", "arguments": "  "}}).arguments == {}

    def test_assistant_message(self):
        plain = LLMResponse(content="hi").to_assistant_message()
        assert plain == {"role": "assistant", "content": "hi"}

        with_calls = LLMResponse(
            content="",
            tool_calls=[ToolCall(id="c1", name="add", arguments={})],
        ).to_assistant_message()
        assert with_calls["tool_calls"][0]["id"] == "c1"

    def test_to_dict(self):
        data = LLMResponse(content="hi", stop_reason=StopReason.MAX_TOKENS).to_dict()
        assert data["stop_reason"] == "max_tokens"
        assert data["tool_calls"] is None

    def test_usage_from_openai(self):
        assert Usage.from_openai(None) is None
        usage = Usage.from_openai(MagicMock(prompt_tokens=3, completion_tokens=None, total_tokens=3))
        assert usage.to_dict() == {"prompt_tokens": 3, "completion_tokens": 0, "total_tokens": 3}
