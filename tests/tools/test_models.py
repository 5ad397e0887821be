"""Tests for antcore.tools.models"""

import json

import pytest

from antcore.tools import (
    Tool,
    ToolFailure,
    ToolMeta,
    ToolSuccess,
    format_tool_result,
    parse_tool_result,
    to_tool_result,
)


class TestToolResult:

    def test_success_shape(self):
        result = ToolSuccess(data={"n": 1})
        assert result.ok
        assert result.error is None

    def test_failure_shape(self):
        result = ToolFailure(error="nope")
        assert not result.ok
        assert result.data is None

    def test_metadata_ignored_in_equality(self):
        assert ToolSuccess(data=1, metadata={"duration_ms": 5}) == ToolSuccess(data=1)

    def test_to_tool_result_wraps_plain_values(self):
        assert to_tool_result(3) == ToolSuccess(data=3)
        failure = ToolFailure(error="x")
        assert to_tool_result(failure) is failure


class TestFormatting:

    def test_format_success(self):
        text = format_tool_result(ToolSuccess(data={"city": "Zürich"}, metadata={"duration_ms": 2}))
        assert json.loads(text) == {"ok": True, "data": {"city": "Zürich"}}
        assert "Zürich" in text

    def test_format_failure(self):
        assert json.loads(format_tool_result(ToolFailure(error="timeout"))) == {"ok": False, "error": "timeout"}

    def test_format_non_json_data(self):
        class Opaque:
            def __str__(self):
                return "opaque"

        assert json.loads(format_tool_result(ToolSuccess(data=Opaque())))["data"] == "opaque"

    def test_parse_back(self):
        assert parse_tool_result('{"ok": true, "data": [1, 2]}') == ToolSuccess(data=[1, 2])
        assert parse_tool_result('{"ok": false, "error": "bad"}') == ToolFailure(error="bad")

    @pytest.mark.parametrize("raw", ["plain text", "[1, 2]", '{"data": 1}', '{"ok": "yes"}'])
    def test_parse_rejects_other_text(self, raw):
        with pytest.raises(ValueError):
            parse_tool_result(raw)


class TestToolDefinition:

    def test_openai_definition(self):
        async def handler(args, context):
            return None

        t = Tool(meta=ToolMeta(name="ping", description="Ping a host"), handler=handler)
        definition = t.to_definition()

        assert t.name == "ping"
        assert definition["type"] == "function"
        assert definition["function"]["name"] == "ping"
        assert definition["function"]["description"] == "Ping a host"
        assert definition["function"]["parameters"]["type"] == "object"
