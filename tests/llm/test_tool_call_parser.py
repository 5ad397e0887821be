"""Tests for antcore.llm.tool_call_parser"""

from antcore.llm.tool_call_parser import (
    NO_MARKUP,
    PARSE_FAILED,
    looks_like_tool_call_markup,
    parse_tool_calls_from_text,
)


class TestJsonShapes:

    def test_whole_text_object(self):
        result = parse_tool_calls_from_text('{"tool_calls": [{"id": "a1", "name": "search", "arguments": {"q": "x"}}]}')
        assert result.ok
        assert result.tool_calls[0].id == "a1"
        assert result.tool_calls[0].name == "search"
        assert result.tool_calls[0].arguments == {"q": "x"}
        assert result.cleaned_content == ""

    def test_camel_case_key(self):
        result = parse_tool_calls_from_text('{"toolCalls": [{"name": "search", "arguments": "{\\"q\\": 1}"}]}')
        assert result.ok
        assert result.tool_calls[0].arguments == {"q": 1}
        assert result.tool_calls[0].id == "parsed-1"

    def test_openai_function_entries(self):
        text = '{"tool_calls": [{"id": "c1", "function": {"name": "read", "arguments": "{\\"path\\": \\"a.txt\\"}"}}]}'
        result = parse_tool_calls_from_text(text)
        assert result.tool_calls[0].name == "read"
        assert result.tool_calls[0].arguments == {"path": "a.txt"}

    def test_list_of_calls(self):
        result = parse_tool_calls_from_text('[{"name": "a", "arguments": {}}, {"name": "b", "arguments": {"x": 1}}]')
        assert [c.name for c in result.tool_calls] == ["a", "b"]

    def test_single_call_object(self):
        result = parse_tool_calls_from_text('{"name": "now", "arguments": {}}')
        assert result.ok
        assert result.tool_calls[0].name == "now"
        assert result.tool_calls[0].id.startswith("parsed-")

    def test_json_answer_with_name_is_not_a_call(self):
        result = parse_tool_calls_from_text('{"name": "Alice", "age": 3}')
        assert not result.ok
        assert not result.had_markup
        assert result.error == "no_tool_call_markup"

    def test_list_of_records_is_not_a_call(self):
        assert not parse_tool_calls_from_text('[{"name": "Alice"}, {"name": "Bob"}]').ok

    def test_embedded_in_prose(self):
        text = 'I will search now: {"tool_calls": [{"name": "search", "arguments": {"q": "tea"}}]} thanks'
        result = parse_tool_calls_from_text(text)
        assert result.ok
        assert result.cleaned_content == "I will search now:  thanks"

    def test_bad_arguments_become_empty(self):
        result = parse_tool_calls_from_text('{"tool_calls": [{"name": "x", "arguments": "not json"}]}')
        assert result.tool_calls[0].arguments == {}

    def test_entries_without_name_skipped(self):
        result = parse_tool_calls_from_text('{"tool_calls": [{"arguments": {}}, {"name": "ok"}]}')
        assert [c.name for c in result.tool_calls] == ["ok"]


class TestXmlShape:

    def test_single_call_with_coerced_args(self):
        text = (
            "Let me check.<tool_call>fetch"
            "<arg_key>url</arg_key><arg_value>https://example.com</arg_value>"
            "<arg_key>limit</arg_key><arg_value>10</arg_value>"
            "<arg_key>ratio</arg_key><arg_value>0.5</arg_value>"
            "<arg_key>raw</arg_key><arg_value>true</arg_value>"
            "<arg_key>opts</arg_key><arg_value>{\"a\": 1}</arg_value>"
            "</tool_call>"
        )
        result = parse_tool_calls_from_text(text)
        assert result.ok
        call = result.tool_calls[0]
        assert call.name == "fetch"
        assert call.id == "parsed-xml-1"
        assert call.arguments == {
            "url": "https://example.com",
            "limit": 10,
            "ratio": 0.5,
            "raw": True,
            "opts": {"a": 1},
        }
        assert result.cleaned_content == "Let me check."

    def test_multiple_calls(self):
        text = "<tool_call>a</tool_call> and <tool_call>b<arg_key>n</arg_key><arg_value>null</arg_value></tool_call>"
        result = parse_tool_calls_from_text(text)
        assert [c.name for c in result.tool_calls] == ["a", "b"]
        assert result.tool_calls[1].arguments == {"n": None}
        assert result.cleaned_content == "and"

    def test_truncated(self):
        result = parse_tool_calls_from_text("<tool_call>fetch<arg_key>url</arg_key><arg_value>http")
        assert not result.ok
        assert result.truncated
        assert result.had_markup
        assert result.error == PARSE_FAILED


class TestNoMarkup:

    def test_plain_text(self):
        result = parse_tool_calls_from_text("The weather is sunny.")
        assert not result.ok
        assert not result.had_markup
        assert not result.truncated
        assert result.error == NO_MARKUP

    def test_empty(self):
        assert not parse_tool_calls_from_text("").ok
        assert not parse_tool_calls_from_text(None).ok

    def test_json_without_calls(self):
        result = parse_tool_calls_from_text('{"answer": 42}')
        assert not result.ok
        assert result.error == NO_MARKUP

    def test_markup_detection(self):
        assert looks_like_tool_call_markup("<tool_call>x")
        assert looks_like_tool_call_markup('{"tool_calls": []}')
        assert not looks_like_tool_call_markup("just words")
