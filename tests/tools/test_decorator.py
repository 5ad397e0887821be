"""Tests for antcore.tools.decorator"""

from typing import Annotated, Any, Dict, List, Optional

import pytest

from antcore.tools import Tool, ToolContext, tool


CTX = ToolContext(session_key="web:9", channel="web", run_id="r7")


# =========================================================================
# Decorated fixtures
# =========================================================================


@tool
async def greet(name: str, excited: bool = False) -> str:
    """Greet someone by name.

    Longer explanation that is not part of the description.
    """
    return f"Hello, {name}{'!' if excited else '.'}"


@tool(name="fetch", category="web", version="2.0.0", timeout=5)
async def fetch_page(
    url: Annotated[str, "Absolute URL"],
    max_chars: Annotated[int, "Body limit"] = 5000,
    *,
    context: ToolContext,
) -> Dict[str, Any]:
    return {"url": url, "max_chars": max_chars, "channel": context.channel}


@tool
async def typed(
    ratio: float,
    tags: List[str],
    options: dict,
    note: Optional[str],
    anything,
    blob: bytes = b"",
):
    return None


# =========================================================================
# Metadata
# =========================================================================


class TestToolMetadata:

    def test_bare_decorator(self):
        assert isinstance(greet, Tool)
        assert greet.name == "greet"
        assert greet.meta.description == "Greet someone by name."
        assert greet.meta.category == "general"
        assert greet.meta.timeout is None

    def test_parameterised_decorator(self):
        assert fetch_page.name == "fetch"
        assert fetch_page.meta.category == "web"
        assert fetch_page.meta.version == "2.0.0"
        assert fetch_page.meta.timeout == 5

    def test_missing_docstring_uses_name(self):
        assert fetch_page.meta.description == "fetch"


# =========================================================================
# Schema
# =========================================================================


class TestSchema:

    def test_required_and_defaults(self):
        assert greet.parameters == {
            "type": "object",
            "properties": {"name": {"type": "string"}, "excited": {"type": "boolean"}},
            "required": ["name"],
        }

    def test_annotated_descriptions_and_context_excluded(self):
        props = fetch_page.parameters["properties"]
        assert props["url"] == {"type": "string", "description": "Absolute URL"}
        assert props["max_chars"] == {"type": "integer", "description": "Body limit"}
        assert "context" not in props
        assert fetch_page.parameters["required"] == ["url"]

    def test_type_mapping(self):
        props = typed.parameters["properties"]
        assert props["ratio"] == {"type": "number"}
        assert props["tags"] == {"type": "array", "items": {"type": "string"}}
        assert props["options"] == {"type": "object"}
        assert props["note"] == {"type": "string"}
        assert props["anything"] == {"type": "string"}
        assert props["blob"] == {"type": "string"}

    def test_optional_not_required(self):
        assert typed.parameters["required"] == ["ratio", "tags", "options", "anything"]


# =========================================================================
# Handler
# =========================================================================


class TestHandler:

    @pytest.mark.asyncio
    async def test_defaults_filled(self):
        assert await greet.handler({"name": "Ada"}, CTX) == "Hello, Ada."
        assert await greet.handler({"name": "Ada", "excited": True}, CTX) == "Hello, Ada!"

    @pytest.mark.asyncio
    async def test_context_injected(self):
        result = await fetch_page.handler({"url": "https://example.com"}, CTX)
        assert result == {"url": "https://example.com", "max_chars": 5000, "channel": "web"}

    @pytest.mark.asyncio
    async def test_unknown_args_ignored(self):
        assert await greet.handler({"name": "Bo", "extra": 1}, CTX) == "Hello, Bo."
