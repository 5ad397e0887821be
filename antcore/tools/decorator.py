"""
@tool decorator - turn a typed async function into a Tool.

The parameter schema comes from the signature: type hints pick the JSON
Schema type, ``Annotated[T, "text"]`` adds a description, and parameters
without a default that are not ``Optional`` are required. A keyword
parameter named ``context`` receives the ToolContext and is hidden from the
model.

Usage::

    from typing import Annotated
    from antcore.tools import tool, ToolContext

    @tool(category="web", timeout=10)
    async def fetch_page(
        url: Annotated[str, "Absolute URL to fetch"],
        max_chars: Annotated[int, "Truncate the body to this many characters"] = 5000,
        *,
        context: ToolContext,
    ) -> dict:
        \"\"\"Fetch a web page and return its text.\"\"\"
        ...

    fetch_page.name        # "fetch_page"
    fetch_page.parameters  # {"type": "object", "properties": {...}, "required": ["url"]}
"""

import inspect
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Dict, List, Optional, Union, get_args, get_origin, get_type_hints

from .models import Tool, ToolContext, ToolMeta

CONTEXT_PARAM = "context"

_SCALAR_TYPES: Dict[Any, str] = {
    str: "string",
    bool: "boolean",
    int: "integer",
    float: "number",
}


@dataclass
class _ToolParam:
    """One model-visible parameter of a decorated function."""
    name: str
    schema: Dict[str, Any]
    required: bool
    default: Any = inspect.Parameter.empty


def _strip_annotated(annotation: Any):
    """Split ``Annotated[T, "text", ...]`` into ``(T, "text")``."""
    if get_origin(annotation) is not Annotated:
        return annotation, None
    base, *extras = get_args(annotation)
    description = next((extra for extra in extras if isinstance(extra, str)), None)
    return base, description


def _strip_optional(annotation: Any):
    """Split ``Optional[T]`` into ``(T, True)``; other types pass as ``(type, False)``."""
    if get_origin(annotation) is not Union:
        return annotation, False
    members = get_args(annotation)
    if type(None) not in members:
        return annotation, False
    rest = [member for member in members if member is not type(None)]
    return (rest[0] if len(rest) == 1 else annotation), True


def json_schema_for(annotation: Any) -> Dict[str, Any]:
    """JSON Schema for a parameter annotation. Unmapped types become strings."""
    annotation, _ = _strip_annotated(annotation)
    annotation, _ = _strip_optional(annotation)

    if annotation in _SCALAR_TYPES:
        return {"type": _SCALAR_TYPES[annotation]}

    origin = get_origin(annotation) or annotation
    if origin is list:
        schema: Dict[str, Any] = {"type": "array"}
        item_types = get_args(annotation)
        if item_types:
            schema["items"] = json_schema_for(item_types[0])
        return schema
    if origin is dict:
        return {"type": "object"}
    return {"type": "string"}


def _describe_params(fn: Callable) -> List[_ToolParam]:
    hints = get_type_hints(fn, include_extras=True)
    tool_params: List[_ToolParam] = []
    for param in inspect.signature(fn).parameters.values():
        if param.name == CONTEXT_PARAM:
            continue
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue

        annotation = hints.get(param.name, str)
        schema = json_schema_for(annotation)
        base, description = _strip_annotated(annotation)
        if description:
            schema["description"] = description
        _, optional = _strip_optional(base)

        tool_params.append(_ToolParam(
            name=param.name,
            schema=schema,
            required=param.default is param.empty and not optional,
            default=param.default,
        ))
    return tool_params


def _make_handler(fn: Callable, tool_params: List[_ToolParam]) -> Callable:
    wants_context = CONTEXT_PARAM in inspect.signature(fn).parameters

    async def handler(args: Dict[str, Any], context: ToolContext) -> Any:
        call_kwargs = {
            tp.name: args.get(tp.name, tp.default)
            for tp in tool_params
            if tp.name in args or tp.default is not inspect.Parameter.empty
        }
        if wants_context:
            call_kwargs[CONTEXT_PARAM] = context
        return await fn(**call_kwargs)

    return handler


def tool(
    func: Optional[Callable] = None,
    *,
    name: Optional[str] = None,
    category: str = "general",
    version: str = "1.0.0",
    timeout: Optional[float] = None,
) -> Any:
    """Decorator that replaces an async function with a :class:`Tool`.

    Works bare (``@tool``) or with options (``@tool(timeout=5)``). The
    description is the docstring's first line, or the tool name.
    """

    def wrap(fn: Callable) -> Tool:
        tool_name = name or fn.__name__
        summary = (inspect.getdoc(fn) or "").strip().splitlines()
        tool_params = _describe_params(fn)
        return Tool(
            meta=ToolMeta(
                name=tool_name,
                description=summary[0].strip() if summary else tool_name,
                category=category,
                version=version,
                timeout=timeout,
            ),
            handler=_make_handler(fn, tool_params),
            parameters={
                "type": "object",
                "properties": {tp.name: tp.schema for tp in tool_params},
                "required": [tp.name for tp in tool_params if tp.required],
            },
        )

    return wrap(func) if func is not None else wrap
