"""
antcore Agent - the execution loop and its context management

Usage:
    from antcore.agent import AgentEngine, AgentInput

    engine = AgentEngine(config.engine, providers=manager, tools=registry)
    output = await engine.execute(AgentInput(session_key="cli:1", query="Summarize README.md"))
"""

from .compaction import (
    CompactionResult,
    ContextCompactor,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
)
from .engine import AgentEngine, strip_reasoning
from .models import AgentInput, AgentOutput, CronContext, RunState, ToolPart, ToolPartState
from .prompt_builder import (
    BootstrapFile,
    MemoryContext,
    RuntimeInfo,
    build_system_prompt,
    load_bootstrap_files,
    trim_messages_for_context,
)
from .telemetry import RunTelemetry
from .transcript_repair import interrupted_tool_result, repair_transcript

__all__ = [
    "AgentEngine",
    "strip_reasoning",
    "AgentInput",
    "AgentOutput",
    "CronContext",
    "RunState",
    "ToolPart",
    "ToolPartState",
    "CompactionResult",
    "ContextCompactor",
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "BootstrapFile",
    "MemoryContext",
    "RuntimeInfo",
    "build_system_prompt",
    "load_bootstrap_files",
    "trim_messages_for_context",
    "RunTelemetry",
    "interrupted_tool_result",
    "repair_transcript",
]
