"""System prompt construction for the agent engine.

Each section is a function that returns a prompt fragment or an empty
string. ``build_system_prompt`` joins the non-empty ones with a horizontal
rule in a fixed order: identity, runtime, tools, memory, bootstrap files,
cron, guidelines.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import EngineConfig
from .models import CronContext

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"

BOOTSTRAP_FILES = ["MEMORY.md", "PROJECT.md", "AGENTS.md", "SKILL_REGISTRY.md", "AGENT_LOG.md"]
SUBAGENT_BOOTSTRAP_FILES = ["PROJECT.md", "SKILL_REGISTRY.md"]
BOOTSTRAP_FILE_MAX_CHARS = 4000
MEMORY_FILE_MAX_CHARS = 2000
MAX_MEMORY_FILES = 3

OLD_TOOL_RESULT_PLACEHOLDER = "[Old tool result content cleared]"
_OLD_TOOL_RESULT_MIN_CHARS = 4000
_PROMPT_SAFETY_MARGIN = 1.2


@dataclass
class BootstrapFile:
    name: str
    path: str
    content: str


@dataclass
class RuntimeInfo:
    model: str
    provider_id: str = ""
    workspace_dir: str = ""
    current_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cron_context: Optional[CronContext] = None


@dataclass
class MemoryContext:
    recent_memory: List[str] = field(default_factory=list)
    relevant_context: List[str] = field(default_factory=list)


def estimate_tokens(text: Optional[str]) -> int:
    """Prompt-side estimate: chars/4 with a 20% safety margin."""
    if not text:
        return 0
    return math.ceil(len(text) / 4 * _PROMPT_SAFETY_MARGIN)


# ---------------------------------------------------------------------------
# Section renderers
# ---------------------------------------------------------------------------

def render_identity(config: EngineConfig) -> str:
    return (
        f"# {config.name} - Autonomous Agent\n\n"
        f"You are {config.name}, an autonomous AI agent that helps users accomplish tasks "
        "by calling the tools available to you and reporting the results."
    )


def render_runtime(info: RuntimeInfo) -> str:
    lines = [
        "# Runtime Information",
        "",
        f"- **Current Time**: {info.current_time.isoformat()}",
        f"- **Model**: {info.model}",
    ]
    if info.provider_id:
        lines.append(f"- **Provider**: {info.provider_id}")
    if info.workspace_dir:
        lines.append(f"- **Workspace**: {info.workspace_dir}")
    return "\n".join(lines)


def render_tools(tools: List[Dict[str, Any]]) -> str:
    if not tools:
        return ""
    docs = []
    for definition in tools:
        func = definition.get("function", definition)
        params = func.get("parameters") or {}
        properties = params.get("properties") or {}
        if properties:
            param_lines = "\n".join(
                f"  - `{name}` ({schema.get('type', 'any')}): {schema.get('description', '')}"
                for name, schema in properties.items()
            )
        else:
            param_lines = "  (no parameters)"
        required = ", ".join(params.get("required") or []) or "none"
        docs.append(
            f"### {func.get('name', '')}\n\n{func.get('description', '')}\n\n"
            f"**Parameters:**\n{param_lines}\n\n**Required:** {required}"
        )
    return (
        "# Available Tools\n\n"
        "Call tools using the standard function calling format.\n\n"
        + "\n\n".join(docs)
    )


def render_memory(memory: Optional[MemoryContext]) -> str:
    if memory is None:
        return ""
    parts = ["# Memory Context"]
    if memory.recent_memory:
        parts.append("## Recent Memory\n\n" + "\n".join(memory.recent_memory))
    if memory.relevant_context:
        parts.append("## Relevant Context\n\n" + "\n".join(memory.relevant_context))
    return "\n\n".join(parts) if len(parts) > 1 else ""


def render_bootstrap(files: List[BootstrapFile]) -> str:
    if not files:
        return ""
    body = "\n\n".join(f"### {f.name}\n\n```\n{f.content}\n```" for f in files)
    return f"# Project Context\n\n{body}"


def render_cron(cron: Optional[CronContext]) -> str:
    if cron is None:
        return ""
    triggered = cron.triggered_at
    triggered_at = (
        datetime.fromtimestamp(triggered, tz=timezone.utc).isoformat() if triggered else "unknown"
    )
    return (
        "# Scheduled Task Context\n\n"
        "This task was triggered by a scheduled job:\n"
        f"- **Job ID**: {cron.job_id}\n"
        f"- **Job Name**: {cron.job_name}\n"
        f"- **Schedule**: {cron.schedule}\n"
        f"- **Triggered At**: {triggered_at}\n\n"
        "You are running autonomously. Complete the scheduled task and report results."
    )


def render_guidelines(config: EngineConfig, is_subagent: bool = False) -> str:
    text = """# Guidelines

1. **Be concise** - Keep responses focused and actionable
2. **Use tools effectively** - Prefer tools over asking for information you can look up
3. **Handle errors gracefully** - If a tool fails, try an alternative or explain the failure
4. **Respect workspace boundaries** - Work within the configured workspace directory"""
    if config.guidelines:
        text += "\n" + "\n".join(f"- {line}" for line in config.guidelines)
    if is_subagent:
        text += (
            "\n\n## Subagent Guidelines\n\n"
            "You are running as a subagent. Your output is returned to the parent agent, "
            "so finish the assigned task and report the result."
        )
    return text


def build_system_prompt(
    config: EngineConfig,
    tools: List[Dict[str, Any]],
    bootstrap_files: List[BootstrapFile],
    runtime_info: RuntimeInfo,
    memory_context: Optional[MemoryContext] = None,
    is_subagent: bool = False,
) -> str:
    """Assemble the system prompt from its sections."""
    sections = [
        render_identity(config),
        render_runtime(runtime_info),
        render_tools(tools),
        render_memory(memory_context),
        render_bootstrap(bootstrap_files),
        render_cron(runtime_info.cron_context),
        render_guidelines(config, is_subagent),
    ]
    return SECTION_SEPARATOR.join(s for s in sections if s)


# ---------------------------------------------------------------------------
# Bootstrap files
# ---------------------------------------------------------------------------

def _truncate_content(content: str, max_chars: int) -> str:
    if len(content) <= max_chars:
        return content
    cut = content[:max_chars]
    newline_pos = cut.rfind("\n")
    if newline_pos > max_chars * 0.8:
        cut = cut[:newline_pos]
    return cut + "\n\n...[truncated]"


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError):
        return None
    except OSError as e:
        logger.warning(f"Could not read bootstrap file {path}: {e}")
        return None


def load_bootstrap_files(workspace_dir: Optional[str], is_subagent: bool = False) -> List[BootstrapFile]:
    """Load workspace context files, in priority order.

    Subagents only get PROJECT.md and SKILL_REGISTRY.md. Up to three
    ``memory/*.md`` files follow the named files.
    """
    if not workspace_dir:
        return []
    root = Path(workspace_dir)
    files: List[BootstrapFile] = []

    for name in SUBAGENT_BOOTSTRAP_FILES if is_subagent else BOOTSTRAP_FILES:
        path = root / name
        content = _read_text(path)
        if content and content.strip():
            files.append(BootstrapFile(name, str(path), _truncate_content(content, BOOTSTRAP_FILE_MAX_CHARS)))

    memory_dir = root / "memory"
    if memory_dir.is_dir():
        memory_files = [p for p in sorted(memory_dir.iterdir()) if p.suffix == ".md"][:MAX_MEMORY_FILES]
        for path in memory_files:
            content = _read_text(path)
            if content and content.strip():
                files.append(BootstrapFile(
                    f"memory/{path.name}", str(path), _truncate_content(content, MEMORY_FILE_MAX_CHARS)
                ))

    return files


# ---------------------------------------------------------------------------
# History trimming
# ---------------------------------------------------------------------------

def trim_messages_for_context(messages: List[Dict[str, Any]], max_tokens: int) -> List[Dict[str, Any]]:
    """Keep the newest messages that fit in ``max(2048, max_tokens - 1024)``.

    The newest message is always kept. Old tool results over 4000 chars that
    would not fit are replaced with a placeholder before giving up. The
    system message stays first.
    """
    budget = max(2048, max_tokens - 1024)
    total = 0
    kept: List[Dict[str, Any]] = []

    for msg in reversed(messages):
        content = msg.get("content") or ""
        tokens = estimate_tokens(content)
        if not kept or total + tokens <= budget:
            kept.append(msg)
            total += tokens
            continue

        if msg.get("role") == "tool" and isinstance(content, str) and len(content) > _OLD_TOOL_RESULT_MIN_CHARS:
            cleared = {**msg, "content": OLD_TOOL_RESULT_PLACEHOLDER}
            tokens = estimate_tokens(OLD_TOOL_RESULT_PLACEHOLDER)
            if total + tokens <= budget:
                kept.append(cleared)
                total += tokens
                continue
        break

    trimmed = list(reversed(kept))
    system = next((m for m in messages if m.get("role") == "system"), None)
    if system is not None and (not trimmed or trimmed[0].get("role") != "system"):
        return [system] + [m for m in trimmed if m.get("role") != "system"]
    return trimmed
