"""Agent run input/output and observability dataclasses."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..tools.policy import ToolPolicy


class RunState(str, Enum):
    """Run state machine: starting -> selecting_providers -> building_prompt
    -> iterating <-> executing_tools -> finalizing -> terminal."""

    STARTING = "starting"
    SELECTING_PROVIDERS = "selecting_providers"
    BUILDING_PROMPT = "building_prompt"
    ITERATING = "iterating"
    EXECUTING_TOOLS = "executing_tools"
    FINALIZING = "finalizing"
    SUCCESS = "success"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCESS, RunState.MAX_ITERATIONS, RunState.ERROR)


class ToolPartState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class CronContext:
    """Set when the run was triggered by a scheduled job."""

    job_id: str
    job_name: str = ""
    schedule: str = ""
    triggered_at: Optional[float] = None


@dataclass
class AgentInput:
    """One request to AgentEngine.execute."""

    session_key: str
    query: str
    channel: str = "cli"
    chat_id: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)
    """Prior OpenAI-format messages of the session (no system message)."""
    is_subagent: bool = False
    cron_context: Optional[CronContext] = None
    tool_policy: Optional[ToolPolicy] = None
    """Overrides the engine's configured policy for this run."""
    run_id: Optional[str] = None


@dataclass
class AgentOutput:
    """Result of a run. Every terminal path fills every field it can."""

    response: str
    run_id: str
    tools_used: List[str] = field(default_factory=list)
    """Tool names in call order (repeats kept)."""
    iterations: int = 0
    provider_id: Optional[str] = None
    model: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "run_id": self.run_id,
            "tools_used": list(self.tools_used),
            "iterations": self.iterations,
            "provider_id": self.provider_id,
            "model": self.model,
            "error": self.error,
        }


@dataclass
class ToolPart:
    """Observable lifecycle of one tool call: pending -> running -> completed | error."""

    id: str
    call_id: str
    tool: str
    input: Dict[str, Any] = field(default_factory=dict)
    state: ToolPartState = ToolPartState.PENDING
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    output: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def start(self) -> None:
        self.state = ToolPartState.RUNNING
        self.started_at = time.time()

    def complete(self, output: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.state = ToolPartState.COMPLETED
        self.ended_at = time.time()
        self.output = output
        self.metadata.update(metadata or {})

    def fail(self, error: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.state = ToolPartState.ERROR
        self.ended_at = time.time()
        self.error = error
        self.metadata.update(metadata or {})

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "call_id": self.call_id,
            "tool": self.tool,
            "input": self.input,
            "state": self.state.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
            "output": self.output,
            "error": self.error,
            "metadata": self.metadata,
        }
