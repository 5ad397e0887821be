"""antcore configuration dataclasses and YAML loading.

Centralizes all tunable parameters for the engine, the provider failover
layer and the message router. ``load_config`` reads a YAML file with
``${VAR}`` environment substitution and ``AntCoreConfig.from_dict`` maps it
onto the dataclasses (camelCase keys are accepted).
"""

import dataclasses
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

from .constants import MAX_POLICY_DENIALS
from .tools.policy import ToolPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ToolLoopConfig:
    """Timeouts and limits of the tool-calling loop."""

    timeout_per_iteration: float = 30.0
    """Deadline in seconds for one provider round (failover included)."""
    timeout_per_tool: float = 30.0
    """Default tool deadline in seconds when the tool declares none."""
    max_policy_denials: int = MAX_POLICY_DENIALS
    """Denials of one tool name tolerated per run before aborting."""


@dataclass
class CompactionConfig:
    """Context compaction thresholds, as fractions of ``max_history_tokens``."""

    enabled: bool = True

    proactive_threshold: float = 0.75
    """Tier 1: summarize at the start of an iteration at or above this share."""
    proactive_min_recent: int = 8
    """Tier 1: non-system messages kept verbatim."""

    reactive_threshold: float = 0.60
    """Tier 2: summarize after tool results above this share."""
    reactive_min_recent: int = 4
    """Tier 2: non-system messages kept verbatim."""

    emergency_threshold: float = 0.50
    """Tier 3: checked after appending an assistant tool-call message."""
    emergency_target: float = 0.50
    """Tier 3: the history must end strictly below this share."""

    max_summary_tokens: int = 600
    """Cap on the synthesized summary message."""

    tool_result_guard: bool = True
    """Truncate oversized tool results before they enter the history."""
    max_tool_result_share: float = 0.3
    """Single tool result may consume at most 30% of the history budget."""
    max_tool_result_chars: int = 400_000
    """Single tool result hard character limit."""


@dataclass
class EngineConfig:
    """AgentEngine configuration."""

    name: str = "Agent"
    """Identity used in the system prompt."""
    max_tool_iterations: int = 6
    max_history_tokens: int = 40_000
    """Token budget for the whole message history (estimated, chars/4)."""
    temperature: float = 0.2
    max_tokens: Optional[int] = None
    """Completion token cap passed to providers (provider default if None)."""
    finalize_with_chat_provider: bool = True
    """Re-ask a distinct chat provider for the final answer."""
    tool_policy: Optional[str] = None
    """Name of the default entry in ``AntCoreConfig.tool_policies``."""
    workspace_dir: Optional[str] = None
    """Directory holding bootstrap files (MEMORY.md, PROJECT.md, ...)."""
    guidelines: List[str] = field(default_factory=list)
    """Extra lines appended to the guidelines prompt section."""
    tool_loop: ToolLoopConfig = field(default_factory=ToolLoopConfig)
    compaction: CompactionConfig = field(default_factory=CompactionConfig)


@dataclass
class ProviderConfig:
    """One model backend."""

    id: str
    model: str
    provider: str = "openai"
    """litellm provider name (openai, anthropic, azure, gemini, ollama, ...)."""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    roles: List[str] = field(default_factory=lambda: ["chat", "tools"])
    supports_tools: bool = True
    context_window: Optional[int] = None
    group: str = "configured"
    """Priority group: configured, local or discovered."""
    timeout: int = 60


@dataclass
class RoutingConfig:
    """Which provider serves which role and tier."""

    chat: Optional[str] = None
    tools: Optional[str] = None
    parent_for_cli: Optional[str] = None
    default: Optional[str] = None
    fallback_chain: List[str] = field(default_factory=list)
    tiers: Dict[str, List[str]] = field(default_factory=dict)
    """Tier name -> ordered escalation candidates."""


@dataclass
class RetryConfig:
    """Bounded retry with exponential backoff and jitter."""

    primary_attempts: int = 3
    fallback_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.2
    """Random extra delay, as a fraction of the computed delay."""
    call_timeout: float = 60.0
    """Deadline in seconds for a single provider attempt."""


@dataclass
class CooldownConfig:
    """Per-reason cooldown, grown exponentially on consecutive failures."""

    base_seconds: Dict[str, float] = field(default_factory=lambda: {
        "rate_limit": 60.0,
        "billing": 3600.0,
        "auth": 900.0,
        "format": 30.0,
        "unknown": 30.0,
    })
    multiplier: float = 5.0
    max_seconds: float = 3600.0

    def duration(self, reason: str, consecutive_failures: int) -> float:
        """Cooldown for the n-th consecutive failure (1-based)."""
        base = self.base_seconds.get(reason, self.base_seconds.get("unknown", 30.0))
        exponent = max(consecutive_failures - 1, 0)
        return min(base * (self.multiplier ** exponent), self.max_seconds)


@dataclass
class RouterConfig:
    """MessageRouter configuration."""

    max_queue_size: int = 1000
    concurrency: int = 1
    """Messages dispatched concurrently per channel."""
    session_timeout: float = 30 * 60
    """Idle seconds before a session is pruned."""
    prune_interval: float = 60.0
    drain_timeout: float = 30.0
    """Upper bound for ``stop()`` to wait on queues and in-flight work."""
    drain_poll_interval: float = 0.1


@dataclass
class AntCoreConfig:
    """Top-level configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    providers: List[ProviderConfig] = field(default_factory=list)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cooldown: CooldownConfig = field(default_factory=CooldownConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    tool_policies: Dict[str, ToolPolicy] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AntCoreConfig":
        """Build a config from a parsed YAML/JSON mapping."""
        data = _normalize_keys(data or {})

        engine_data = dict(data.get("engine") or data.get("agent") or {})
        engine = _build(EngineConfig, engine_data, nested={
            "tool_loop": ToolLoopConfig,
            "compaction": CompactionConfig,
        })

        providers = []
        for entry in data.get("providers") or []:
            providers.append(_build(ProviderConfig, entry))

        cooldown_data = dict(data.get("cooldown") or {})
        cooldown = CooldownConfig()
        base = cooldown_data.pop("base_seconds", None)
        if base:
            cooldown.base_seconds.update({k: float(v) for k, v in base.items()})
        cooldown = dataclasses.replace(cooldown, **_known(CooldownConfig, cooldown_data))

        policies = {
            name: ToolPolicy.from_dict(policy or {})
            for name, policy in (data.get("tool_policies") or {}).items()
        }

        return cls(
            engine=engine,
            providers=providers,
            routing=_build(RoutingConfig, data.get("routing") or {}),
            retry=_build(RetryConfig, data.get("retry") or {}),
            cooldown=cooldown,
            router=_build(RouterConfig, data.get("router") or {}),
            tool_policies=policies,
        )


_ENV_REF_RE = re.compile(r"\$\{(\w+)\}")


def load_config(path: str) -> Dict[str, Any]:
    """Parse a YAML config file, expanding ``${NAME}`` from the environment.

    Raises:
        ValueError: If a referenced variable is unset.
    """
    import yaml

    with open(path, "r", encoding="utf-8") as f:
        text = f.read()

    def _lookup(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in os.environ:
            raise ValueError(f"Config {path} references unset environment variable '{name}'")
        return os.environ[name]

    return yaml.safe_load(_ENV_REF_RE.sub(_lookup, text)) or {}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

# Keys whose values are free-form maps (tier names, provider ids) and keep their spelling.
_OPAQUE_KEYS = {"tiers", "base_seconds", "tool_policies"}


def _to_snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _normalize_keys(value: Any, opaque: bool = False) -> Any:
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            new_key = key if opaque or not isinstance(key, str) else _to_snake(key)
            out[new_key] = _normalize_keys(item, opaque=new_key in _OPAQUE_KEYS)
        return out
    if isinstance(value, list):
        return [_normalize_keys(item) for item in value]
    return value


def _known(cls: Type[Any], data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - names
    if unknown:
        logger.debug(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return {k: v for k, v in data.items() if k in names}


def _build(cls: Type[T], data: Dict[str, Any], nested: Optional[Dict[str, Type[Any]]] = None) -> T:
    values = _known(cls, dict(data))
    for key, nested_cls in (nested or {}).items():
        if isinstance(values.get(key), dict):
            values[key] = _build(nested_cls, values[key])
    return cls(**values)
