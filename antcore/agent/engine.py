"""
antcore AgentEngine - bounded request/tool-execution loop

One ``execute`` call is one run:

    starting -> selecting_providers -> building_prompt
             -> iterating <-> executing_tools -> finalizing
             -> success | max_iterations | error

Each iteration compacts the history when it grows too large, repairs
unanswered tool calls, asks the tools provider (with failover), and either
finalizes the answer or executes the requested tools and loops. The engine
never raises: every failure comes back as an AgentOutput with ``error`` set.

Example:
    engine = AgentEngine(config.engine, providers=manager, tools=registry)
    output = await engine.execute(AgentInput(session_key="cli:1", query="What's in TODO.md?"))
    print(output.response, output.tools_used)
"""

import asyncio
import logging
import re
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import EngineConfig, RetryConfig
from ..constants import (
    CONTEXT_OVERFLOW_RESPONSE,
    ERROR_RESPONSE_PREFIX,
    FINALIZE_INSTRUCTION,
    HISTORY_SHARE_OF_CONTEXT_WINDOW,
    MAX_ITERATIONS_ERROR,
    MAX_ITERATIONS_RESPONSE,
    ROLE_CHAT,
    ROLE_PARENT_FOR_CLI,
    ROLE_TOOLS,
    TOOL_BLOCKED_RESPONSE,
    TOOL_DIGEST_MAX_CHARS,
)
from ..errors import (
    ContextOverflow,
    MaxIterationsReached,
    NoProviderAvailable,
    ToolPolicyDenied,
    ToolTimeoutError,
)
from ..llm.base import LLMResponse, ToolCall
from ..llm.failover import call_provider_with_fallback
from ..llm.providers import Provider, ProviderManager
from ..llm.tiers import resolve_tier_for_intent
from ..protocols import ToolRegistryProtocol, ToolResultSinkProtocol
from ..tools.models import ToolContext, ToolFailure, ToolResult, format_tool_result, to_tool_result
from ..tools.policy import ToolPolicy, ToolPolicyContext
from .compaction import CompactionResult, ContextCompactor
from .models import AgentInput, AgentOutput, RunState, ToolPart
from .prompt_builder import (
    MemoryContext,
    RuntimeInfo,
    build_system_prompt,
    load_bootstrap_files,
    trim_messages_for_context,
)
from .telemetry import RunTelemetry
from .transcript_repair import repair_transcript

logger = logging.getLogger(__name__)

_THINK_END_TAG = "</think>"
_THINK_BLOCK_RE = re.compile(r"<think>[\s\S]*?</think>")

MemorySearch = Callable[[str, int], Awaitable[List[str]]]


def strip_reasoning(text: Optional[str]) -> str:
    """Remove model reasoning markup from a final answer."""
    if not text:
        return ""
    idx = text.rfind(_THINK_END_TAG)
    if idx != -1:
        return text[idx + len(_THINK_END_TAG):].strip()
    return _THINK_BLOCK_RE.sub("", text).strip()


@dataclass
class _Run:
    """Mutable state owned by a single execute() call."""
    run_id: str
    input: AgentInput
    started_at: float = field(default_factory=time.monotonic)
    state: RunState = RunState.STARTING
    tier: Optional[str] = None
    iterations: int = 0
    tools_used: List[str] = field(default_factory=list)
    denials: Counter = field(default_factory=Counter)
    provider_id: Optional[str] = None
    model: Optional[str] = None
    messages: List[Dict[str, Any]] = field(default_factory=list)
    compactor: Optional[ContextCompactor] = None

    def transition(self, state: RunState) -> None:
        logger.debug(f"[Engine] run {self.run_id}: {self.state.value} -> {state.value}")
        self.state = state


class AgentEngine:
    """
    Drives one agent run against injected providers and tools.

    Args:
        config: Engine settings (iterations, budgets, timeouts, compaction)
        providers: ProviderManager shared across runs
        tools: Tool registry (``antcore.tools.ToolRegistry`` or compatible)
        retry: Retry/backoff/timeout settings for provider calls
        tool_policies: Named tool policies; ``config.tool_policy`` picks the default
        telemetry: Structured run telemetry (a fresh RunTelemetry by default)
        tool_result_sink: Async callback receiving every tool result
        memory_search: Async ``(query, limit) -> [snippets]`` for the memory prompt section
        sleep: Awaitable sleep used for backoff, injectable for tests
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        providers: Optional[ProviderManager] = None,
        tools: Optional[ToolRegistryProtocol] = None,
        retry: Optional[RetryConfig] = None,
        tool_policies: Optional[Dict[str, ToolPolicy]] = None,
        telemetry: Optional[RunTelemetry] = None,
        tool_result_sink: Optional[ToolResultSinkProtocol] = None,
        memory_search: Optional[MemorySearch] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if providers is None or tools is None:
            raise ValueError("AgentEngine requires a ProviderManager and a tool registry")
        self.config = config or EngineConfig()
        self.providers = providers
        self.tools = tools
        self.retry = retry or RetryConfig()
        self.tool_policies = dict(tool_policies or {})
        self.telemetry = telemetry or RunTelemetry()
        self.tool_result_sink = tool_result_sink
        self.memory_search = memory_search
        self.compactor = ContextCompactor(self.config.max_history_tokens, self.config.compaction)
        self._sleep = sleep

        if self.config.tool_policy and self.config.tool_policy not in self.tool_policies:
            logger.warning(f"[Engine] default tool policy '{self.config.tool_policy}' is not defined")

    # ==========================================================================
    # PUBLIC API
    # ==========================================================================

    async def execute(self, input: AgentInput) -> AgentOutput:
        """
        Run the agent on one request.

        Never raises. Terminal outcomes:
        - success: final answer in ``response``
        - max_iterations: progress summary, ``error="Max iterations reached"``
        - error: apology or policy/overflow message, ``error`` set
        """
        run = _Run(run_id=input.run_id or uuid.uuid4().hex, input=input)
        logger.info(f"[Engine] run {run.run_id} started (session={input.session_key}, channel={input.channel})")

        try:
            response = await self._run(run)
            return self._finish(run, RunState.SUCCESS, response)
        except MaxIterationsReached as e:
            logger.warning(f"[Engine] run {run.run_id}: max iterations ({e.iterations}) reached")
            response = f"{MAX_ITERATIONS_RESPONSE}\n\n{self._summarize_progress(run.messages)}".rstrip()
            return self._finish(run, RunState.MAX_ITERATIONS, response, MAX_ITERATIONS_ERROR)
        except ToolPolicyDenied as e:
            logger.warning(f"[Engine] run {run.run_id}: {e}")
            return self._finish(run, RunState.ERROR, f"{TOOL_BLOCKED_RESPONSE}: {e.tool_name}", str(e))
        except ContextOverflow as e:
            logger.error(f"[Engine] run {run.run_id}: {e}")
            return self._finish(run, RunState.ERROR, CONTEXT_OVERFLOW_RESPONSE, str(e))
        except Exception as e:
            logger.exception(f"[Engine] run {run.run_id} failed: {e}")
            error = str(e) or type(e).__name__
            return self._finish(run, RunState.ERROR, f"{ERROR_RESPONSE_PREFIX}{error}", error)

    # ==========================================================================
    # RUN
    # ==========================================================================

    async def _run(self, run: _Run) -> str:
        input = run.input

        run.transition(RunState.SELECTING_PROVIDERS)
        run.tier = resolve_tier_for_intent(
            input.query, input.channel, is_subagent=input.is_subagent, cron_context=input.cron_context
        )
        self.telemetry.run_start(run.run_id, input.session_key, input.channel, run.tier)

        tool_provider = self.providers.select_best_provider(ROLE_TOOLS, tier=run.tier)
        if not tool_provider.supports_tools:
            logger.info(f"[Engine] {tool_provider.id} cannot call tools; using the {ROLE_PARENT_FOR_CLI} provider")
            tool_provider = self.providers.select_best_provider(
                ROLE_PARENT_FOR_CLI, tier=run.tier, require_tools=True
            )
        chat_provider = self._select_chat_provider(run.tier)
        run.provider_id, run.model = tool_provider.id, tool_provider.model
        self.telemetry.provider_selected(run.run_id, ROLE_TOOLS, tool_provider.id, tool_provider.model)
        run.compactor = self.compactor_for(tool_provider)

        run.transition(RunState.BUILDING_PROMPT)
        policy = input.tool_policy or self.tool_policies.get(self.config.tool_policy or "")
        policy_ctx = ToolPolicyContext(
            channel=input.channel,
            session_key=input.session_key,
            chat_id=input.chat_id,
            model=tool_provider.model,
            is_subagent=input.is_subagent,
        )
        tool_defs = self.tools.get_definitions_for_policy(policy, policy_ctx)
        allowed = {d["function"]["name"] for d in tool_defs}
        tool_ctx = ToolContext(
            session_key=input.session_key,
            channel=input.channel,
            run_id=run.run_id,
            chat_id=input.chat_id,
            is_subagent=input.is_subagent,
            metadata={"workspace_dir": self.config.workspace_dir},
        )

        system_prompt = await self._build_prompt(input, tool_defs, tool_provider)
        history = [m for m in input.history if m.get("role") != "system"]
        run.messages = trim_messages_for_context(
            [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": input.query}],
            run.compactor.max_history_tokens,
        )

        for iteration in range(1, self.config.max_tool_iterations + 1):
            run.iterations = iteration
            run.transition(RunState.ITERATING)

            self._apply(run, run.compactor.proactive(run.messages))
            run.messages = repair_transcript(run.messages)

            response = await self._call_tools_provider(run, tool_provider, tool_defs)
            calls = response.tool_calls or []
            self.telemetry.iteration(run.run_id, iteration, run.provider_id, [c.name for c in calls])

            if not calls:
                run.transition(RunState.FINALIZING)
                return await self._finalize(run, response, chat_provider)

            run.messages.append(response.to_assistant_message())
            self._apply(run, run.compactor.emergency(run.messages))

            run.transition(RunState.EXECUTING_TOOLS)
            for call in calls:
                run.tools_used.append(call.name)
                if call.name in allowed:
                    result = await self._execute_tool(run, call, tool_ctx)
                else:
                    result = self._deny(run, call.name)
                run.messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": run.compactor.truncate_tool_result(format_tool_result(result)),
                })
                await self._sink(run, call, result)

            self._apply(run, run.compactor.reactive(run.messages))

        raise MaxIterationsReached(run.iterations)

    def compactor_for(self, provider: Provider) -> ContextCompactor:
        """Compactor whose history budget fits the provider's context window.

        The configured ``max_history_tokens`` is capped at a share of the
        window when the provider declares one.
        """
        window = provider.context_window
        if not window:
            return self.compactor
        budget = int(window * HISTORY_SHARE_OF_CONTEXT_WINDOW)
        if budget >= self.config.max_history_tokens:
            return self.compactor
        logger.info(f"[Engine] {provider.id}: history budget capped at {budget} tokens (context window {window})")
        return ContextCompactor(budget, self.config.compaction)

    def _select_chat_provider(self, tier: Optional[str]) -> Optional[Provider]:
        try:
            return self.providers.select_best_provider(ROLE_CHAT, tier=tier)
        except NoProviderAvailable:
            return None

    async def _build_prompt(
        self, input: AgentInput, tool_defs: List[Dict[str, Any]], provider: Provider
    ) -> str:
        memory: Optional[MemoryContext] = None
        if self.memory_search is not None:
            try:
                snippets = await self.memory_search(input.query, 5)
            except Exception as e:
                logger.debug(f"[Engine] memory search failed: {e}")
                snippets = []
            if snippets:
                memory = MemoryContext(relevant_context=list(snippets))

        return build_system_prompt(
            self.config,
            tool_defs,
            load_bootstrap_files(self.config.workspace_dir, input.is_subagent),
            RuntimeInfo(
                model=provider.model,
                provider_id=provider.id,
                workspace_dir=self.config.workspace_dir or "",
                cron_context=input.cron_context,
            ),
            memory_context=memory,
            is_subagent=input.is_subagent,
        )

    def _params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"temperature": self.config.temperature}
        if self.config.max_tokens:
            params["max_tokens"] = self.config.max_tokens
        return params

    async def _call_with_deadline(
        self,
        run: _Run,
        primary: Provider,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
    ):
        return await call_provider_with_fallback(
            self.providers,
            primary.id,
            messages,
            tools=tools or None,
            tier=run.tier,
            require_tools=bool(tools),
            retry=self.retry,
            params=self._params(),
            sleep=self._sleep,
            deadline=time.monotonic() + self.config.tool_loop.timeout_per_iteration,
        )

    async def _call_tools_provider(
        self, run: _Run, provider: Provider, tool_defs: List[Dict[str, Any]]
    ) -> LLMResponse:
        result = await self._call_with_deadline(run, provider, run.messages, tool_defs)
        run.provider_id, run.model = result.provider_id, result.model
        if result.attempts:
            logger.info(f"[Engine] run {run.run_id}: served by {result.provider_id} after {len(result.attempts)} failed attempts")
        return result.response

    def _apply(self, run: _Run, result: CompactionResult) -> None:
        if not result.compacted:
            return
        run.messages = result.messages
        self.telemetry.compaction(run.run_id, result.tier, result.tokens_before, result.tokens_after)

    # ==========================================================================
    # TOOLS
    # ==========================================================================

    def _deny(self, run: _Run, name: str) -> ToolResult:
        run.denials[name] += 1
        count = run.denials[name]
        logger.warning(f"[Engine] run {run.run_id}: tool '{name}' denied by policy ({count})")
        if count > self.config.tool_loop.max_policy_denials:
            raise ToolPolicyDenied(name, count)
        return ToolFailure(f"Tool '{name}' is not allowed by the current tool policy")

    def _tool_timeout(self, name: str) -> float:
        tool = self.tools.get(name)
        timeout = getattr(getattr(tool, "meta", None), "timeout", None)
        return timeout or self.config.tool_loop.timeout_per_tool

    async def _execute_tool(self, run: _Run, call: ToolCall, ctx: ToolContext) -> ToolResult:
        part = ToolPart(id=f"{run.run_id}:{call.id}", call_id=call.id, tool=call.name, input=call.arguments)
        part.start()
        self.telemetry.tool_start(run.run_id, part.to_dict())

        timeout = self._tool_timeout(call.name)
        try:
            result = to_tool_result(await asyncio.wait_for(
                self.tools.execute(call.name, call.arguments, ctx),
                timeout=timeout,
            ))
        except asyncio.TimeoutError:
            result = ToolFailure(str(ToolTimeoutError(call.name, timeout)))
        except Exception as e:
            logger.warning(f"[Engine] tool {call.name} raised: {e}")
            result = ToolFailure(str(e) or type(e).__name__)

        if result.ok:
            part.complete(result.data, result.metadata)
        else:
            part.fail(result.error, result.metadata)
        self.telemetry.tool_end(run.run_id, part.to_dict())
        return result

    async def _sink(self, run: _Run, call: ToolCall, result: ToolResult) -> None:
        if self.tool_result_sink is None:
            return
        record = {
            "tool": call.name,
            "tool_call_id": call.id,
            "ok": result.ok,
            "data": result.data,
            "error": result.error,
        }
        try:
            await self.tool_result_sink(run.input.session_key, record)
        except Exception as e:
            logger.warning(f"[Engine] tool result sink failed for {call.name}: {e}")

    # ==========================================================================
    # FINALIZATION
    # ==========================================================================

    async def _finalize(self, run: _Run, response: LLMResponse, chat_provider: Optional[Provider]) -> str:
        content = response.content or ""
        if (
            self.config.finalize_with_chat_provider
            and chat_provider is not None
            and chat_provider.id != run.provider_id
            and run.tools_used
        ):
            digest = self._tool_digest(run.messages)
            messages = [
                run.messages[0],
                {"role": "user", "content": run.input.query},
                {"role": "user", "content": f"{FINALIZE_INSTRUCTION}\n\n{digest}\n\nDraft answer:\n{content}"},
            ]
            try:
                result = await self._call_with_deadline(run, chat_provider, messages, None)
                if result.response.content:
                    content = result.response.content
                    run.provider_id, run.model = result.provider_id, result.model
            except Exception as e:
                logger.warning(f"[Engine] chat finalization via {chat_provider.id} failed, keeping tool provider answer: {e}")
        return strip_reasoning(content)

    @staticmethod
    def _tool_digest(messages: List[Dict[str, Any]], max_chars: int = TOOL_DIGEST_MAX_CHARS) -> str:
        """Newest-first tool outputs, capped, presented oldest-first."""
        lines: List[str] = []
        used = 0
        for msg in reversed(messages):
            if msg.get("role") != "tool":
                continue
            line = f"- {msg.get('name', 'tool')}: {msg.get('content', '')}"
            if used + len(line) > max_chars:
                if not lines:
                    lines.append(line[:max_chars])
                break
            lines.append(line)
            used += len(line)
        if not lines:
            return "Tool results: none"
        return "Tool results:\n" + "\n".join(reversed(lines))

    def _summarize_progress(self, messages: List[Dict[str, Any]]) -> str:
        last_text = ""
        for msg in reversed(messages):
            if msg.get("role") == "assistant" and msg.get("content"):
                last_text = strip_reasoning(msg["content"])
                break
        digest = self._tool_digest(messages, max_chars=TOOL_DIGEST_MAX_CHARS // 3)
        return "\n\n".join(part for part in (last_text, digest) if part)

    def _finish(self, run: _Run, state: RunState, response: str, error: Optional[str] = None) -> AgentOutput:
        run.transition(state)
        duration_ms = int((time.monotonic() - run.started_at) * 1000)
        self.telemetry.run_end(run.run_id, state.value, run.iterations, list(run.tools_used), duration_ms, error)
        logger.info(
            f"[Engine] run {run.run_id} finished: {state.value} "
            f"(iterations={run.iterations}, tools={len(run.tools_used)}, {duration_ms}ms)"
        )
        return AgentOutput(
            response=response,
            run_id=run.run_id,
            tools_used=list(run.tools_used),
            iterations=run.iterations,
            provider_id=run.provider_id,
            model=run.model,
            error=error,
        )
