"""
antcore Failover - provider calls with retry, fallback and tool-call repair

``call_provider_with_fallback`` walks the attempt list produced by
``ProviderManager.get_prioritized_provider_ids``:

- the primary provider gets up to ``RetryConfig.primary_attempts`` attempts,
  every other candidate ``RetryConfig.fallback_attempts``;
- attempts are separated by exponential backoff with jitter;
- auth, billing and format failures skip local retry;
- each attempt races ``RetryConfig.call_timeout``, capped by the caller's
  deadline shared out across the candidates still to be tried;
- the first success returns, otherwise the last classified ProviderError is
  raised with every attempt attached.

When tools were offered and a provider writes its tool call into the text,
the call is recovered by ``tool_call_parser``; unparsable or truncated markup
gets exactly one repair request before the attempt fails as ``format``.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from ..config import RetryConfig
from ..constants import TOOL_CALL_REPAIR_INSTRUCTION
from ..errors import NoProviderAvailable, ProviderError, ProviderTimeoutError
from .base import LLMResponse, StopReason
from .providers import Provider, ProviderManager, is_retryable_error, to_provider_error
from .tool_call_parser import parse_tool_calls_from_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class ProviderAttempt:
    """Record of a single failed attempt."""
    provider_id: str
    attempt: int
    reason: str
    error: str
    status_code: Optional[int] = None


@dataclass
class ProviderCallResult:
    """Successful outcome of ``call_provider_with_fallback``."""
    response: LLMResponse
    provider_id: str
    model: Optional[str]
    attempts: List[ProviderAttempt] = field(default_factory=list)
    """Failed attempts that preceded the success."""
    repaired: bool = False
    """Tool calls were recovered from text or by a repair request."""


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

def compute_backoff(attempt: int, retry: RetryConfig, rand: Callable[[], float] = random.random) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
    delay = min(retry.base_delay * (retry.multiplier ** attempt), retry.max_delay)
    return delay + delay * retry.jitter * rand()


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retry: Optional[RetryConfig] = None,
    attempts: Optional[int] = None,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    sleep: SleepFn = asyncio.sleep,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Run ``fn`` with bounded retries and exponential backoff.

    Args:
        fn: Zero-argument coroutine factory
        retry: Backoff settings (defaults to RetryConfig())
        attempts: Total attempts (defaults to ``retry.primary_attempts``)
        should_retry: Predicate deciding whether an error is worth retrying
        sleep: Awaitable sleep, injectable for tests
        deadline: Absolute ``clock()`` time; no retry starts if its backoff would reach it
        clock: Clock the deadline is measured on

    Raises:
        The last error once attempts are exhausted, the deadline is near or
        the error is not retryable.
    """
    retry = retry or RetryConfig()
    total = attempts or retry.primary_attempts
    for attempt in range(total):
        try:
            return await fn()
        except Exception as e:
            if attempt + 1 >= total or not should_retry(e):
                raise
            delay = compute_backoff(attempt, retry)
            if deadline is not None and clock() + delay >= deadline:
                logger.info(f"[Retry] attempt {attempt + 1}/{total} failed ({e}); no time left to retry")
                raise
            logger.info(f"[Retry] attempt {attempt + 1}/{total} failed ({e}); retrying in {delay:.2f}s")
            await sleep(delay)
    raise RuntimeError("with_retry called with zero attempts")


# ---------------------------------------------------------------------------
# Single call + tool-call repair
# ---------------------------------------------------------------------------

async def _call_once(
    provider: Provider,
    messages: List[Dict[str, Any]],
    tools: Optional[List[Dict[str, Any]]],
    params: Dict[str, Any],
    timeout: float,
) -> LLMResponse:
    try:
        return await asyncio.wait_for(
            provider.client.chat_completion(messages=messages, tools=tools, config=params),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise ProviderTimeoutError(provider.id, timeout)


def _with_parsed_calls(response: LLMResponse, parsed) -> LLMResponse:
    return LLMResponse(
        content=parsed.cleaned_content,
        tool_calls=parsed.tool_calls,
        stop_reason=StopReason.TOOL_USE,
        usage=response.usage,
        model=response.model,
        raw_response=response.raw_response,
    )


async def repair_tool_calls(
    provider: Provider,
    messages: List[Dict[str, Any]],
    tools: List[Dict[str, Any]],
    response: LLMResponse,
    params: Dict[str, Any],
    timeout: float,
) -> LLMResponse:
    """Recover tool calls a provider wrote into its text.

    Returns the response untouched when it already has structured tool calls
    or its text carries no tool-call markup (a plain final answer).

    Raises:
        ProviderError: reason ``format`` when the markup cannot be recovered,
            even after one repair request.
    """
    if response.has_tool_calls or not response.content:
        return response

    parsed = parse_tool_calls_from_text(response.content)
    if parsed.ok:
        logger.info(f"[Failover] recovered {len(parsed.tool_calls)} tool calls from text ({provider.id})")
        return _with_parsed_calls(response, parsed)

    truncated = parsed.truncated or (
        response.stop_reason == StopReason.MAX_TOKENS and parsed.had_markup
    )
    if not parsed.had_markup and not truncated:
        return response

    logger.warning(
        f"[Failover] {provider.id} returned unusable tool-call markup "
        f"(error={parsed.error}, truncated={truncated}); sending repair request"
    )
    repair_messages = messages + [
        {"role": "assistant", "content": response.content},
        {"role": "user", "content": TOOL_CALL_REPAIR_INSTRUCTION},
    ]
    repaired = await _call_once(provider, repair_messages, tools, params, timeout)
    if repaired.has_tool_calls:
        return repaired

    reparsed = parse_tool_calls_from_text(repaired.content or "")
    if reparsed.ok:
        return _with_parsed_calls(repaired, reparsed)

    raise ProviderError(
        f"tool_call_parse_failed: {provider.id} did not produce a valid tool call after repair",
        reason="format",
        provider_id=provider.id,
    )


# ---------------------------------------------------------------------------
# Fallback loop
# ---------------------------------------------------------------------------

async def call_provider_with_fallback(
    manager: ProviderManager,
    primary_id: str,
    messages: List[Dict[str, Any]],
    tools: Optional[List[Dict[str, Any]]] = None,
    tier: Optional[str] = None,
    require_tools: bool = False,
    retry: Optional[RetryConfig] = None,
    params: Optional[Dict[str, Any]] = None,
    sleep: SleepFn = asyncio.sleep,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ProviderCallResult:
    """
    Call providers in priority order until one succeeds.

    With a ``deadline``, every candidate still to be tried gets an equal
    share of the remaining time, and no attempt or backoff runs past the
    candidate's share. A hung primary then times out, opens its cooldown and
    leaves time for the fallback chain.

    Args:
        manager: ProviderManager holding clients and cooldown state
        primary_id: Provider tried first (with local retries)
        messages: OpenAI-format conversation
        tools: Tool schemas offered to the model (enables tool-call repair)
        tier: Routing tier whose escalation candidates follow the primary
        require_tools: Skip providers that cannot call tools
        retry: Retry/backoff/timeout settings
        params: Per-call overrides forwarded as the client's ``config``
        sleep: Awaitable sleep, injectable for tests
        deadline: Absolute ``clock()`` time by which the whole walk must end
        clock: Monotonic clock the deadline is measured on

    Returns:
        ProviderCallResult of the first successful attempt

    Raises:
        NoProviderAvailable: If the attempt list is empty
        ProviderError: The last classified failure once all candidates fail
    """
    retry = retry or RetryConfig()
    params = dict(params or {})
    attempt_ids = manager.get_prioritized_provider_ids(primary_id, tier=tier, require_tools=require_tools)
    if not attempt_ids:
        raise NoProviderAvailable(
            f"No provider available (primary={primary_id}, all candidates cooling down or unsuitable)"
        )

    attempts: List[ProviderAttempt] = []
    last_error: Optional[ProviderError] = None

    for index, provider_id in enumerate(attempt_ids):
        share_end: Optional[float] = None
        if deadline is not None:
            remaining = deadline - clock()
            if index and remaining <= 0:
                logger.warning(f"[Failover] deadline reached; {len(attempt_ids) - index} candidates not tried")
                break
            share_end = clock() + remaining / (len(attempt_ids) - index)

        provider = manager.get(provider_id)
        is_primary = index == 0 and provider_id == primary_id
        max_attempts = max(retry.primary_attempts if is_primary else retry.fallback_attempts, 1)

        try:
            response, repaired = await with_retry(
                _attempt_fn(provider, messages, tools, params, retry, share_end, clock, attempts, max_attempts),
                retry,
                attempts=max_attempts,
                should_retry=lambda e: not to_provider_error(e).fatal,
                sleep=sleep,
                deadline=share_end,
                clock=clock,
            )
        except Exception as e:
            last_error = to_provider_error(e, provider_id)
            manager.record_failure(provider_id, last_error)
            continue

        manager.record_success(provider_id)
        if attempts:
            logger.info(f"[Failover] {provider_id} succeeded after {len(attempts)} failed attempts")
        return ProviderCallResult(
            response=response,
            provider_id=provider_id,
            model=response.model or provider.model,
            attempts=attempts,
            repaired=repaired,
        )

    last_error.attempts = attempts
    raise last_error


def _attempt_fn(
    provider: Provider,
    messages: List[Dict[str, Any]],
    tools: Optional[List[Dict[str, Any]]],
    params: Dict[str, Any],
    retry: RetryConfig,
    share_end: Optional[float],
    clock: Callable[[], float],
    attempts: List[ProviderAttempt],
    max_attempts: int,
) -> Callable[[], Awaitable[Tuple[LLMResponse, bool]]]:
    """One provider's attempt, recording each failure in ``attempts``."""

    def timeout() -> float:
        if share_end is None:
            return retry.call_timeout
        return max(min(retry.call_timeout, share_end - clock()), 0.0)

    async def attempt() -> Tuple[LLMResponse, bool]:
        number = sum(1 for a in attempts if a.provider_id == provider.id) + 1
        try:
            response = await _call_once(provider, messages, tools, params, timeout())
            if not tools:
                return response, False
            repaired = await repair_tool_calls(provider, messages, tools, response, params, timeout())
            return repaired, repaired is not response
        except Exception as e:
            err = to_provider_error(e, provider.id)
            attempts.append(ProviderAttempt(
                provider_id=provider.id,
                attempt=number,
                reason=err.reason,
                error=str(err),
                status_code=err.status_code,
            ))
            logger.warning(
                "[Failover] %s attempt %d/%d failed (reason=%s): %s",
                provider.id, number, max_attempts, err.reason, err,
            )
            if err is e:
                raise
            raise err from e

    return attempt
