"""Tests for antcore.llm.failover"""

import asyncio
import time

import pytest

from antcore.config import RetryConfig, RoutingConfig
from antcore.constants import TOOL_CALL_REPAIR_INSTRUCTION
from antcore.errors import NoProviderAvailable, ProviderError
from antcore.llm.base import LLMResponse, StopReason
from antcore.llm.failover import call_provider_with_fallback, compute_backoff, with_retry

from tests.fakes import FakeClock, FakeLLMClient, StatusError, calls, make_manager, text


MESSAGES = [{"role": "user", "content": "list the files"}]
TOOLS = [{
    "type": "function",
    "function": {"name": "list_files", "description": "List files", "parameters": {"type": "object"}},
}]


def _manager(primary, backup=None, clock=None):
    clients = {"primary": primary}
    if backup is not None:
        clients["backup"] = backup
    return make_manager(
        clients,
        routing=RoutingConfig(fallback_chain=["backup"] if backup is not None else []),
        clock=clock or FakeClock(),
    )


# =========================================================================
# Backoff
# =========================================================================


class TestComputeBackoff:

    def test_exponential(self):
        retry = RetryConfig(base_delay=1.0, multiplier=2.0, jitter=0.0)
        assert [compute_backoff(i, retry) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        retry = RetryConfig(base_delay=1.0, multiplier=10.0, max_delay=30.0, jitter=0.0)
        assert compute_backoff(5, retry) == 30.0

    def test_jitter_adds_up_to_fraction(self):
        retry = RetryConfig(base_delay=2.0, jitter=0.5)
        assert compute_backoff(0, retry, rand=lambda: 0.0) == 2.0
        assert compute_backoff(0, retry, rand=lambda: 1.0) == 3.0


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_retries_until_success(self, sleep):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise StatusError("slow down", 429)
            return "ok"

        assert await with_retry(flaky, RetryConfig(jitter=0.0), sleep=sleep) == "ok"
        assert len(attempts) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self, sleep):
        async def denied():
            raise StatusError("bad key", 401)

        with pytest.raises(StatusError):
            await with_retry(denied, RetryConfig(), sleep=sleep)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self, sleep):
        async def down():
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await with_retry(down, RetryConfig(), attempts=2, sleep=sleep)
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_deadline_stops_retries(self, sleep):
        clock = FakeClock(100.0)
        attempts = []

        async def flaky():
            attempts.append(1)
            raise StatusError("slow down", 429)

        with pytest.raises(StatusError):
            await with_retry(flaky, RetryConfig(jitter=0.0), sleep=sleep, deadline=100.5, clock=clock)
        assert len(attempts) == 1
        sleep.assert_not_awaited()


# =========================================================================
# call_provider_with_fallback
# =========================================================================


class TestCallProviderWithFallback:

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, fast_retry, sleep):
        primary = FakeLLMClient([text("hello")])
        result = await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES, retry=fast_retry, sleep=sleep,
        )
        assert result.provider_id == "primary"
        assert result.response.content == "hello"
        assert result.attempts == []
        assert not result.repaired

    @pytest.mark.asyncio
    async def test_params_forwarded_as_config(self, fast_retry, sleep):
        primary = FakeLLMClient([text("hello")])
        await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES,
            retry=fast_retry, params={"temperature": 0.1}, sleep=sleep,
        )
        assert primary.calls[0]["config"] == {"temperature": 0.1}

    @pytest.mark.asyncio
    async def test_primary_retried_with_backoff(self, fast_retry, sleep):
        primary = FakeLLMClient([StatusError("slow down", 429), StatusError("slow down", 429), text("third time")])
        manager = _manager(primary)
        result = await call_provider_with_fallback(manager, "primary", MESSAGES, retry=fast_retry, sleep=sleep)

        assert result.response.content == "third time"
        assert [a.attempt for a in result.attempts] == [1, 2]
        assert all(a.reason == "rate_limit" for a in result.attempts)
        assert sleep.await_count == 2
        assert not manager.is_cooling_down("primary")

    @pytest.mark.asyncio
    async def test_fatal_error_skips_local_retry(self, fast_retry, sleep):
        primary = FakeLLMClient([StatusError("bad key", 401)])
        backup = FakeLLMClient([text("from backup")])
        manager = _manager(primary, backup)
        result = await call_provider_with_fallback(manager, "primary", MESSAGES, retry=fast_retry, sleep=sleep)

        assert result.provider_id == "backup"
        assert len(primary.calls) == 1
        assert result.attempts[0].reason == "auth"
        assert manager.is_cooling_down("primary")
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_gets_single_attempt(self, fast_retry, sleep):
        primary = FakeLLMClient([ConnectionError("down")] * 3)
        backup = FakeLLMClient([ConnectionError("also down"), text("never reached")])

        with pytest.raises(ProviderError) as exc_info:
            await call_provider_with_fallback(
                _manager(primary, backup), "primary", MESSAGES, retry=fast_retry, sleep=sleep,
            )

        err = exc_info.value
        assert len(primary.calls) == 3
        assert len(backup.calls) == 1
        assert [a.provider_id for a in err.attempts] == ["primary"] * 3 + ["backup"]
        assert err.provider_id == "backup"
        assert "also down" in str(err)

    @pytest.mark.asyncio
    async def test_all_cooling_down(self, fast_retry, sleep):
        manager = _manager(FakeLLMClient())
        manager.record_failure("primary", "rate_limit")
        with pytest.raises(NoProviderAvailable):
            await call_provider_with_fallback(manager, "primary", MESSAGES, retry=fast_retry, sleep=sleep)

    @pytest.mark.asyncio
    async def test_attempt_timeout(self, sleep):
        async def hang(messages, tools=None, config=None, **kwargs):
            await asyncio.sleep(5)

        primary = FakeLLMClient()
        primary.chat_completion = hang
        backup = FakeLLMClient([text("fast")])
        retry = RetryConfig(primary_attempts=2, call_timeout=0.05)

        result = await call_provider_with_fallback(
            _manager(primary, backup), "primary", MESSAGES, retry=retry, sleep=sleep,
        )
        assert result.provider_id == "backup"
        assert len(result.attempts) == 2
        assert "timed out" in result.attempts[0].error

    @pytest.mark.asyncio
    async def test_deadline_shared_between_candidates(self, sleep):
        async def hang(messages, tools=None, config=None, **kwargs):
            await asyncio.sleep(5)

        primary = FakeLLMClient()
        primary.chat_completion = hang
        backup = FakeLLMClient([text("fast")])
        manager = _manager(primary, backup)
        retry = RetryConfig(primary_attempts=3, call_timeout=5.0)

        result = await call_provider_with_fallback(
            manager, "primary", MESSAGES, retry=retry, sleep=sleep,
            deadline=time.monotonic() + 0.2,
        )
        assert result.provider_id == "backup"
        assert len(result.attempts) == 1
        assert result.attempts[0].error.startswith("Provider call timed out")
        assert manager.is_cooling_down("primary")
        sleep.assert_not_awaited()


# =========================================================================
# Tool-call repair
# =========================================================================


class TestToolCallRepair:

    @pytest.mark.asyncio
    async def test_structured_calls_pass_through(self, fast_retry, sleep):
        primary = FakeLLMClient([calls(("c1", "list_files", {}))])
        result = await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES, tools=TOOLS, retry=fast_retry, sleep=sleep,
        )
        assert result.response.tool_calls[0].id == "c1"
        assert not result.repaired

    @pytest.mark.asyncio
    async def test_plain_answer_untouched(self, fast_retry, sleep):
        primary = FakeLLMClient([text("There are no files.")])
        result = await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES, tools=TOOLS, retry=fast_retry, sleep=sleep,
        )
        assert result.response.content == "There are no files."
        assert not result.response.has_tool_calls
        assert not result.repaired

    @pytest.mark.asyncio
    async def test_json_answer_not_mistaken_for_call(self, fast_retry, sleep):
        primary = FakeLLMClient([text('{"name": "Alice", "age": 3}')])
        result = await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES, tools=TOOLS, retry=fast_retry, sleep=sleep,
        )
        assert result.response.content == '{"name": "Alice", "age": 3}'
        assert not result.response.has_tool_calls
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_calls_recovered_from_text(self, fast_retry, sleep):
        primary = FakeLLMClient([
            text('Sure.\n```json\n{"tool_calls": [{"name": "list_files", "arguments": {"dir": "."}}]}\n```'),
        ])
        result = await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES, tools=TOOLS, retry=fast_retry, sleep=sleep,
        )
        response = result.response
        assert result.repaired
        assert response.stop_reason == StopReason.TOOL_USE
        assert response.tool_calls[0].name == "list_files"
        assert response.tool_calls[0].arguments == {"dir": "."}
        assert response.content == "Sure."
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_truncated_markup_gets_one_repair_request(self, fast_retry, sleep):
        primary = FakeLLMClient([
            text("<tool_call>list_files<arg_key>dir</arg_key><arg_value>."),
            calls(("c9", "list_files", {"dir": "."})),
        ])
        result = await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES, tools=TOOLS, retry=fast_retry, sleep=sleep,
        )

        assert result.repaired
        assert result.response.tool_calls[0].id == "c9"
        repair_messages = primary.calls[1]["messages"]
        assert repair_messages[-1] == {"role": "user", "content": TOOL_CALL_REPAIR_INSTRUCTION}
        assert repair_messages[-2]["role"] == "assistant"

    @pytest.mark.asyncio
    async def test_max_tokens_with_markup_triggers_repair(self, fast_retry, sleep):
        cut_off = LLMResponse(
            content='{"tool_calls": [{"name": "list_files", "argu',
            stop_reason=StopReason.MAX_TOKENS,
        )
        primary = FakeLLMClient([cut_off, text('{"name": "list_files", "arguments": {}}')])
        result = await call_provider_with_fallback(
            _manager(primary), "primary", MESSAGES, tools=TOOLS, retry=fast_retry, sleep=sleep,
        )
        assert result.response.tool_calls[0].name == "list_files"
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_failed_repair_is_a_format_error(self, fast_retry, sleep):
        primary = FakeLLMClient([
            text("<tool_call>list_files<arg_key>dir"),
            text("I really cannot do that."),
        ])
        backup = FakeLLMClient([calls(("c1", "list_files", {}))])
        manager = _manager(primary, backup)
        result = await call_provider_with_fallback(
            manager, "primary", MESSAGES, tools=TOOLS, retry=fast_retry, sleep=sleep,
        )

        assert result.provider_id == "backup"
        assert result.attempts[0].reason == "format"
        assert len(primary.calls) == 2
        assert manager.get("primary").health.last_reason == "format"
