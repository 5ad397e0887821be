"""Test doubles: scripted model clients, a recording channel adapter and message helpers."""

import copy
from typing import Any, Dict, List, Optional

from antcore.channels.base import BaseChannelAdapter
from antcore.channels.models import (
    MessageContext,
    MessagePriority,
    MessageSender,
    NormalizedMessage,
    SendResult,
)
from antcore.config import ProviderConfig, RoutingConfig
from antcore.llm.base import LLMResponse, StopReason, ToolCall
from antcore.llm.providers import Provider, ProviderManager


# ── model clients ──


class FakeLLMClient:
    """Replays a script of responses; exceptions in the script are raised.

    A callable entry is invoked with ``(messages, tools)`` and its return
    value is used. When the script runs out, a plain "done" answer is returned.
    """

    def __init__(self, script: Optional[List[Any]] = None, model: str = "fake-model"):
        self.script = list(script or [])
        self.model = model
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def chat_completion(self, messages, tools=None, config=None, **kwargs):
        self.calls.append({
            "messages": copy.deepcopy(messages),
            "tools": tools,
            "config": config,
        })
        if not self.script:
            return LLMResponse(content="done", model=self.model)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(messages, tools)
        return item

    async def close(self):
        self.closed = True


class StatusError(Exception):
    """Exception carrying an HTTP status code, like SDK errors do."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def text(content: str, model: str = "fake-model") -> LLMResponse:
    return LLMResponse(content=content, model=model)


def calls(*specs, content: str = "") -> LLMResponse:
    """Response requesting tools. Each call is ``(id, name, arguments)``."""
    return LLMResponse(
        content=content,
        tool_calls=[ToolCall(id=i, name=n, arguments=a) for i, n, a in specs],
        stop_reason=StopReason.TOOL_USE,
        model="fake-model",
    )


def make_manager(
    clients: Dict[str, FakeLLMClient],
    routing: Optional[RoutingConfig] = None,
    clock=None,
    extra: Optional[Dict[str, Dict[str, Any]]] = None,
) -> ProviderManager:
    """ProviderManager with one registered provider per client.

    ``extra`` maps a provider id to additional Provider fields (roles,
    supports_tools, group, ...).
    """
    kwargs = {"clock": clock} if clock is not None else {}
    manager = ProviderManager(routing=routing, **kwargs)
    for provider_id, client in clients.items():
        manager.register(Provider(
            id=provider_id,
            model=f"{provider_id}-model",
            client=client,
            **(extra or {}).get(provider_id, {}),
        ))
    return manager


def provider_configs(*ids: str) -> List[ProviderConfig]:
    return [ProviderConfig(id=i, model=f"{i}-model") for i in ids]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── channels ──


class FakeAdapter(BaseChannelAdapter):
    """Adapter that records outbound messages and passes inbound ones through."""

    def __init__(self, channel: str = "cli", send_ok: bool = True):
        super().__init__(channel)
        self.sent: List[NormalizedMessage] = []
        self.send_ok = send_ok
        self.started = False

    async def start(self):
        self.started = True
        self.set_connected(True)

    async def stop(self):
        self.started = False
        self.set_connected(False, "stopped")

    async def send_message(self, message):
        self.sent.append(message)
        if not self.send_ok:
            return SendResult(ok=False, error="offline")
        return SendResult(ok=True, message_id=message.id)

    def normalize_incoming(self, raw):
        if isinstance(raw, NormalizedMessage) or raw is None:
            return raw
        if isinstance(raw, dict):
            return make_message(raw["text"], channel=self.channel, chat_id=raw.get("chat_id"))
        raise ValueError(f"unsupported payload: {raw!r}")


def make_message(
    content: str,
    channel: str = "cli",
    chat_id: Optional[str] = "c1",
    priority: MessagePriority = MessagePriority.NORMAL,
    session_key: Optional[str] = None,
) -> NormalizedMessage:
    return NormalizedMessage(
        channel=channel,
        sender=MessageSender(id="u1", name="Ada"),
        content=content,
        context=MessageContext(session_key=session_key or f"{channel}:{chat_id}", chat_id=chat_id),
        priority=priority,
    )
