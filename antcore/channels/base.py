"""
Base channel adapter.

Subclasses implement the wire protocol:
- start() / stop(): connect and disconnect
- send_message(): deliver a NormalizedMessage, return a SendResult
- normalize_incoming(): raw channel payload -> NormalizedMessage (or None to skip)

The base class keeps connection state, the registered event handlers and
the inbound normalization hook. Handlers may be plain functions or
coroutines; coroutine handlers are scheduled on the running loop.
"""

import asyncio
import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Set

from .models import AdapterEvent, MessagePriority, NormalizedMessage, SendResult

logger = logging.getLogger(__name__)

AdapterEventHandler = Callable[[AdapterEvent], Any]


class BaseChannelAdapter(ABC):
    """
    Abstract channel adapter.

    Args:
        channel: Channel identifier (cli, web, whatsapp, telegram, ...)
        default_priority: Priority given to inbound messages that carry none
    """

    def __init__(self, channel: str, default_priority: MessagePriority = MessagePriority.NORMAL):
        self.channel = channel
        self.default_priority = default_priority
        self.connected = False
        self._handlers: List[AdapterEventHandler] = []
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Subclass contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def send_message(self, message: NormalizedMessage) -> SendResult:
        ...

    @abstractmethod
    def normalize_incoming(self, raw: Any) -> Optional[NormalizedMessage]:
        ...

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_event(self, handler: AdapterEventHandler) -> Callable[[], None]:
        """Register an event handler. Returns a function that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _emit_event(self, event: AdapterEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
            except Exception as e:
                logger.warning(f"[{self.channel}] event handler failed on {event.type}: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"[{self.channel}] async event handler failed: {task.exception()}")

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def set_connected(self, connected: bool, reason: Optional[str] = None) -> None:
        if connected == self.connected:
            return
        self.connected = connected
        if connected:
            logger.info(f"[{self.channel}] connected")
            self._emit_event(AdapterEvent(type="connected"))
        else:
            logger.info(f"[{self.channel}] disconnected" + (f": {reason}" if reason else ""))
            self._emit_event(AdapterEvent(type="disconnected", reason=reason))

    def handle_incoming(self, raw: Any) -> Optional[NormalizedMessage]:
        """Normalize a raw payload and emit it as a ``message`` event."""
        try:
            message = self.normalize_incoming(raw)
        except Exception as e:
            logger.warning(f"[{self.channel}] failed to normalize incoming message: {e}")
            self._emit_event(AdapterEvent(type="error", error=e))
            return None
        if message is None:
            logger.debug(f"[{self.channel}] message filtered out during normalization")
            return None
        if message.priority is None:
            message.priority = self.default_priority
        self._emit_event(AdapterEvent(type="message", message=message))
        return message

    def session_key_for(self, chat_id: Optional[str] = None, thread_id: Optional[str] = None) -> str:
        return ":".join(p for p in (self.channel, chat_id, thread_id) if p)

    @staticmethod
    def new_message_id() -> str:
        return str(uuid.uuid4())
