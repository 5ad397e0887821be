"""
antcore MessageRouter - inbound queuing, middleware and handler dispatch

Flow for every inbound message:

    adapter event -> session update -> priority insert (or drop when full)
                  -> dispatch (bounded per channel) -> middleware -> route handler

Each registered channel has its own queue and in-flight counter, so
channels progress independently. Everything runs on one event loop; queue
and session mutations happen in synchronous sections.

Usage:
    router = MessageRouter(config.router, default_handler=handle)
    router.register_adapter(cli_adapter)
    router.use(rate_limit_middleware)
    router.add_listener(lambda event: print(event.type))
    await router.start()
    ...
    await router.stop()
"""

import asyncio
import inspect
import logging
import re
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from ..config import RouterConfig
from ..errors import AntCoreError
from .base import BaseChannelAdapter
from .models import (
    AdapterEvent,
    ChannelSession,
    MessageContext,
    MessageHandler,
    MessagePriority,
    MessageSender,
    MiddlewareFunction,
    NormalizedMessage,
    QueuedMessage,
    RouteConfig,
    RouterEvent,
    SessionUser,
)

logger = logging.getLogger(__name__)

RouterListener = Callable[[RouterEvent], Any]

AGENT_SENDER = MessageSender(id="agent", name="Agent", is_agent=True)


class RouterError(AntCoreError):
    """Router misuse, e.g. registering a channel twice"""
    pass


class MessageRouter:
    """
    Routes inbound channel messages to handlers.

    Args:
        config: Queue size, concurrency, session timeout, drain settings
        default_handler: Handler for messages no route matches
        clock: Wall clock in seconds, injectable for tests
    """

    def __init__(
        self,
        config: Optional[RouterConfig] = None,
        default_handler: Optional[MessageHandler] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or RouterConfig()
        self._default_handler = default_handler
        self._clock = clock

        self._adapters: Dict[str, BaseChannelAdapter] = {}
        self._unsubscribers: Dict[str, Callable[[], None]] = {}
        self._queues: Dict[str, List[QueuedMessage]] = {}
        self._processing: Dict[str, int] = {}
        self._routes: List[RouteConfig] = []
        self._middleware: List[MiddlewareFunction] = []
        self._sessions: Dict[str, ChannelSession] = {}
        self._listeners: List[RouterListener] = []

        self._tasks: Set[asyncio.Task] = set()
        self._prune_task: Optional[asyncio.Task] = None
        self._accepting = True
        self._running = False

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def start(self) -> None:
        """Start the periodic session prune sweep."""
        if self._running:
            return
        self._running = True
        self._accepting = True
        self._prune_task = asyncio.create_task(self._prune_loop())
        logger.info("[Router] started")

    async def stop(self) -> None:
        """Stop accepting messages, drain in-flight work, cancel background tasks."""
        self._accepting = False
        if self._prune_task is not None:
            self._prune_task.cancel()
            await asyncio.gather(self._prune_task, return_exceptions=True)
            self._prune_task = None

        drained = await self.drain_queues()
        if not drained:
            logger.warning(f"[Router] stop: queues not drained after {self.config.drain_timeout}s, cancelling")

        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._running = False
        logger.info("[Router] stopped")

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.prune_interval)
            self.prune_expired_sessions()

    # ==========================================================================
    # Adapters
    # ==========================================================================

    def register_adapter(self, adapter: BaseChannelAdapter) -> None:
        """
        Attach an adapter and create its queue.

        Raises:
            RouterError: If an adapter for the channel is already registered.
        """
        channel = adapter.channel
        if channel in self._adapters:
            raise RouterError(f'Adapter for channel "{channel}" already registered')

        self._adapters[channel] = adapter
        self._queues[channel] = []
        self._processing[channel] = 0
        self._unsubscribers[channel] = adapter.on_event(
            lambda event: self._on_adapter_event(channel, event)
        )
        logger.info(f"[Router] adapter registered: {channel}")

    def unregister_adapter(self, channel: str) -> bool:
        if channel not in self._adapters:
            return False
        self._unsubscribers.pop(channel)()
        del self._adapters[channel]
        self._queues.pop(channel, None)
        self._processing.pop(channel, None)
        logger.info(f"[Router] adapter unregistered: {channel}")
        return True

    def get_adapter(self, channel: str) -> Optional[BaseChannelAdapter]:
        return self._adapters.get(channel)

    def get_adapters(self) -> Dict[str, BaseChannelAdapter]:
        return dict(self._adapters)

    def _on_adapter_event(self, channel: str, event: AdapterEvent) -> None:
        if event.type == "message" and event.message is not None:
            self.handle_incoming(event.message)
        elif event.type == "connected":
            self._emit(RouterEvent(type="adapter_connected", channel=channel))
        elif event.type == "disconnected":
            self._emit(RouterEvent(type="adapter_disconnected", channel=channel, reason=event.reason))
        elif event.type == "error":
            logger.warning(f"[Router] adapter error on {channel}: {event.error}")
            self._emit(RouterEvent(type="error", channel=channel, error=event.error))

    # ==========================================================================
    # Routing
    # ==========================================================================

    def add_route(self, route: RouteConfig) -> None:
        self._routes.append(route)
        # Stable sort keeps insertion order among equal priorities
        self._routes.sort(key=lambda r: r.priority, reverse=True)

    def remove_routes(self, predicate: Callable[[RouteConfig], bool]) -> int:
        before = len(self._routes)
        self._routes = [r for r in self._routes if not predicate(r)]
        return before - len(self._routes)

    def set_default_handler(self, handler: Optional[MessageHandler]) -> None:
        self._default_handler = handler

    def use(self, middleware: MiddlewareFunction) -> None:
        self._middleware.append(middleware)

    def add_listener(self, listener: RouterListener) -> Callable[[], None]:
        """Register a router event listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, event: RouterEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception as e:
                logger.warning(f"[Router] listener failed on {event.type}: {e}")
                continue
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result))

    # ==========================================================================
    # Inbound
    # ==========================================================================

    def handle_incoming(self, message: NormalizedMessage) -> bool:
        """Queue an inbound message. Returns False when it was dropped."""
        self._emit(RouterEvent(type="message_received", channel=message.channel, message=message))

        if not self._accepting:
            self._drop(message, "router_stopped")
            return False

        queue = self._queues.get(message.channel)
        if queue is None:
            logger.warning(f"[Router] no queue for channel {message.channel}")
            self._drop(message, "unknown_channel")
            return False

        self._update_session(message)

        if len(queue) >= self.config.max_queue_size:
            logger.warning(f"[Router] queue full on {message.channel}, dropping message {message.id}")
            self._drop(message, "queue_full")
            return False

        self._insert_by_priority(queue, QueuedMessage(message=message, enqueued_at=self._clock()))
        self._emit(RouterEvent(
            type="message_queued", channel=message.channel, message=message, queue_size=len(queue)
        ))
        self._process_queue(message.channel)
        return True

    def _drop(self, message: NormalizedMessage, reason: str) -> None:
        self._emit(RouterEvent(type="message_dropped", channel=message.channel, message=message, reason=reason))

    @staticmethod
    def _insert_by_priority(queue: List[QueuedMessage], item: QueuedMessage) -> None:
        """Insert before the first strictly lower priority item."""
        rank = MessagePriority(item.message.priority).rank
        for index, queued in enumerate(queue):
            if rank > MessagePriority(queued.message.priority).rank:
                queue.insert(index, item)
                return
        queue.append(item)

    def _process_queue(self, channel: str) -> None:
        queue = self._queues.get(channel)
        while queue and self._processing.get(channel, 0) < self.config.concurrency:
            item = queue.pop(0)
            self._processing[channel] += 1
            self._track(asyncio.ensure_future(self._dispatch(channel, item)))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, channel: str, item: QueuedMessage) -> None:
        item.attempts += 1
        try:
            response = await self._process_message(item.message)
            self._emit(RouterEvent(
                type="message_processed", channel=channel, message=item.message, response=response
            ))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            item.last_error = str(e)
            logger.error(f"[Router] processing failed for message {item.message.id} on {channel}: {e}")
            self._emit(RouterEvent(type="error", channel=channel, message=item.message, error=e))
        finally:
            if channel in self._processing:
                self._processing[channel] -= 1
                self._process_queue(channel)

    async def _process_message(self, message: NormalizedMessage) -> Optional[NormalizedMessage]:
        processed = await self._run_middleware(message)
        if processed is None:
            return None

        handler = self._find_handler(processed)
        if handler is None:
            logger.debug(f"[Router] no handler for session {processed.session_key}")
            return None
        return await handler(processed)

    async def _run_middleware(self, message: NormalizedMessage) -> Optional[NormalizedMessage]:
        """Run the chain; each middleware calls ``next(msg)`` to continue or returns None to stop."""
        middleware = list(self._middleware)

        async def call(index: int, current: NormalizedMessage) -> Optional[NormalizedMessage]:
            if index >= len(middleware):
                return current

            async def next_(updated: Optional[NormalizedMessage] = None) -> Optional[NormalizedMessage]:
                return await call(index + 1, updated if updated is not None else current)

            return await middleware[index](current, next_)

        return await call(0, message)

    def _find_handler(self, message: NormalizedMessage) -> Optional[MessageHandler]:
        for route in self._routes:
            if self._matches_route(message, route):
                return route.handler
        return self._default_handler

    @staticmethod
    def _matches_route(message: NormalizedMessage, route: RouteConfig) -> bool:
        pattern = route.pattern

        if pattern.channel is not None:
            channels = [pattern.channel] if isinstance(pattern.channel, str) else pattern.channel
            if message.channel not in channels:
                return False

        if pattern.session_key_pattern is not None:
            if not re.search(pattern.session_key_pattern, message.session_key):
                return False

        if pattern.priority is not None:
            priorities = (
                [pattern.priority] if isinstance(pattern.priority, (str, MessagePriority)) else pattern.priority
            )
            if MessagePriority(message.priority) not in [MessagePriority(p) for p in priorities]:
                return False

        return True

    # ==========================================================================
    # Sessions
    # ==========================================================================

    def _update_session(self, message: NormalizedMessage) -> None:
        key = message.session_key
        session = self._sessions.get(key)
        now = self._clock()
        if session is not None:
            session.last_activity = now
            session.message_count += 1
            return
        self._sessions[key] = ChannelSession(
            session_key=key,
            channel=message.channel,
            chat_id=message.context.chat_id,
            thread_id=message.context.thread_id,
            created_at=now,
            last_activity=now,
            message_count=1,
            user=None if message.sender.is_agent else SessionUser(message.sender.id, message.sender.name),
        )

    def get_session(self, session_key: str) -> Optional[ChannelSession]:
        return self._sessions.get(session_key)

    def get_sessions(self, channel: Optional[str] = None) -> List[ChannelSession]:
        sessions = list(self._sessions.values())
        if channel is not None:
            sessions = [s for s in sessions if s.channel == channel]
        return sessions

    def prune_expired_sessions(self) -> int:
        """Remove sessions idle longer than ``session_timeout``. Returns how many."""
        cutoff = self._clock() - self.config.session_timeout
        expired = [k for k, s in self._sessions.items() if s.last_activity < cutoff]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.debug(f"[Router] pruned {len(expired)} expired sessions")
        return len(expired)

    # ==========================================================================
    # Outbound
    # ==========================================================================

    async def send_message(self, message: NormalizedMessage) -> bool:
        adapter = self._adapters.get(message.channel)
        if adapter is None:
            logger.warning(f"[Router] no adapter for channel {message.channel}")
            return False
        result = await adapter.send_message(message)
        if not result.ok:
            logger.warning(f"[Router] send on {message.channel} failed: {result.error}")
        return result.ok

    async def send_to_session(self, session_key: str, content: str, **metadata: Any) -> bool:
        """Send an agent-authored message to a known session."""
        session = self._sessions.get(session_key)
        if session is None:
            logger.warning(f"[Router] session not found: {session_key}")
            return False
        message = NormalizedMessage(
            id=str(uuid.uuid4()),
            channel=session.channel,
            sender=AGENT_SENDER,
            content=content,
            context=MessageContext(
                session_key=session_key, chat_id=session.chat_id, thread_id=session.thread_id
            ),
            timestamp=self._clock(),
            metadata=dict(metadata),
        )
        return await self.send_message(message)

    # ==========================================================================
    # Queues
    # ==========================================================================

    def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        return {
            channel: {"queued": len(queue), "processing": self._processing.get(channel, 0)}
            for channel, queue in self._queues.items()
        }

    def _drained(self) -> bool:
        return not any(self._queues.values()) and not any(self._processing.values())

    async def drain_queues(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queue is empty and nothing is in flight. Returns False on timeout."""
        timeout = self.config.drain_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self._drained():
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.config.drain_poll_interval)
        return True
