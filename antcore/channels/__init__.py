"""
antcore Channels - adapter base class and the inbound message router

Usage:
    from antcore.channels import MessageRouter, RouteConfig, RoutePattern

    router = MessageRouter(config.router, default_handler=handle_message)
    router.register_adapter(adapter)
    router.add_route(RouteConfig(RoutePattern(channel="cli"), handler=handle_cli, priority=10))
    await router.start()
"""

from .base import AdapterEventHandler, BaseChannelAdapter
from .models import (
    AdapterEvent,
    ChannelSession,
    MessageContext,
    MessageHandler,
    MessageMedia,
    MessagePriority,
    MessageSender,
    MiddlewareFunction,
    NormalizedMessage,
    QueuedMessage,
    RouteConfig,
    RoutePattern,
    RouterEvent,
    SendResult,
    SessionUser,
)
from .router import MessageRouter, RouterError

__all__ = [
    "AdapterEventHandler",
    "BaseChannelAdapter",
    "AdapterEvent",
    "ChannelSession",
    "MessageContext",
    "MessageHandler",
    "MessageMedia",
    "MessagePriority",
    "MessageSender",
    "MiddlewareFunction",
    "NormalizedMessage",
    "QueuedMessage",
    "RouteConfig",
    "RoutePattern",
    "RouterEvent",
    "SendResult",
    "SessionUser",
    "MessageRouter",
    "RouterError",
]
