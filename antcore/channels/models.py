"""
antcore Channel Models - normalized messages, sessions, routes and router events

This module defines:
- NormalizedMessage: canonical inbound/outbound message shared by all channels
- QueuedMessage: a message waiting in a per-channel router queue
- ChannelSession: per session-key bookkeeping kept by the router
- RouteConfig / RoutePattern: handler selection rules
- AdapterEvent / RouterEvent: events fanned out to registered handlers
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, Union


class MessagePriority(str, Enum):
    """Queue priority of a message"""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 2, "normal": 1, "low": 0}[self.value]


@dataclass
class MessageSender:
    id: str
    name: str = ""
    is_agent: bool = False


@dataclass
class MessageContext:
    """Session and conversation the message belongs to"""
    session_key: str
    chat_id: Optional[str] = None
    thread_id: Optional[str] = None


@dataclass
class MessageMedia:
    type: str
    """image, video, audio or file"""
    data: Union[bytes, str]
    mime_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class NormalizedMessage:
    """Canonical message format every channel adapter converts to and from."""
    channel: str
    sender: MessageSender
    content: str
    context: MessageContext
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    """Unix timestamp in seconds"""
    priority: MessagePriority = MessagePriority.NORMAL
    media: Optional[MessageMedia] = None
    is_reply: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw_message: Any = field(default=None, repr=False, compare=False)

    @property
    def session_key(self) -> str:
        return self.context.session_key

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "channel": self.channel,
            "sender": {"id": self.sender.id, "name": self.sender.name, "is_agent": self.sender.is_agent},
            "content": self.content,
            "context": {
                "session_key": self.context.session_key,
                "chat_id": self.context.chat_id,
                "thread_id": self.context.thread_id,
            },
            "timestamp": self.timestamp,
            "priority": self.priority.value,
            "is_reply": self.is_reply,
            "metadata": self.metadata,
        }


@dataclass
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: Optional[float] = None


@dataclass
class QueuedMessage:
    message: NormalizedMessage
    enqueued_at: float
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass
class SessionUser:
    id: str
    name: str = ""


@dataclass
class ChannelSession:
    """Router-side state of one session key"""
    session_key: str
    channel: str
    created_at: float
    last_activity: float
    chat_id: Optional[str] = None
    thread_id: Optional[str] = None
    message_count: int = 0
    user: Optional[SessionUser] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


MessageHandler = Callable[[NormalizedMessage], Awaitable[Optional[NormalizedMessage]]]
NextFunction = Callable[..., Awaitable[Optional[NormalizedMessage]]]
MiddlewareFunction = Callable[[NormalizedMessage, NextFunction], Awaitable[Optional[NormalizedMessage]]]


@dataclass
class RoutePattern:
    """Every field that is set must match; unset fields match anything."""
    channel: Union[str, List[str], None] = None
    session_key_pattern: Union[str, Pattern, None] = None
    """Regex searched in the session key"""
    priority: Union[MessagePriority, List[MessagePriority], None] = None


@dataclass
class RouteConfig:
    pattern: RoutePattern
    handler: MessageHandler
    priority: int = 0
    """Higher routes are checked first"""


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass
class AdapterEvent:
    """Event emitted by a channel adapter: message, connected, disconnected or error."""
    type: str
    message: Optional[NormalizedMessage] = None
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RouterEvent:
    """
    Event emitted by the MessageRouter.

    Types: message_received, message_queued, message_dropped,
    message_processed, error, adapter_connected, adapter_disconnected.
    """
    type: str
    channel: Optional[str] = None
    message: Optional[NormalizedMessage] = None
    response: Optional[NormalizedMessage] = None
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    queue_size: Optional[int] = None
