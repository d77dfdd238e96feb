"""Realtime conversation client."""

from realtime.api import DEFAULT_MODEL, DEFAULT_URL, RealtimeAPI
from realtime.client import (
    DEFAULT_SERVER_VAD_CONFIG,
    DEFAULT_SESSION_CONFIG,
    NOT_GIVEN,
    RealtimeClient,
)
from realtime.conversation import RealtimeConversation
from realtime.errors import (
    ListenerNotFoundError,
    ProtocolError,
    RealtimeError,
    ToolNotFoundError,
    UsageError,
)
from realtime.event_bus import EventBus
from realtime.tools import ToolRegistration

__all__ = [
    "DEFAULT_MODEL",
    "DEFAULT_SERVER_VAD_CONFIG",
    "DEFAULT_SESSION_CONFIG",
    "DEFAULT_URL",
    "EventBus",
    "ListenerNotFoundError",
    "NOT_GIVEN",
    "ProtocolError",
    "RealtimeAPI",
    "RealtimeClient",
    "RealtimeConversation",
    "RealtimeError",
    "ToolNotFoundError",
    "ToolRegistration",
    "UsageError",
]
