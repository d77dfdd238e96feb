"""Exception types raised by the realtime client."""

from __future__ import annotations


class RealtimeError(RuntimeError):
    """Base class for all realtime client errors."""


class ProtocolError(RealtimeError):
    """Raised when a server event breaks the protocol contract.

    Examples are events missing ``event_id`` or ``type``, event types without a
    processor, or references to items and responses that are not known.
    """


class UsageError(RealtimeError):
    """Raised when the client is used incorrectly by the caller."""


class ListenerNotFoundError(UsageError, LookupError):
    """Raised when removing an event listener that was never registered."""


class ToolNotFoundError(UsageError, KeyError):
    """Raised when a tool name is not present in the tool registry."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""
