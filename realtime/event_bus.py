"""Named-event publish/subscribe bus used by the realtime client."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from typing import Any

from realtime.errors import ListenerNotFoundError


LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[Any], Any]


class EventBus:
    """Registry of durable and one-shot listeners keyed by event name.

    Dispatch is synchronous: durable listeners run first in registration
    order, then one-shot listeners in registration order. Listener exceptions
    are not caught, so a failing listener stops the remaining listeners for
    that dispatch.
    """

    def __init__(self) -> None:
        self._event_handlers: dict[str, list[EventCallback]] = {}
        self._next_event_handlers: dict[str, list[EventCallback]] = {}

    def clear_event_handlers(self) -> None:
        self._event_handlers = {}
        self._next_event_handlers = {}

    def on(self, event_name: str, callback: EventCallback) -> EventCallback:
        self._event_handlers.setdefault(event_name, []).append(callback)
        return callback

    def on_next(self, event_name: str, callback: EventCallback) -> EventCallback:
        self._next_event_handlers.setdefault(event_name, []).append(callback)
        return callback

    def off(self, event_name: str, callback: EventCallback | None = None) -> None:
        """Remove one listener, or every listener for ``event_name``."""

        if callback is None:
            self._event_handlers.pop(event_name, None)
            return
        handlers = self._event_handlers.get(event_name, [])
        if callback not in handlers:
            raise ListenerNotFoundError(
                f'Could not turn off specified event listener for "{event_name}": '
                "not found as a listener"
            )
        handlers.remove(callback)

    def off_next(self, event_name: str, callback: EventCallback | None = None) -> None:
        """Remove one one-shot listener, or all of them for ``event_name``."""

        if callback is None:
            self._next_event_handlers.pop(event_name, None)
            return
        handlers = self._next_event_handlers.get(event_name, [])
        if callback not in handlers:
            raise ListenerNotFoundError(
                f'Could not turn off specified next event listener for "{event_name}": '
                "not found as a listener"
            )
        handlers.remove(callback)

    def has_listeners(self, event_name: str) -> bool:
        return bool(
            self._event_handlers.get(event_name) or self._next_event_handlers.get(event_name)
        )

    def dispatch(self, event_name: str, event: Any = None) -> None:
        for handler in list(self._event_handlers.get(event_name, [])):
            handler(event)
        for handler in list(self._next_event_handlers.get(event_name, [])):
            handler(event)
        self._next_event_handlers.pop(event_name, None)

    async def wait_for_next(self, event_name: str, timeout: float | None = None) -> Any:
        """Wait for the next dispatch of ``event_name`` and return its payload.

        Args:
            event_name: Event to wait for.
            timeout: Optional timeout in seconds.

        Returns:
            The dispatched payload, or ``None`` when the timeout elapses.
        """

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _resolve(event: Any) -> None:
            if not future.done():
                future.set_result(event)

        self.on_next(event_name, _resolve)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            LOGGER.debug("Timed out after %ss waiting for %s.", timeout, event_name)
            return None
        finally:
            pending = self._next_event_handlers.get(event_name, [])
            if _resolve in pending:
                pending.remove(_resolve)
