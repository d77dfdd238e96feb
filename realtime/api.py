"""Websocket transport for the realtime API.

Inbound frames are re-dispatched on the bus as ``server.<type>`` and
``server.*``; outbound events are stamped with an id, dispatched as
``client.<type>`` and ``client.*``, then written to the socket in order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import importlib
import importlib.util
import json
from typing import Any

from core.logging import log_info, log_warning, log_ws_event, logger
from realtime.errors import ProtocolError, UsageError
from realtime.event_bus import EventBus
from realtime.utils import EVENT_ID_PREFIX, generate_id

DEFAULT_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_MODEL = "gpt-4o-realtime-preview-2024-10-01"
DRAIN_TIMEOUT_S = 5.0


def _require_websockets() -> Any:
    if importlib.util.find_spec("websockets") is None:
        raise RuntimeError("websockets is required for RealtimeAPI")
    # websockets>=14 loads its submodules lazily.
    importlib.import_module("websockets.exceptions")
    return importlib.import_module("websockets")


def _resolve_websocket_exceptions(websockets: Any) -> tuple[type[BaseException], type[BaseException]]:
    connection_closed = getattr(websockets, "ConnectionClosed", None)
    connection_closed_error = getattr(websockets, "ConnectionClosedError", None)
    exceptions_module = getattr(websockets, "exceptions", None)
    if exceptions_module is not None:
        connection_closed = getattr(exceptions_module, "ConnectionClosed", connection_closed)
        connection_closed_error = getattr(
            exceptions_module, "ConnectionClosedError", connection_closed_error
        )
    if connection_closed is None or connection_closed_error is None:
        raise RuntimeError("Unsupported websockets version: missing ConnectionClosed errors.")
    return connection_closed, connection_closed_error


class RealtimeAPI(EventBus):
    """Owns one websocket connection to the realtime server."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        debug: bool = False,
    ) -> None:
        super().__init__()
        self.default_url = DEFAULT_URL
        self.url = url or self.default_url
        self.api_key = api_key
        self.debug = bool(debug)
        self.ws: Any = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._reader_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None

    def is_connected(self) -> bool:
        return self.ws is not None

    def log(self, message: str, payload: Any = None) -> None:
        if not self.debug:
            return
        if payload is None:
            logger.info("[Websocket] %s", message)
        else:
            logger.info("[Websocket] %s %s", message, json.dumps(payload, indent=2, default=str))

    async def connect(self, model: str | None = DEFAULT_MODEL) -> bool:
        """Open the websocket and start the reader and writer tasks.

        Args:
            model: Realtime model appended to the url as ``?model=``.

        Returns:
            True when connected. A failed connection dispatches ``close`` with
            ``error`` set and returns False.
        """

        if self.is_connected():
            raise UsageError("Already connected")
        if not self.api_key and self.url == self.default_url:
            log_warning(f'No api_key provided for connection to "{self.url}"')

        websockets = _require_websockets()
        url = f"{self.url}?model={model}" if model else self.url
        headers = {"OpenAI-Beta": "realtime=v1"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info("Connecting to model: %s", model)
        try:
            ws = await websockets.connect(
                url,
                additional_headers=headers,
                close_timeout=10,
                ping_interval=30,
                ping_timeout=10,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            logger.error('Could not connect to "%s": %s', self.url, exc)
            self.dispatch("close", {"error": True})
            return False

        self.ws = ws
        self._outbox = asyncio.Queue()
        self._reader_task = asyncio.create_task(self._receive_loop(ws))
        self._writer_task = asyncio.create_task(self._send_loop(ws))
        log_info(f'✅ Connected to "{self.url}"', style="bold green")
        return True

    async def disconnect(self) -> None:
        """Flush frames already accepted by ``send`` then close the socket."""

        ws = self.ws
        if ws is None:
            return
        await self._drain_outbox()
        self._teardown(ws)
        await ws.close()
        reader_task = self._reader_task
        self._reader_task = None
        if reader_task is not None and reader_task is not asyncio.current_task():
            reader_task.cancel()
            await asyncio.gather(reader_task, return_exceptions=True)
        self.log(f'Disconnected from "{self.url}"')

    async def _drain_outbox(self) -> None:
        writer_task = self._writer_task
        if writer_task is None or writer_task.done():
            return
        try:
            await asyncio.wait_for(self._outbox.join(), DRAIN_TIMEOUT_S)
        except asyncio.TimeoutError:
            log_warning(
                f"⚠️ Dropping {self._outbox.qsize()} unsent frame(s) after {DRAIN_TIMEOUT_S:.0f}s."
            )

    def _teardown(self, ws: Any) -> None:
        if self.ws is not ws:
            return
        self.ws = None
        if self._writer_task is not None:
            self._writer_task.cancel()
            self._writer_task = None

    def receive(self, event_name: str, event: dict[str, Any]) -> None:
        log_ws_event("Incoming", event)
        self.log("received:", event)
        self.dispatch(f"server.{event_name}", event)
        self.dispatch("server.*", event)

    def send(self, event_name: str, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Stamp, publish, and queue an outbound event.

        Returns:
            The event exactly as it will be written to the socket.
        """

        if not self.is_connected():
            raise UsageError("RealtimeAPI is not connected")
        data = data or {}
        if not isinstance(data, Mapping):
            raise TypeError("data must be a mapping")
        event = {
            "event_id": generate_id(EVENT_ID_PREFIX),
            "type": event_name,
            **data,
        }
        self.dispatch(f"client.{event_name}", event)
        self.dispatch("client.*", event)
        log_ws_event("Outgoing", event)
        self.log("sent:", event)
        self._outbox.put_nowait(json.dumps(event))
        return event

    async def _send_loop(self, ws: Any) -> None:
        websockets = _require_websockets()
        connection_closed, _ = _resolve_websocket_exceptions(websockets)
        while True:
            payload = await self._outbox.get()
            try:
                await ws.send(payload)
            except connection_closed:
                log_warning("⚠️ WebSocket closed while sending.")
                return
            finally:
                self._outbox.task_done()

    async def _receive_loop(self, ws: Any) -> None:
        websockets = _require_websockets()
        _, connection_closed_error = _resolve_websocket_exceptions(websockets)
        error = False
        try:
            async for message in ws:
                self._handle_message(message)
        except connection_closed_error as exc:
            error = True
            log_warning(f"⚠️ WebSocket connection lost: {exc}")
        finally:
            if self.ws is ws:
                self._teardown(ws)
                self._reader_task = None
                self.log(f'Disconnected from "{self.url}"')
                self.dispatch("close", {"error": error})

    def _decode_event(self, message: str | bytes) -> dict[str, Any]:
        event = json.loads(message)
        if not isinstance(event, dict):
            raise ProtocolError(f"Server frame is not an event object: {message!r}")
        if not event.get("type"):
            raise ProtocolError(f'Missing "type" on server event: {event}')
        if not event.get("event_id"):
            raise ProtocolError(f'Missing "event_id" on server event: {event}')
        return event

    def _handle_message(self, message: str | bytes) -> None:
        try:
            event = self._decode_event(message)
        except (json.JSONDecodeError, ProtocolError) as exc:
            logger.error("Dropping malformed server frame: %s", exc)
            return
        try:
            self.receive(event.get("type"), event)
        except Exception:
            logger.exception("Failed to process server event %s", event.get("type"))
