"""High-level realtime client: session config, tools, and response lifecycle."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
import json
from typing import Any, Iterable

import numpy as np

from core.logging import log_error, log_session_update, log_tool_call, logger
from realtime.api import DEFAULT_MODEL, RealtimeAPI
from realtime.conversation import Item, RealtimeConversation
from realtime.errors import ToolNotFoundError, UsageError
from realtime.event_bus import EventBus
from realtime.tools import ToolHandler, ToolRegistration, call_tool_handler
from realtime.utils import (
    array_buffer_to_base64,
    empty_audio,
    merge_int16_arrays,
    to_int16_samples,
)


class _NotGiven:
    """Marker for session fields that were not passed to ``update_session``."""

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_GIVEN"


NOT_GIVEN: Any = _NotGiven()

DEFAULT_SESSION_CONFIG: dict[str, Any] = {
    "modalities": ["text", "audio"],
    "instructions": "",
    "voice": "verse",
    "input_audio_format": "pcm16",
    "output_audio_format": "pcm16",
    "input_audio_transcription": None,
    "turn_detection": None,
    "tools": [],
    "tool_choice": "auto",
    "temperature": 0.8,
    "max_response_output_tokens": 4096,
}

DEFAULT_SERVER_VAD_CONFIG: dict[str, Any] = {
    "type": "server_vad",
    "threshold": 0.5,
    "prefix_padding_ms": 300,
    "silence_duration_ms": 200,
}

TRANSCRIPTION_MODELS: list[dict[str, str]] = [{"model": "whisper-1"}]

# Reducer outputs forwarded as conversation.updated.
_UPDATE_EVENTS = (
    "conversation.item.truncated",
    "conversation.item.deleted",
    "conversation.item.input_audio_transcription.completed",
    "response.audio_transcript.delta",
    "response.audio.delta",
    "response.text.delta",
    "response.function_call_arguments.delta",
)

# Reducer-only events: tracked, never re-published.
_STATE_EVENTS = (
    "response.created",
    "response.output_item.added",
    "response.content_part.added",
)


class RealtimeClient(EventBus):
    """Client façade that keeps conversation state in sync with the server.

    Re-published events:
        ``realtime.event``: every raw client and server event.
        ``conversation.item.appended``: an item was created.
        ``conversation.item.completed``: an item reached ``completed``.
        ``conversation.updated``: an item changed; carries the delta.
        ``conversation.interrupted``: the server detected user speech.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        debug: bool = False,
    ) -> None:
        super().__init__()
        self.default_session_config = copy.deepcopy(DEFAULT_SESSION_CONFIG)
        self.default_server_vad_config = dict(DEFAULT_SERVER_VAD_CONFIG)
        self.transcription_models = [dict(model) for model in TRANSCRIPTION_MODELS]
        self.realtime_model = model or DEFAULT_MODEL
        self.realtime = RealtimeAPI(url=url, api_key=api_key, debug=debug)
        self.conversation = RealtimeConversation()
        self._tool_tasks: set[asyncio.Task] = set()
        self._reset_config()
        self._add_api_event_handlers()

    def _reset_config(self) -> None:
        for task in self._tool_tasks:
            task.cancel()
        self._tool_tasks = set()
        self.session_created = asyncio.Event()
        self.tools: dict[str, ToolRegistration] = {}
        self.session_config: dict[str, Any] = copy.deepcopy(self.default_session_config)
        self.input_audio_buffer: np.ndarray = empty_audio()

    def _add_api_event_handlers(self) -> None:
        self.realtime.on("client.*", lambda event: self._log_realtime_event("client", event))
        self.realtime.on("server.*", lambda event: self._log_realtime_event("server", event))
        self.realtime.on("server.session.created", self._on_session_created)
        self.realtime.on("server.session.updated", self._on_session_updated)

        for event_name in _STATE_EVENTS:
            self.realtime.on(f"server.{event_name}", self._process_event)
        for event_name in _UPDATE_EVENTS:
            self.realtime.on(f"server.{event_name}", self._process_event_with_dispatch)

        self.realtime.on("server.input_audio_buffer.speech_started", self._on_speech_started)
        self.realtime.on("server.input_audio_buffer.speech_stopped", self._on_speech_stopped)
        self.realtime.on("server.conversation.item.created", self._on_item_created)
        self.realtime.on("server.response.output_item.done", self._on_output_item_done)

    def _log_realtime_event(self, source: str, event: dict[str, Any]) -> None:
        self.dispatch(
            "realtime.event",
            {
                "time": datetime.now(timezone.utc).isoformat(),
                "source": source,
                "event": event,
            },
        )

    def _on_session_created(self, event: dict[str, Any]) -> None:
        log_session_update("session.created", event.get("session") or {})
        self.session_created.set()

    def _on_session_updated(self, event: dict[str, Any]) -> None:
        log_session_update("session.updated", event.get("session") or {})

    def _process_event(self, event: dict[str, Any], *args: Any) -> tuple[Item | None, Any]:
        return self.conversation.process_event(event, *args)

    def _process_event_with_dispatch(
        self, event: dict[str, Any], *args: Any
    ) -> tuple[Item | None, Any]:
        item, delta = self._process_event(event, *args)
        if item is not None:
            self.dispatch("conversation.updated", {"item": item, "delta": delta})
        return item, delta

    def _on_speech_started(self, event: dict[str, Any]) -> None:
        self._process_event(event)
        self.dispatch("conversation.interrupted")

    def _on_speech_stopped(self, event: dict[str, Any]) -> None:
        self._process_event(event, self.input_audio_buffer)

    def _on_item_created(self, event: dict[str, Any]) -> None:
        item, _ = self._process_event_with_dispatch(event)
        self.dispatch("conversation.item.appended", {"item": item})
        if item["status"] == "completed":
            self.dispatch("conversation.item.completed", {"item": item})

    def _on_output_item_done(self, event: dict[str, Any]) -> None:
        item, _ = self._process_event_with_dispatch(event)
        if item["status"] == "completed":
            self.dispatch("conversation.item.completed", {"item": item})
        tool = item["formatted"].get("tool")
        if tool:
            self._schedule_tool_call(tool)

    def _schedule_tool_call(self, tool: dict[str, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._call_tool(tool))
        self._tool_tasks.add(task)

        def _on_complete(done: asyncio.Task) -> None:
            self._tool_tasks.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                logger.warning("Failed to deliver tool output for %s: %s", tool.get("name"), exc)

        task.add_done_callback(_on_complete)
        return task

    async def _call_tool(self, tool: dict[str, Any]) -> None:
        name = tool.get("name")
        try:
            arguments = json.loads(tool["arguments"])
            registration = self.tools.get(name)
            if registration is None:
                raise ToolNotFoundError(f'Tool "{name}" has not been added')
            result = await call_tool_handler(registration.handler, arguments)
            log_tool_call(name, arguments, result)
            output = json.dumps(result)
        except Exception as exc:
            log_error(f"Error executing tool '{name}': {exc}")
            output = json.dumps({"error": str(exc)})
        self.realtime.send(
            "conversation.item.create",
            {
                "item": {
                    "type": "function_call_output",
                    "call_id": tool.get("call_id"),
                    "output": output,
                }
            },
        )
        self.create_response()

    def is_connected(self) -> bool:
        return self.realtime.is_connected()

    async def reset(self) -> None:
        """Disconnect and return the client to its freshly constructed state."""

        await self.disconnect()
        self.clear_event_handlers()
        self.realtime.clear_event_handlers()
        self._reset_config()
        self._add_api_event_handlers()

    async def connect(self) -> bool:
        """Connect to the server and push the current session configuration."""

        if self.is_connected():
            raise UsageError("Already connected, use disconnect() first")
        connected = await self.realtime.connect(self.realtime_model)
        if connected:
            self.update_session()
        return connected

    async def wait_for_session_created(self, timeout: float | None = None) -> bool:
        """Wait for ``session.created``; returns False if ``timeout`` elapses first."""

        if not self.is_connected():
            raise UsageError("Not connected, use connect() first")
        try:
            await asyncio.wait_for(self.session_created.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def disconnect(self) -> None:
        self.session_created.clear()
        if self.realtime.is_connected():
            await self.realtime.disconnect()
        self.conversation.clear()

    def get_turn_detection_type(self) -> str | None:
        turn_detection = self.session_config.get("turn_detection") or {}
        return turn_detection.get("type")

    def add_tool(self, definition: dict[str, Any], handler: ToolHandler) -> ToolRegistration:
        name = (definition or {}).get("name")
        if not name:
            raise UsageError("Missing tool name in definition")
        if name in self.tools:
            raise UsageError(
                f'Tool "{name}" already added. Please use remove_tool("{name}") before '
                "trying to add again."
            )
        if not callable(handler):
            raise UsageError(f'Tool "{name}" handler must be callable')
        if any(tool.get("name") == name for tool in self.session_config.get("tools") or []):
            raise UsageError(f'Tool "{name}" has already been defined in the session config')
        self.tools[name] = ToolRegistration(definition=dict(definition), handler=handler)
        self.update_session()
        return self.tools[name]

    def remove_tool(self, name: str) -> None:
        if name not in self.tools:
            raise ToolNotFoundError(f'Tool "{name}" does not exist, can not be removed.')
        del self.tools[name]

    def delete_item(self, item_id: str) -> None:
        self.realtime.send("conversation.item.delete", {"item_id": item_id})

    def update_session(
        self,
        *,
        modalities: list[str] | None = NOT_GIVEN,
        instructions: str | None = NOT_GIVEN,
        voice: str | None = NOT_GIVEN,
        input_audio_format: str | None = NOT_GIVEN,
        output_audio_format: str | None = NOT_GIVEN,
        input_audio_transcription: dict[str, Any] | None = NOT_GIVEN,
        turn_detection: dict[str, Any] | None = NOT_GIVEN,
        tools: list[dict[str, Any]] | None = NOT_GIVEN,
        tool_choice: str | dict[str, Any] | None = NOT_GIVEN,
        temperature: float | None = NOT_GIVEN,
        max_response_output_tokens: int | str | None = NOT_GIVEN,
    ) -> dict[str, Any]:
        """Merge the given fields into the session and send it when connected.

        Fields left as ``NOT_GIVEN`` keep their current value; ``None`` clears
        a field. Tool definitions passed here are kept in the session config
        and combined with every registered tool.

        Returns:
            The session payload that was (or will be) sent.
        """

        updates = {
            "modalities": modalities,
            "instructions": instructions,
            "voice": voice,
            "input_audio_format": input_audio_format,
            "output_audio_format": output_audio_format,
            "input_audio_transcription": input_audio_transcription,
            "turn_detection": turn_detection,
            "tools": tools,
            "tool_choice": tool_choice,
            "temperature": temperature,
            "max_response_output_tokens": max_response_output_tokens,
        }
        explicit_tools = self._merge_tool_definitions(
            self.session_config.get("tools") if tools is NOT_GIVEN else tools
        )
        for key, value in updates.items():
            if value is not NOT_GIVEN:
                self.session_config[key] = value

        session = dict(self.session_config)
        session["tools"] = explicit_tools + [
            registration.session_definition() for registration in self.tools.values()
        ]
        if self.realtime.is_connected():
            self.realtime.send("session.update", {"session": session})
            log_session_update("session.update", session)
        return session

    def _merge_tool_definitions(
        self, definitions: Iterable[dict[str, Any]] | None
    ) -> list[dict[str, Any]]:
        merged: list[dict[str, Any]] = []
        for tool_definition in definitions or []:
            definition = {"type": "function", **tool_definition}
            if definition.get("name") in self.tools:
                raise UsageError(f'Tool "{definition.get("name")}" has already been defined')
            merged.append(definition)
        return merged

    def send_user_message_content(self, content: list[dict[str, Any]] | None = None) -> None:
        """Send a user message (when ``content`` is non-empty) and request a response."""

        if content:
            parts = []
            for part in content:
                part = dict(part)
                if part.get("type") == "input_audio" and not isinstance(part.get("audio"), str):
                    part["audio"] = array_buffer_to_base64(part["audio"])
                parts.append(part)
            self.realtime.send(
                "conversation.item.create",
                {"item": {"type": "message", "role": "user", "content": parts}},
            )
        self.create_response()

    def append_input_audio(self, audio: Any) -> None:
        """Stream PCM16 (or float) samples to the server input buffer."""

        samples = to_int16_samples(audio)
        if samples.size > 0:
            self.realtime.send(
                "input_audio_buffer.append",
                {"audio": array_buffer_to_base64(samples)},
            )
            self.input_audio_buffer = merge_int16_arrays(self.input_audio_buffer, samples)

    def create_response(self) -> None:
        """Request a model response, committing buffered audio in manual mode."""

        if self.get_turn_detection_type() is None and self.input_audio_buffer.size > 0:
            self.realtime.send("input_audio_buffer.commit")
            self.conversation.queue_input_audio(self.input_audio_buffer)
            self.input_audio_buffer = empty_audio()
        self.realtime.send("response.create")

    def cancel_response(self, item_id: str | None = None, sample_count: int = 0) -> Item | None:
        """Cancel the in-flight response and optionally truncate its audio.

        Args:
            item_id: Assistant message being played back. When omitted only a
                ``response.cancel`` is sent.
            sample_count: Samples already played; audio past this point is
                truncated on the server.

        Returns:
            The truncated item, or None when no ``item_id`` was given.
        """

        if not item_id:
            self.realtime.send("response.cancel")
            return None
        item = self.conversation.get_item(item_id)
        if item is None:
            raise UsageError(f'Could not find item "{item_id}"')
        if item.get("type") != "message":
            raise UsageError('Can only cancel_response messages with type "message"')
        if item.get("role") != "assistant":
            raise UsageError('Can only cancel_response messages with role "assistant"')
        audio_index = next(
            (
                index
                for index, part in enumerate(item.get("content") or [])
                if part.get("type") == "audio"
            ),
            None,
        )
        if audio_index is None:
            raise UsageError("Could not find audio on item to cancel")
        self.realtime.send("response.cancel")
        self.realtime.send(
            "conversation.item.truncate",
            {
                "item_id": item_id,
                "content_index": audio_index,
                "audio_end_ms": int(sample_count * 1000 // self.conversation.default_frequency),
            },
        )
        return item

    async def wait_for_next_item(self, timeout: float | None = None) -> Item | None:
        event = await self.wait_for_next("conversation.item.appended", timeout)
        return event["item"] if event else None

    async def wait_for_next_completed_item(self, timeout: float | None = None) -> Item | None:
        event = await self.wait_for_next("conversation.item.completed", timeout)
        return event["item"] if event else None
