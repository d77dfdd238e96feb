"""Conversation state rebuilt from the realtime server event stream."""

from __future__ import annotations

import copy
from typing import Any, Callable

import numpy as np

from core.logging import logger
from realtime.errors import ProtocolError
from realtime.utils import (
    DEFAULT_SAMPLE_RATE,
    PCM16,
    base64_to_array_buffer,
    empty_audio,
    merge_int16_arrays,
    ms_to_sample_index,
)

Item = dict[str, Any]
Delta = dict[str, Any]
ProcessResult = tuple[Item | None, Delta | None]

HANDLED_EVENT_TYPES = (
    "conversation.item.created",
    "conversation.item.truncated",
    "conversation.item.deleted",
    "conversation.item.input_audio_transcription.completed",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
    "response.created",
    "response.output_item.added",
    "response.output_item.done",
    "response.content_part.added",
    "response.audio_transcript.delta",
    "response.audio.delta",
    "response.text.delta",
    "response.function_call_arguments.delta",
)


class RealtimeConversation:
    """Item and response tables folded from server events.

    Every processor returns ``(item, delta)`` where ``item`` is the affected
    item (or ``None``) and ``delta`` holds only the fragment that was added.
    Items are owned by the conversation; callers should treat them as
    read-only.
    """

    default_frequency = DEFAULT_SAMPLE_RATE

    def __init__(self) -> None:
        self._processors: dict[str, Callable[..., ProcessResult]] = {
            "conversation.item.created": self._item_created,
            "conversation.item.truncated": self._item_truncated,
            "conversation.item.deleted": self._item_deleted,
            "conversation.item.input_audio_transcription.completed": (
                self._input_audio_transcription_completed
            ),
            "input_audio_buffer.speech_started": self._speech_started,
            "input_audio_buffer.speech_stopped": self._speech_stopped,
            "response.created": self._response_created,
            "response.output_item.added": self._output_item_added,
            "response.output_item.done": self._output_item_done,
            "response.content_part.added": self._content_part_added,
            "response.audio_transcript.delta": self._audio_transcript_delta,
            "response.audio.delta": self._audio_delta,
            "response.text.delta": self._text_delta,
            "response.function_call_arguments.delta": self._function_call_arguments_delta,
        }
        mismatched = set(HANDLED_EVENT_TYPES) ^ set(self._processors)
        if mismatched:
            raise RuntimeError(f"Conversation processors out of sync: {sorted(mismatched)}")
        self.clear()

    def clear(self) -> None:
        self.item_lookup: dict[str, Item] = {}
        self.items: list[Item] = []
        self.response_lookup: dict[str, dict[str, Any]] = {}
        self.responses: list[dict[str, Any]] = []
        self.queued_speech_items: dict[str, dict[str, Any]] = {}
        self.queued_transcript_items: dict[str, dict[str, str]] = {}
        self.queued_input_audio: np.ndarray | None = None

    def queue_input_audio(self, input_audio: np.ndarray) -> np.ndarray:
        """Hold committed input audio for the next user message item."""

        self.queued_input_audio = input_audio
        return input_audio

    def process_event(self, event: dict[str, Any], *args: Any) -> ProcessResult:
        if not event.get("event_id"):
            logger.error("Server event without event_id: %s", event)
            raise ProtocolError('Missing "event_id" on event')
        if not event.get("type"):
            logger.error("Server event without type: %s", event)
            raise ProtocolError('Missing "type" on event')
        processor = self._processors.get(event["type"])
        if processor is None:
            raise ProtocolError(f'Missing conversation event processor for "{event["type"]}"')
        return processor(event, *args)

    def get_item(self, item_id: str) -> Item | None:
        return self.item_lookup.get(item_id)

    def get_items(self) -> list[Item]:
        return list(self.items)

    def get_response(self, response_id: str) -> dict[str, Any] | None:
        return self.response_lookup.get(response_id)

    def _require_item(self, event_name: str, item_id: str) -> Item:
        item = self.item_lookup.get(item_id)
        if item is None:
            raise ProtocolError(f'{event_name}: Item "{item_id}" not found')
        return item

    def _item_created(self, event: dict[str, Any]) -> ProcessResult:
        new_item = copy.deepcopy(event["item"])
        if new_item["id"] not in self.item_lookup:
            self.item_lookup[new_item["id"]] = new_item
            self.items.append(new_item)

        formatted: dict[str, Any] = {
            "audio": empty_audio(),
            "text": "",
            "transcript": "",
        }
        new_item["formatted"] = formatted

        queued_speech = self.queued_speech_items.pop(new_item["id"], None)
        if queued_speech is not None and "audio" in queued_speech:
            formatted["audio"] = queued_speech["audio"]

        for content in new_item.get("content") or []:
            if content.get("type") in ("text", "input_text"):
                formatted["text"] += content.get("text", "")

        queued_transcript = self.queued_transcript_items.pop(new_item["id"], None)
        if queued_transcript is not None:
            formatted["transcript"] = queued_transcript["transcript"]

        item_type = new_item.get("type")
        if item_type == "message":
            if new_item.get("role") == "user":
                new_item["status"] = "completed"
                if self.queued_input_audio is not None:
                    formatted["audio"] = self.queued_input_audio
                    self.queued_input_audio = None
            else:
                new_item["status"] = "in_progress"
        elif item_type == "function_call":
            formatted["tool"] = {
                "type": "function",
                "name": new_item.get("name"),
                "call_id": new_item.get("call_id"),
                "arguments": "",
            }
            new_item["status"] = "in_progress"
        elif item_type == "function_call_output":
            new_item["status"] = "completed"
            formatted["output"] = new_item.get("output")
        return new_item, None

    def _item_truncated(self, event: dict[str, Any]) -> ProcessResult:
        item = self._require_item("item.truncated", event["item_id"])
        end_index = ms_to_sample_index(event["audio_end_ms"], self.default_frequency)
        item["formatted"]["transcript"] = ""
        item["formatted"]["audio"] = item["formatted"]["audio"][:end_index]
        return item, None

    def _item_deleted(self, event: dict[str, Any]) -> ProcessResult:
        item = self._require_item("item.deleted", event["item_id"])
        del self.item_lookup[item["id"]]
        for index, candidate in enumerate(self.items):
            if candidate is item:
                del self.items[index]
                break
        return item, None

    def _input_audio_transcription_completed(self, event: dict[str, Any]) -> ProcessResult:
        item_id = event["item_id"]
        transcript = event.get("transcript") or ""
        formatted_transcript = transcript or " "
        item = self.item_lookup.get(item_id)
        if item is None:
            # Transcription can finish before the item reaches us.
            self.queued_transcript_items[item_id] = {"transcript": formatted_transcript}
            return None, None
        item["content"][event["content_index"]]["transcript"] = transcript
        item["formatted"]["transcript"] = formatted_transcript
        return item, {"transcript": transcript}

    def _speech_started(self, event: dict[str, Any]) -> ProcessResult:
        self.queued_speech_items[event["item_id"]] = {
            "audio_start_ms": event["audio_start_ms"],
        }
        return None, None

    def _speech_stopped(
        self,
        event: dict[str, Any],
        input_audio_buffer: np.ndarray | None = None,
    ) -> ProcessResult:
        item_id = event["item_id"]
        audio_end_ms = event["audio_end_ms"]
        speech = self.queued_speech_items.setdefault(item_id, {"audio_start_ms": audio_end_ms})
        speech["audio_end_ms"] = audio_end_ms
        if input_audio_buffer is not None:
            start_index = ms_to_sample_index(speech["audio_start_ms"], self.default_frequency)
            end_index = ms_to_sample_index(speech["audio_end_ms"], self.default_frequency)
            speech["audio"] = input_audio_buffer[start_index:end_index].copy()
        return None, None

    def _response_created(self, event: dict[str, Any]) -> ProcessResult:
        response = event["response"]
        if response["id"] not in self.response_lookup:
            response.setdefault("output", [])
            self.response_lookup[response["id"]] = response
            self.responses.append(response)
        return None, None

    def _output_item_added(self, event: dict[str, Any]) -> ProcessResult:
        response_id = event["response_id"]
        response = self.response_lookup.get(response_id)
        if response is None:
            raise ProtocolError(f'response.output_item.added: Response "{response_id}" not found')
        response["output"].append(event["item"]["id"])
        return None, None

    def _output_item_done(self, event: dict[str, Any]) -> ProcessResult:
        item = event.get("item")
        if not item:
            raise ProtocolError('response.output_item.done: Missing "item"')
        found_item = self._require_item("response.output_item.done", item["id"])
        found_item["status"] = item.get("status")
        return found_item, None

    def _content_part_added(self, event: dict[str, Any]) -> ProcessResult:
        item = self._require_item("response.content_part.added", event["item_id"])
        item.setdefault("content", []).append(event["part"])
        return item, None

    def _audio_transcript_delta(self, event: dict[str, Any]) -> ProcessResult:
        item = self._require_item("response.audio_transcript.delta", event["item_id"])
        delta = event["delta"]
        part = item["content"][event["content_index"]]
        part["transcript"] = part.get("transcript", "") + delta
        item["formatted"]["transcript"] += delta
        return item, {"transcript": delta}

    def _audio_delta(self, event: dict[str, Any]) -> ProcessResult:
        item = self._require_item("response.audio.delta", event["item_id"])
        append_values = np.frombuffer(base64_to_array_buffer(event["delta"]), dtype=PCM16)
        item["formatted"]["audio"] = merge_int16_arrays(item["formatted"]["audio"], append_values)
        return item, {"audio": append_values}

    def _text_delta(self, event: dict[str, Any]) -> ProcessResult:
        item = self._require_item("response.text.delta", event["item_id"])
        delta = event["delta"]
        part = item["content"][event["content_index"]]
        part["text"] = part.get("text", "") + delta
        item["formatted"]["text"] += delta
        return item, {"text": delta}

    def _function_call_arguments_delta(self, event: dict[str, Any]) -> ProcessResult:
        item = self._require_item("response.function_call_arguments.delta", event["item_id"])
        tool = item["formatted"].get("tool")
        if tool is None:
            raise ProtocolError(
                f'response.function_call_arguments.delta: Item "{item["id"]}" is not a function call'
            )
        delta = event["delta"]
        item["arguments"] = item.get("arguments", "") + delta
        tool["arguments"] += delta
        return item, {"arguments": delta}
