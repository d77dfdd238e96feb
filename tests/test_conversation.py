"""Tests for the conversation reducer."""

from __future__ import annotations

import base64
import itertools

import numpy as np
import pytest

from realtime.conversation import HANDLED_EVENT_TYPES, RealtimeConversation
from realtime.errors import ProtocolError

_ids = itertools.count(1)


def _event(event_type: str, **payload):
    return {"event_id": f"event_{next(_ids)}", "type": event_type, **payload}


def _pcm_delta(samples) -> str:
    return base64.b64encode(np.asarray(samples, dtype=np.int16).tobytes()).decode("utf-8")


def _assistant_message(conversation: RealtimeConversation, item_id: str = "item_1") -> dict:
    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={"id": item_id, "type": "message", "role": "assistant", "content": []},
        )
    )
    conversation.process_event(
        _event(
            "response.content_part.added",
            item_id=item_id,
            part={"type": "audio", "transcript": ""},
        )
    )
    return item


def test_processors_cover_every_handled_event_type() -> None:
    conversation = RealtimeConversation()

    assert set(conversation._processors) == set(HANDLED_EVENT_TYPES)


def test_event_without_id_or_type_is_rejected() -> None:
    conversation = RealtimeConversation()

    with pytest.raises(ProtocolError):
        conversation.process_event({"type": "response.created"})
    with pytest.raises(ProtocolError):
        conversation.process_event({"event_id": "event_x"})


def test_unknown_event_type_is_rejected() -> None:
    conversation = RealtimeConversation()

    with pytest.raises(ProtocolError, match="session.created"):
        conversation.process_event(_event("session.created"))


def test_item_created_copies_server_item() -> None:
    conversation = RealtimeConversation()
    raw_item = {"id": "item_1", "type": "message", "role": "assistant", "content": []}

    item, delta = conversation.process_event(_event("conversation.item.created", item=raw_item))

    assert delta is None
    assert item is not raw_item
    assert "formatted" not in raw_item
    assert item["status"] == "in_progress"
    assert item["formatted"]["text"] == ""
    assert item["formatted"]["audio"].size == 0
    assert conversation.get_item("item_1") is item
    assert conversation.get_items() == [item]


def test_user_message_is_completed_and_collects_text() -> None:
    conversation = RealtimeConversation()

    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={
                "id": "item_user",
                "type": "message",
                "role": "user",
                "content": [
                    {"type": "input_text", "text": "Hello "},
                    {"type": "input_text", "text": "there"},
                ],
            },
        )
    )

    assert item["status"] == "completed"
    assert item["formatted"]["text"] == "Hello there"


def test_user_message_adopts_committed_input_audio() -> None:
    conversation = RealtimeConversation()
    committed = np.array([1, 2, 3], dtype=np.int16)
    conversation.queue_input_audio(committed)

    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={"id": "item_user", "type": "message", "role": "user", "content": []},
        )
    )

    assert np.array_equal(item["formatted"]["audio"], committed)
    assert conversation.queued_input_audio is None


def test_function_call_item_gets_tool_descriptor() -> None:
    conversation = RealtimeConversation()

    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={
                "id": "item_fc",
                "type": "function_call",
                "name": "get_weather",
                "call_id": "call_1",
            },
        )
    )
    conversation.process_event(
        _event("response.function_call_arguments.delta", item_id="item_fc", delta='{"city":')
    )
    _, delta = conversation.process_event(
        _event("response.function_call_arguments.delta", item_id="item_fc", delta='"Lyon"}')
    )

    assert item["status"] == "in_progress"
    assert item["formatted"]["tool"] == {
        "type": "function",
        "name": "get_weather",
        "call_id": "call_1",
        "arguments": '{"city":"Lyon"}',
    }
    assert item["arguments"] == '{"city":"Lyon"}'
    assert delta == {"arguments": '"Lyon"}'}


def test_arguments_delta_on_plain_message_is_rejected() -> None:
    conversation = RealtimeConversation()
    _assistant_message(conversation)

    with pytest.raises(ProtocolError):
        conversation.process_event(
            _event("response.function_call_arguments.delta", item_id="item_1", delta="{}")
        )


def test_function_call_output_item_is_completed() -> None:
    conversation = RealtimeConversation()

    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={
                "id": "item_out",
                "type": "function_call_output",
                "call_id": "call_1",
                "output": '{"temp": 21}',
            },
        )
    )

    assert item["status"] == "completed"
    assert item["formatted"]["output"] == '{"temp": 21}'


def test_audio_deltas_accumulate_in_order() -> None:
    conversation = RealtimeConversation()
    item = _assistant_message(conversation)

    conversation.process_event(
        _event("response.audio.delta", item_id="item_1", delta=_pcm_delta([1, 2, 3]))
    )
    _, delta = conversation.process_event(
        _event("response.audio.delta", item_id="item_1", delta=_pcm_delta([4, 5]))
    )

    assert item["formatted"]["audio"].tolist() == [1, 2, 3, 4, 5]
    assert delta["audio"].tolist() == [4, 5]


def test_transcript_and_text_deltas_update_part_and_formatted() -> None:
    conversation = RealtimeConversation()
    item = _assistant_message(conversation)
    conversation.process_event(
        _event("response.content_part.added", item_id="item_1", part={"type": "text", "text": ""})
    )

    conversation.process_event(
        _event("response.audio_transcript.delta", item_id="item_1", content_index=0, delta="Hi")
    )
    _, delta = conversation.process_event(
        _event("response.text.delta", item_id="item_1", content_index=1, delta="Hey")
    )

    assert item["content"][0]["transcript"] == "Hi"
    assert item["content"][1]["text"] == "Hey"
    assert item["formatted"]["transcript"] == "Hi"
    assert item["formatted"]["text"] == "Hey"
    assert delta == {"text": "Hey"}


def test_truncation_cuts_audio_and_clears_transcript() -> None:
    conversation = RealtimeConversation()
    item = _assistant_message(conversation)
    conversation.process_event(
        _event("response.audio.delta", item_id="item_1", delta=_pcm_delta(np.ones(48000)))
    )
    conversation.process_event(
        _event("response.audio_transcript.delta", item_id="item_1", content_index=0, delta="Hi")
    )

    conversation.process_event(
        _event("conversation.item.truncated", item_id="item_1", content_index=0, audio_end_ms=1250)
    )

    assert item["formatted"]["audio"].size == 30000
    assert item["formatted"]["transcript"] == ""


def test_truncating_unknown_item_is_rejected() -> None:
    conversation = RealtimeConversation()

    with pytest.raises(ProtocolError):
        conversation.process_event(
            _event("conversation.item.truncated", item_id="missing", audio_end_ms=10)
        )


def test_item_deleted_removes_from_list_and_lookup() -> None:
    conversation = RealtimeConversation()
    _assistant_message(conversation, "item_1")
    keep = _assistant_message(conversation, "item_2")

    item, _ = conversation.process_event(_event("conversation.item.deleted", item_id="item_1"))

    assert item["id"] == "item_1"
    assert conversation.get_item("item_1") is None
    assert conversation.get_items() == [keep]
    with pytest.raises(ProtocolError):
        conversation.process_event(_event("conversation.item.deleted", item_id="item_1"))


def test_transcription_before_item_is_queued() -> None:
    conversation = RealtimeConversation()

    result = conversation.process_event(
        _event(
            "conversation.item.input_audio_transcription.completed",
            item_id="item_user",
            content_index=0,
            transcript="Bonjour",
        )
    )
    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={
                "id": "item_user",
                "type": "message",
                "role": "user",
                "content": [{"type": "input_audio", "transcript": None}],
            },
        )
    )

    assert result == (None, None)
    assert item["formatted"]["transcript"] == "Bonjour"
    assert conversation.queued_transcript_items == {}


def test_empty_transcription_is_shown_as_space() -> None:
    conversation = RealtimeConversation()
    conversation.process_event(
        _event(
            "conversation.item.input_audio_transcription.completed",
            item_id="item_user",
            content_index=0,
            transcript="",
        )
    )

    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={"id": "item_user", "type": "message", "role": "user", "content": []},
        )
    )

    assert item["formatted"]["transcript"] == " "


def test_transcription_after_item_updates_content() -> None:
    conversation = RealtimeConversation()
    conversation.process_event(
        _event(
            "conversation.item.created",
            item={
                "id": "item_user",
                "type": "message",
                "role": "user",
                "content": [{"type": "input_audio", "transcript": None}],
            },
        )
    )

    item, delta = conversation.process_event(
        _event(
            "conversation.item.input_audio_transcription.completed",
            item_id="item_user",
            content_index=0,
            transcript="Salut",
        )
    )

    assert item["content"][0]["transcript"] == "Salut"
    assert item["formatted"]["transcript"] == "Salut"
    assert delta == {"transcript": "Salut"}


def test_speech_window_slices_input_buffer_for_new_item() -> None:
    conversation = RealtimeConversation()
    input_audio = np.arange(48000, dtype=np.int16)

    conversation.process_event(
        _event("input_audio_buffer.speech_started", item_id="item_user", audio_start_ms=500)
    )
    conversation.process_event(
        _event("input_audio_buffer.speech_stopped", item_id="item_user", audio_end_ms=1000),
        input_audio,
    )
    item, _ = conversation.process_event(
        _event(
            "conversation.item.created",
            item={"id": "item_user", "type": "message", "role": "user", "content": []},
        )
    )

    assert np.array_equal(item["formatted"]["audio"], input_audio[12000:24000])
    assert conversation.queued_speech_items == {}


def test_speech_stopped_without_start_yields_empty_window() -> None:
    conversation = RealtimeConversation()

    conversation.process_event(
        _event("input_audio_buffer.speech_stopped", item_id="item_user", audio_end_ms=800),
        np.arange(48000, dtype=np.int16),
    )

    speech = conversation.queued_speech_items["item_user"]
    assert speech["audio_start_ms"] == 800
    assert speech["audio"].size == 0


def test_response_created_is_idempotent() -> None:
    conversation = RealtimeConversation()

    conversation.process_event(_event("response.created", response={"id": "resp_1"}))
    conversation.process_event(_event("response.created", response={"id": "resp_1"}))
    conversation.process_event(
        _event("response.output_item.added", response_id="resp_1", item={"id": "item_1"})
    )

    assert len(conversation.responses) == 1
    assert conversation.get_response("resp_1")["output"] == ["item_1"]


def test_output_item_added_for_unknown_response_is_rejected() -> None:
    conversation = RealtimeConversation()

    with pytest.raises(ProtocolError):
        conversation.process_event(
            _event("response.output_item.added", response_id="missing", item={"id": "item_1"})
        )


def test_output_item_done_copies_status() -> None:
    conversation = RealtimeConversation()
    item = _assistant_message(conversation)

    found, _ = conversation.process_event(
        _event("response.output_item.done", item={"id": "item_1", "status": "completed"})
    )

    assert found is item
    assert item["status"] == "completed"
    with pytest.raises(ProtocolError):
        conversation.process_event(_event("response.output_item.done"))


def test_clear_drops_all_state() -> None:
    conversation = RealtimeConversation()
    _assistant_message(conversation)
    conversation.process_event(_event("response.created", response={"id": "resp_1"}))
    conversation.queue_input_audio(np.array([1], dtype=np.int16))

    conversation.clear()

    assert conversation.get_items() == []
    assert conversation.responses == []
    assert conversation.queued_input_audio is None
