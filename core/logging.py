"""Logging utilities for realtime events and session updates."""

from __future__ import annotations

import atexit
import hashlib
import json
import logging
import logging.handlers
import os
from pathlib import Path
import queue
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

LOGGER_NAME = "realtime"

console = Console(stderr=True)


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(rich_tracebacks=True, console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


logger = setup_logging()

_queue_listener: logging.handlers.QueueListener | None = None
_queue_handler: logging.Handler | None = None
_file_log_path: Path | None = None
_atexit_registered = False


def set_level(level_name: str) -> None:
    logger.setLevel(logging._nameToLevel.get((level_name or "").upper(), logging.INFO))


def _shutdown_file_logging() -> None:
    global _queue_listener, _queue_handler, _file_log_path

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None
    if _queue_handler is not None:
        logger.removeHandler(_queue_handler)
        _queue_handler = None
    _file_log_path = None


def enable_file_logging(log_path: Path) -> None:
    """Mirror realtime logs into ``log_path`` through a background queue."""

    global _queue_listener, _queue_handler, _file_log_path, _atexit_registered

    log_path = Path(log_path).expanduser()
    if _file_log_path == log_path and _queue_listener is not None:
        return

    _shutdown_file_logging()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )

    log_queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    _queue_handler = logging.handlers.QueueHandler(log_queue)
    logger.addHandler(_queue_handler)

    _queue_listener = logging.handlers.QueueListener(
        log_queue,
        file_handler,
        respect_handler_level=True,
    )
    _queue_listener.start()
    _file_log_path = log_path

    if not _atexit_registered:
        atexit.register(_shutdown_file_logging)
        _atexit_registered = True


def disable_file_logging() -> None:
    _shutdown_file_logging()


def _format_text(message: str, style: str) -> Text:
    return Text(message, style=style)


SPAMMY_EVENTS = {
    "input_audio_buffer.append",
    "response.audio.delta",
    "response.audio_transcript.delta",
    "response.text.delta",
    "response.function_call_arguments.delta",
}

EVENT_EMOJIS = {
    "session.update": "🛠️",
    "session.created": "🔌",
    "session.updated": "🔄",
    "input_audio_buffer.commit": "✅",
    "input_audio_buffer.clear": "🧹",
    "input_audio_buffer.speech_started": "🗣️",
    "input_audio_buffer.speech_stopped": "🤫",
    "input_audio_buffer.committed": "📨",
    "input_audio_buffer.cleared": "🧹",
    "conversation.item.create": "📝",
    "conversation.item.created": "📥",
    "conversation.item.truncate": "✂️",
    "conversation.item.truncated": "✂️",
    "conversation.item.delete": "🗑️",
    "conversation.item.deleted": "🗑️",
    "conversation.item.input_audio_transcription.completed": "📝",
    "conversation.item.input_audio_transcription.failed": "⚠️",
    "response.create": "➡️",
    "response.created": "📝",
    "response.cancel": "⛔",
    "response.output_item.added": "➕",
    "response.output_item.done": "✅",
    "response.content_part.added": "➕",
    "response.content_part.done": "✅",
    "response.text.done": "📝",
    "response.audio.done": "🔇",
    "response.audio_transcript.done": "📝",
    "response.function_call_arguments.done": "📥",
    "response.done": "✔️ ",
    "rate_limits.updated": "⏳",
    "error": "❌",
}


def log_ws_event(direction: str, event: dict[str, Any]) -> None:
    event_type = event.get("type", "Unknown")
    if event_type in SPAMMY_EVENTS:
        return

    emoji = EVENT_EMOJIS.get(event_type, "❓")
    icon = "⬆️ - Out" if direction == "Outgoing" else "⬇️ - In"
    style = "bold cyan" if direction == "Outgoing" else "bold green"
    logger.info(_format_text(f"{emoji} {icon} {event_type}", style=style))


def log_tool_call(function_name: str, args: Any, result: Any) -> None:
    logger.info(_format_text(f"🛠️ Calling function: {function_name} with args: {args}", "bold magenta"))
    logger.info(_format_text(f"🛠️ Function call result: {result}", "bold yellow"))


def log_error(message: str) -> None:
    logger.error(_format_text(message, style="bold red"))


def log_info(message: str, style: str = "bold white") -> None:
    logger.info(_format_text(message, style=style))


def log_warning(message: str) -> None:
    logger.warning(_format_text(message, style="bold yellow"))


MAX_STR = 38
MAX_LIST = 60
REDACT_KEYS = {"event_id", "id"}
NO_TRUNCATE_KEYS = {"instructions"}

DEBUG_FULL_PAYLOAD = bool(int(os.getenv("REALTIME_LOG_SESSION_FULL", "0")))


def _truncate_str(s: str, max_len: int = MAX_STR) -> str:
    if len(s) <= max_len:
        return s
    return s[: max_len - 1] + "…"


def _first_line(s: str, max_len: int = 160) -> str:
    if not s:
        return ""
    return _truncate_str(s.strip().splitlines()[0], max_len)


def _normalize_for_log(obj: Any, *, _key: str | None = None) -> Any:
    if isinstance(obj, str):
        if _key in NO_TRUNCATE_KEYS:
            return obj
        return _truncate_str(obj)

    if isinstance(obj, list):
        if len(obj) > MAX_LIST:
            obj = obj[:MAX_LIST] + [f"… ({len(obj) - MAX_LIST} more)"]
        return [_normalize_for_log(x) for x in obj]

    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k in sorted(obj.keys(), key=str):
            v = obj[k]
            if k in REDACT_KEYS and isinstance(v, str):
                out[k] = "<redacted>"
            else:
                out[k] = _normalize_for_log(v, _key=k)
        return out

    return obj


def summarize_session(session: dict[str, Any]) -> dict[str, Any]:
    """Return a compact, log-friendly view of a flat session payload."""

    instructions = session.get("instructions") or ""
    turn = session.get("turn_detection") or {}
    tool_names = [
        tool["name"]
        for tool in session.get("tools") or []
        if isinstance(tool, dict) and tool.get("name")
    ]
    return {
        "modalities": session.get("modalities"),
        "voice": session.get("voice"),
        "audio": f"{session.get('input_audio_format')}/{session.get('output_audio_format')}",
        "vad": {
            "type": turn.get("type"),
            "threshold": turn.get("threshold"),
            "prefix_padding_ms": turn.get("prefix_padding_ms"),
            "silence_duration_ms": turn.get("silence_duration_ms"),
        },
        "tool_choice": session.get("tool_choice"),
        "temperature": session.get("temperature"),
        "max_response_output_tokens": session.get("max_response_output_tokens"),
        "tools": {"count": len(tool_names), "names": tool_names},
        "instructions_digest": {
            "len": len(instructions),
            "sha256": hashlib.sha256(instructions.encode("utf-8")).hexdigest()[:12],
            "preview": _first_line(instructions),
        },
    }


def _headline(summary: dict[str, Any]) -> str:
    vad = summary.get("vad") or {}
    instr = summary.get("instructions_digest") or {}
    tools = summary.get("tools") or {}
    return (
        "SESSION | "
        f"voice={summary.get('voice')} | "
        f"vad={vad.get('type')}(th={vad.get('threshold')},pre={vad.get('prefix_padding_ms')},"
        f"sil={vad.get('silence_duration_ms')}) | "
        f"tools={tools.get('count')} | "
        f"instr={instr.get('sha256')} ({instr.get('len')})"
    )


def log_session_update(
    event_type: str,
    session: dict[str, Any],
    *,
    full_payload: bool | None = None,
) -> None:
    """Log a headline and summary for a session update or server session event."""

    if full_payload is None:
        full_payload = DEBUG_FULL_PAYLOAD

    summary = summarize_session(session)
    logger.info("%s %s", event_type, _headline(summary))
    logger.debug(json.dumps(_normalize_for_log(summary), indent=2, ensure_ascii=False))

    if full_payload:
        logger.info(json.dumps(_normalize_for_log(session), indent=2, ensure_ascii=False))
