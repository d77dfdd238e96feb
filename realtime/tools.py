"""Tool registrations and built-in tools for realtime sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

if TYPE_CHECKING:
    from realtime.client import RealtimeClient


ToolHandler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ToolRegistration:
    """A tool definition paired with the handler that executes it."""

    definition: dict[str, Any]
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition["name"]

    def session_definition(self) -> dict[str, Any]:
        return {"type": "function", **self.definition}


async def call_tool_handler(handler: ToolHandler, arguments: dict[str, Any]) -> Any:
    """Run a sync or async tool handler with parsed arguments."""

    result = handler(arguments)
    if inspect.isawaitable(result):
        result = await result
    return result


function_map: dict[str, ToolHandler] = {}

tools: list[dict[str, Any]] = []


async def get_current_time(arguments: dict[str, Any]) -> dict[str, Any]:
    """Return the current time, in UTC unless an offset is supplied."""

    offset_minutes = int(arguments.get("utc_offset_minutes") or 0)
    now = datetime.now(timezone.utc)
    if offset_minutes:
        now = now.astimezone(timezone(timedelta(minutes=offset_minutes)))
    return {
        "iso": now.isoformat(timespec="seconds"),
        "weekday": now.strftime("%A"),
        "utc_offset_minutes": offset_minutes,
    }


tools.append(
    {
        "name": "get_current_time",
        "description": (
            "Fetch the current date and time. Pass utc_offset_minutes to get the "
            "local time for a known timezone offset."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "utc_offset_minutes": {
                    "type": "integer",
                    "description": "Offset from UTC in minutes, e.g. 120 for UTC+2.",
                },
            },
            "required": [],
        },
    }
)

function_map["get_current_time"] = get_current_time


def register_builtin_tools(client: RealtimeClient) -> list[ToolRegistration]:
    """Add every built-in tool to ``client`` and return the registrations."""

    return [client.add_tool(definition, function_map[definition["name"]]) for definition in tools]
