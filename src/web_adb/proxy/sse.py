"""Server-Sent Events encoding."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger()

SSE_MEDIA_TYPE = "text/event-stream"


@dataclass
class ServerSentEvent:
    comment: str = ""
    name: str = ""
    data: str = ""


def _prefixed_lines(prefix: str, text: str) -> str:
    """Write each line of text on its own line as '<prefix> <line>'.

    With prefix "data:", '{"one": 1,\\n "two": 2}' becomes

        data: {"one": 1,
        data:  "two": 2}
    """
    return "".join(f"{prefix} {line}\n" for line in text.splitlines())


def format_event(event: ServerSentEvent) -> str:
    parts: list[str] = []
    if event.comment:
        parts.append(_prefixed_lines(":", event.comment))
    if event.name:
        parts.append(_prefixed_lines("event:", event.name))
    if event.data:
        parts.append(_prefixed_lines("data:", event.data))
    parts.append("\n")
    return "".join(parts)


def json_event(payload: Any) -> ServerSentEvent:
    return ServerSentEvent(data=json.dumps(payload))


async def encode_events(events: AsyncIterator[ServerSentEvent]) -> AsyncIterator[str]:
    """Encode an event stream for a streaming response body."""
    async for event in events:
        yield format_event(event)
    logger.debug("sse_stream_finished")
