"""
Server-Sent-Events framing for run events.

Each event is written as

    event: <kind>
    data: <json payload>
    <blank line>

Payload keys are camelCase on the wire (modelLabel, inputSummary, ...) so
browser readers can use them directly.  Lines starting with ":" are
keep-alive comments and carry no event.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from summarycast.events import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    MetaEvent,
    MetricsEvent,
    RunEvent,
    StatusEvent,
)

logger = logging.getLogger(__name__)

KEEPALIVE = ": keep-alive\n\n"


def event_kind(event: RunEvent) -> str:
    match event:
        case ChunkEvent():
            return "chunk"
        case MetaEvent():
            return "meta"
        case StatusEvent():
            return "status"
        case MetricsEvent():
            return "metrics"
        case ErrorEvent():
            return "error"
        case DoneEvent():
            return "done"
    raise TypeError(f"Not a run event: {type(event).__name__}")


def event_payload(event: RunEvent) -> dict:
    match event:
        case ChunkEvent():
            if event.reset:
                return {"text": event.text, "reset": True}
            return {"text": event.text}
        case MetaEvent():
            payload = {
                "model": event.model,
                "modelLabel": event.model_label,
                "inputSummary": event.input_summary,
                "summaryFromCache": event.summary_from_cache,
            }
            return {k: v for k, v in payload.items() if v is not None}
        case StatusEvent():
            return {"text": event.text}
        case MetricsEvent():
            payload = {"summary": event.summary, "details": event.details, "elapsedMs": event.elapsed_ms}
            return {k: v for k, v in payload.items() if v is not None}
        case ErrorEvent():
            return {"message": event.message}
        case DoneEvent():
            return {}
    raise TypeError(f"Not a run event: {type(event).__name__}")


def encode_event(event: RunEvent) -> str:
    """Render one event as a complete SSE frame."""
    data = json.dumps(event_payload(event), ensure_ascii=False)
    return f"event: {event_kind(event)}\ndata: {data}\n\n"


def decode_event(kind: str, data: str) -> RunEvent | None:
    """
    Rebuild an event from an SSE kind and its JSON data.

    Returns None for unknown kinds so newer servers can add events
    without breaking older readers.

    Raises:
        ValueError: the payload is not valid JSON or lacks a required field.
    """
    try:
        payload = json.loads(data) if data.strip() else {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Malformed {kind} payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Malformed {kind} payload: expected an object")

    try:
        match kind:
            case "chunk":
                return ChunkEvent(text=str(payload["text"]), reset=bool(payload.get("reset", False)))
            case "meta":
                return MetaEvent(
                    model=payload.get("model"),
                    model_label=payload.get("modelLabel"),
                    input_summary=payload.get("inputSummary"),
                    summary_from_cache=payload.get("summaryFromCache"),
                )
            case "status":
                return StatusEvent(text=str(payload["text"]))
            case "metrics":
                return MetricsEvent(
                    summary=str(payload["summary"]),
                    details=payload.get("details"),
                    elapsed_ms=payload.get("elapsedMs"),
                )
            case "error":
                return ErrorEvent(message=str(payload.get("message") or "Unknown error"))
            case "done":
                return DoneEvent()
    except KeyError as exc:
        raise ValueError(f"{kind} payload is missing {exc}") from exc
    logger.debug("Ignoring unknown event kind %r", kind)
    return None


@dataclass
class SseParser:
    """Incremental SSE line parser; feed lines, get (kind, data) frames back."""

    _kind: str = "message"
    _data: list[str] = field(default_factory=list)

    def feed(self, line: str) -> tuple[str, str] | None:
        line = line.rstrip("\r\n")
        if not line:
            if not self._data:
                self._kind = "message"
                return None
            frame = (self._kind, "\n".join(self._data))
            self._kind = "message"
            self._data = []
            return frame
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._kind = value
        elif name == "data":
            self._data.append(value)
        return None


def parse_sse(lines: Iterable[str]) -> Iterator[RunEvent]:
    """Decode every complete event in a block of SSE text lines."""
    parser = SseParser()
    for line in lines:
        frame = parser.feed(line)
        if frame is None:
            continue
        event = decode_event(*frame)
        if event is not None:
            yield event
