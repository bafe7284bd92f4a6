"""
Typed event dataclasses: the shared language between a run and its readers.

The pipeline (pipeline.py) yields these.  The daemon serialises them as SSE
frames (protocol.py), and the stream controller decodes them back.  All events
are frozen so they're safe to pass across async boundaries and to replay to
late readers from a shared log.

Per run: events are strictly ordered; DoneEvent and ErrorEvent are terminal
and mutually exclusive.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

EventKind = Literal["chunk", "meta", "status", "metrics", "error", "done"]
StreamMode = Literal["summarize", "chat"]


@dataclass(frozen=True)
class ChunkEvent:
    text: str
    reset: bool = False     # a new attempt discards text streamed so far


@dataclass(frozen=True)
class MetaEvent:
    """Any field may be None; readers merge rather than replace."""

    model: str | None = None
    model_label: str | None = None
    input_summary: str | None = None
    summary_from_cache: bool | None = None


@dataclass(frozen=True)
class StatusEvent:
    text: str


@dataclass(frozen=True)
class MetricsEvent:
    summary: str
    details: str | None = None
    elapsed_ms: int | None = None


@dataclass(frozen=True)
class ErrorEvent:
    message: str


@dataclass(frozen=True)
class DoneEvent:
    pass


# Union type for type-safe pattern matching in consumers
RunEvent = (
    ChunkEvent
    | MetaEvent
    | StatusEvent
    | MetricsEvent
    | ErrorEvent
    | DoneEvent
)

TERMINAL_EVENTS = (ErrorEvent, DoneEvent)


def is_terminal(event: RunEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def merge_meta(current: MetaEvent | None, incoming: MetaEvent) -> MetaEvent:
    """Fold a later meta event into what is known; missing fields never erase."""
    if current is None:
        return incoming
    return MetaEvent(
        model=incoming.model if incoming.model is not None else current.model,
        model_label=incoming.model_label if incoming.model_label is not None else current.model_label,
        input_summary=incoming.input_summary if incoming.input_summary is not None else current.input_summary,
        summary_from_cache=(
            incoming.summary_from_cache
            if incoming.summary_from_cache is not None
            else current.summary_from_cache
        ),
    )
