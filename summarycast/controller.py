"""
Consumer-side stream controller.

Turns one run's event stream into display state (phase, text, status, meta)
and a queue of notices for whatever renders it.  The controller owns at most
one active session; start() on a new run aborts the previous one, and stale
events from an aborted session are dropped.

Phases:  idle → connecting → streaming → idle   (done)
                                       ↘ error  (error event, broken stream,
                                                 or done with no content)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

from summarycast.errors import StreamProtocolError
from summarycast.events import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    MetaEvent,
    MetricsEvent,
    StatusEvent,
    merge_meta,
)
from summarycast.merge import StreamState
from summarycast.transport import EventTransport

logger = logging.getLogger(__name__)

Phase = Literal["idle", "connecting", "streaming", "error"]
Mode = Literal["summarize", "chat"]

SETUP_REQUIRED = "Setup required (missing token)"
NO_OUTPUT = "Model returned no output."
STREAM_ENDED = "Stream ended unexpectedly."


# --------------------------------------------------------------------------- #
# Notices                                                                      #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class FirstContentNotice:
    """The first non-whitespace text arrived (fired once per session)."""


@dataclass(frozen=True)
class ChunkNotice:
    appended: str
    text: str
    reset: bool = False     # text replaces everything shown before


@dataclass(frozen=True)
class StatusNotice:
    text: str


@dataclass(frozen=True)
class MetaNotice:
    meta: MetaEvent


@dataclass(frozen=True)
class MetricsNotice:
    summary: str
    details: str | None = None


@dataclass(frozen=True)
class ErrorNotice:
    message: str


@dataclass(frozen=True)
class DoneNotice:
    text: str


Notice = (
    FirstContentNotice
    | ChunkNotice
    | StatusNotice
    | MetaNotice
    | MetricsNotice
    | ErrorNotice
    | DoneNotice
)

ResyncAction = Callable[[], "Awaitable[None] | None"]


class StreamController:
    def __init__(
        self,
        transport: EventTransport,
        *,
        mode: Mode = "summarize",
        on_resync: ResyncAction | None = None,
    ) -> None:
        self._transport = transport
        self._mode = mode
        self._on_resync = on_resync
        self.notices: asyncio.Queue[Notice] = asyncio.Queue()

        self._session = 0
        self._task: asyncio.Task | None = None
        self._state = StreamState()
        self._first_content_sent = False
        self._phase: Phase = "idle"
        self._status: str | None = None
        self._meta: MetaEvent | None = None
        self._run_id: str | None = None

    # ------------------------------------------------------------------ #
    # State                                                                #
    # ------------------------------------------------------------------ #

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def is_streaming(self) -> bool:
        return self._phase in ("connecting", "streaming")

    @property
    def text(self) -> str:
        return self._state.text

    @property
    def status(self) -> str | None:
        return self._status

    @property
    def meta(self) -> MetaEvent | None:
        return self._meta

    @property
    def run_id(self) -> str | None:
        return self._run_id

    # ------------------------------------------------------------------ #
    # Control                                                              #
    # ------------------------------------------------------------------ #

    def start(self, run_id: str) -> None:
        """Begin following run_id; any session already running is aborted first."""
        self.abort()
        self._session += 1
        self._state = StreamState()
        self._first_content_sent = False
        self._status = None
        self._meta = None
        self._run_id = run_id

        if not self._transport.ready:
            self._set_status(SETUP_REQUIRED)
            return

        self._phase = "connecting"
        self._task = asyncio.create_task(self._consume(self._session, run_id))

    def abort(self) -> None:
        """Stop forwarding immediately.  Safe to call at any time; never an error."""
        self._session += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if self._phase in ("connecting", "streaming"):
            self._phase = "idle"

    async def wait(self) -> None:
        """Wait for the current session to reach a terminal state (or be aborted)."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _current(self, session: int) -> bool:
        return session == self._session

    def _set_status(self, text: str) -> None:
        self._status = text
        self.notices.put_nowait(StatusNotice(text=text))

    def _fail(self, message: str) -> None:
        self._phase = "error"
        self._status = message
        self.notices.put_nowait(ErrorNotice(message=message))

    async def _consume(self, session: int, run_id: str) -> None:
        terminal = False
        try:
            async with aclosing(self._transport.open(run_id)) as events:
                async for event in events:
                    if not self._current(session):
                        return
                    if self._phase == "connecting":
                        self._phase = "streaming"
                    terminal = self._apply(event)
                    if terminal:
                        break
            if not terminal and self._current(session):
                self._fail(STREAM_ENDED)
        except StreamProtocolError as exc:
            if self._current(session):
                self._fail(str(exc))
        except Exception as exc:
            logger.warning("Event stream for run %s failed: %s", run_id, exc)
            if self._current(session):
                self._fail(str(exc) or type(exc).__name__)

        if self._current(session):
            await self._resync()

    def _apply(self, event) -> bool:
        """Fold one event into state; True when the event ends the session."""
        match event:
            case ChunkEvent():
                if event.reset:
                    self._state = StreamState()
                appended = self._state.apply(event.text, merge=self._mode == "summarize")
                if appended or event.reset:
                    if not self._first_content_sent and self._state.has_seen_non_whitespace:
                        self._first_content_sent = True
                        self.notices.put_nowait(FirstContentNotice())
                    self.notices.put_nowait(
                        ChunkNotice(appended=appended, text=self._state.text, reset=event.reset)
                    )
            case MetaEvent():
                self._meta = merge_meta(self._meta, event)
                self.notices.put_nowait(MetaNotice(meta=self._meta))
            case StatusEvent():
                self._set_status(event.text)
            case MetricsEvent():
                self.notices.put_nowait(MetricsNotice(summary=event.summary, details=event.details))
            case ErrorEvent():
                self._fail(event.message)
                return True
            case DoneEvent():
                if self._mode == "summarize" and not self._state.has_seen_non_whitespace:
                    self._fail(NO_OUTPUT)
                else:
                    self._phase = "idle"
                    self.notices.put_nowait(DoneNotice(text=self._state.text))
                return True
        return False

    async def _resync(self) -> None:
        if self._on_resync is None:
            return
        try:
            result = self._on_resync()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("Resync after run %s failed: %s", self._run_id, exc)
