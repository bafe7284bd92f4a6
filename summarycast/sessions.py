"""
Run hub: keeps daemon runs alive independently of their readers.

A run is started once (POST /v1/summarize or /v1/chat) and then read by any
number of SSE connections.  Every event is appended to the run's log, so a
reader that attaches late replays what it missed and then follows live.

Each reader gets its own asyncio.Queue; None is the end-of-stream sentinel.
When the last reader leaves before the run finishes, the run is cancelled.
Finished runs are kept for `ttl_s` seconds so a reconnecting reader can
still replay them, then pruned.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from summarycast.events import ErrorEvent, RunEvent, is_terminal

logger = logging.getLogger(__name__)

RunFactory = Callable[[asyncio.Event], AsyncIterator[RunEvent]]


@dataclass
class RunSession:
    run_id: str
    kind: str = "summarize"
    events: list[RunEvent] = field(default_factory=list)
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    finished_at: float | None = None
    _subscribers: list[asyncio.Queue[RunEvent | None]] = field(default_factory=list)
    _had_subscriber: bool = False
    _task: asyncio.Task | None = None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: RunEvent) -> None:
        if self.finished:
            return
        self.events.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)
        if is_terminal(event):
            self._finish()

    def subscribe(self) -> asyncio.Queue[RunEvent | None]:
        """Return a queue pre-filled with the log so far; live events follow."""
        queue: asyncio.Queue[RunEvent | None] = asyncio.Queue()
        for event in self.events:
            queue.put_nowait(event)
        if self.finished:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
            self._had_subscriber = True
        return queue

    def unsubscribe(self, queue: asyncio.Queue[RunEvent | None]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
        if not self._subscribers and self._had_subscriber and not self.finished:
            logger.info("Last reader left run %s; cancelling", self.run_id)
            self.cancel()

    def cancel(self) -> None:
        self.stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _finish(self) -> None:
        self.finished_at = time.monotonic()
        for queue in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()


class RunHub:
    def __init__(self, ttl_s: float = 300) -> None:
        self._ttl_s = ttl_s
        self._runs: dict[str, RunSession] = {}

    def start(self, factory: RunFactory, *, kind: str = "summarize") -> RunSession:
        """Create a session and drive factory(stop_event) in a background task."""
        self.prune()
        session = RunSession(run_id=secrets.token_hex(8), kind=kind)
        self._runs[session.run_id] = session
        session._task = asyncio.create_task(self._drive(session, factory))
        return session

    def get(self, run_id: str) -> RunSession | None:
        return self._runs.get(run_id)

    def prune(self) -> None:
        now = time.monotonic()
        expired = [
            run_id
            for run_id, session in self._runs.items()
            if session.finished_at is not None and now - session.finished_at > self._ttl_s
        ]
        for run_id in expired:
            del self._runs[run_id]

    async def shutdown(self) -> None:
        tasks = [s._task for s in self._runs.values() if s._task is not None and not s._task.done()]
        for session in self._runs.values():
            session.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    async def _drive(self, session: RunSession, factory: RunFactory) -> None:
        try:
            async with aclosing(factory(session.stop_event)) as events:
                async for event in events:
                    session.publish(event)
        except asyncio.CancelledError:
            session.publish(ErrorEvent(message="Run cancelled."))
            raise
        except Exception as exc:
            logger.exception("Run %s crashed", session.run_id)
            session.publish(ErrorEvent(message=str(exc) or type(exc).__name__))
        else:
            if not session.finished:
                session.publish(ErrorEvent(message="Run ended without a result."))
