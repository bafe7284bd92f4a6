"""
Event transports for the stream controller.

A transport opens one run's event stream.  SseTransport reads it from the
daemon over HTTP; LocalTransport wraps an in-process pipeline so the CLI
renders through exactly the same controller path.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable

import httpx

from summarycast.errors import StreamProtocolError
from summarycast.events import RunEvent
from summarycast.protocol import SseParser, decode_event

logger = logging.getLogger(__name__)


class EventTransport(ABC):
    @property
    def ready(self) -> bool:
        """False when the transport lacks what it needs to connect (e.g. a token)."""
        return True

    @abstractmethod
    def open(self, run_id: str) -> AsyncIterator[RunEvent]:
        """Return an async iterator over the run's events, in order."""
        ...


class SseTransport(EventTransport):
    def __init__(
        self,
        base_url: str,
        token: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = client
        self._connect_timeout = connect_timeout

    @property
    def ready(self) -> bool:
        return bool(self._token)

    async def open(self, run_id: str) -> AsyncIterator[RunEvent]:
        url = f"{self._base_url}/v1/runs/{run_id}/events"
        headers = {"Authorization": f"Bearer {self._token}", "Accept": "text/event-stream"}
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._connect_timeout, read=None),
        )
        try:
            async with client.stream("GET", url, headers=headers) as response:
                if response.status_code == 401:
                    raise StreamProtocolError("Daemon rejected the token (401). Re-run setup.")
                if response.status_code == 404:
                    raise StreamProtocolError(f"Run {run_id} not found (it may have expired).")
                if response.status_code >= 400:
                    raise StreamProtocolError(f"Daemon returned HTTP {response.status_code}.")

                parser = SseParser()
                async for line in response.aiter_lines():
                    frame = parser.feed(line)
                    if frame is None:
                        continue
                    try:
                        event = decode_event(*frame)
                    except ValueError as exc:
                        raise StreamProtocolError(f"Malformed event from daemon: {exc}") from exc
                    if event is not None:
                        yield event
        except httpx.ConnectError as exc:
            raise StreamProtocolError(
                f"Daemon unreachable at {self._base_url}. Is `summarycast daemon` running?"
            ) from exc
        except httpx.TransportError as exc:
            raise StreamProtocolError(f"Connection to daemon failed: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()


class LocalTransport(EventTransport):
    """Serve events from an in-process source; run_id is passed through to it."""

    def __init__(self, source: Callable[[str], AsyncIterator[RunEvent]]) -> None:
        self._source = source

    def open(self, run_id: str) -> AsyncIterator[RunEvent]:
        return self._source(run_id)
