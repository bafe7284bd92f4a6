import unittest

import httpx

from summarycast.errors import StreamProtocolError
from summarycast.events import ChunkEvent, DoneEvent, StatusEvent
from summarycast.protocol import KEEPALIVE, encode_event
from summarycast.transport import SseTransport


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _read(transport: SseTransport, run_id: str = "abc") -> list:
    return [event async for event in transport.open(run_id)]


class SseTransportTests(unittest.IsolatedAsyncioTestCase):
    async def test_reads_events_with_bearer_token(self) -> None:
        seen: dict = {}
        wire = KEEPALIVE + "".join(
            encode_event(e) for e in (StatusEvent(text="Summarizing…"), ChunkEvent(text="Hi"), DoneEvent())
        )

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, text=wire, headers={"content-type": "text/event-stream"})

        async with _client(handler) as client:
            events = await _read(SseTransport("http://daemon:8787/", "tok", client=client))

        self.assertEqual(events, [StatusEvent(text="Summarizing…"), ChunkEvent(text="Hi"), DoneEvent()])
        self.assertEqual(seen["url"], "http://daemon:8787/v1/runs/abc/events")
        self.assertEqual(seen["auth"], "Bearer tok")

    async def test_http_errors_map_to_readable_messages(self) -> None:
        cases = {
            401: "Daemon rejected the token (401). Re-run setup.",
            404: "Run abc not found (it may have expired).",
            500: "Daemon returned HTTP 500.",
        }
        for status, message in cases.items():
            async with _client(lambda request, s=status: httpx.Response(s)) as client:
                with self.assertRaises(StreamProtocolError) as ctx:
                    await _read(SseTransport("http://daemon", "tok", client=client))
            self.assertEqual(str(ctx.exception), message)

    async def test_unreachable_daemon(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with self.assertRaises(StreamProtocolError) as ctx:
                await _read(SseTransport("http://127.0.0.1:8787", "tok", client=client))
        self.assertIn("Daemon unreachable at http://127.0.0.1:8787", str(ctx.exception))

    async def test_malformed_frame_is_a_protocol_error(self) -> None:
        wire = "event: chunk\ndata: {oops\n\n"
        async with _client(lambda request: httpx.Response(200, text=wire)) as client:
            with self.assertRaises(StreamProtocolError):
                await _read(SseTransport("http://daemon", "tok", client=client))

    def test_ready_only_with_a_token(self) -> None:
        self.assertTrue(SseTransport("http://daemon", "tok").ready)
        self.assertFalse(SseTransport("http://daemon", None).ready)
        self.assertFalse(SseTransport("http://daemon", "").ready)


if __name__ == "__main__":
    unittest.main()
