import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from summarycast.errors import RunCancelledError
from summarycast.events import ChunkEvent, MetaEvent
from summarycast.providers.base import (
    Completion,
    EmptyOutputError,
    LLMProvider,
    Message,
    StreamingUnsupportedError,
    TokenUsage,
)
from summarycast.registry import parse_requested_model
from summarycast.runner import GenerationRunner


class _FakeProvider(LLMProvider):
    name = "fake"

    def __init__(
        self,
        *,
        chunks: list[str] | None = None,
        text: str = "",
        streaming: bool = True,
        stream_error: Exception | None = None,
        stall: bool = False,
        hang_after_chunks: bool = False,
        complete_delay: float = 0,
        complete_results: list | None = None,
    ) -> None:
        self._chunks = chunks or []
        self._text = text
        self._streaming = streaming
        self._stream_error = stream_error
        self._stall = stall
        self._hang_after_chunks = hang_after_chunks
        self._complete_delay = complete_delay
        self._complete_results = list(complete_results or [])
        self.complete_calls = 0
        self.stream_calls = 0
        self.stream_closed = False
        self.last_messages: list[Message] | None = None
        self.last_max_tokens: int | None = None

    @property
    def supports_streaming(self) -> bool:
        return self._streaming

    @property
    def last_usage(self) -> TokenUsage | None:
        return TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)

    async def complete(self, messages: list[Message], *, max_tokens: int = 2048) -> Completion:
        self.complete_calls += 1
        self.last_messages = messages
        self.last_max_tokens = max_tokens
        if self._complete_delay:
            await asyncio.sleep(self._complete_delay)
        if self._complete_results:
            result = self._complete_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return Completion(text=result)
        return Completion(text=self._text)

    async def stream(self, messages: list[Message], *, max_tokens: int = 2048):
        self.stream_calls += 1
        self.last_messages = messages
        try:
            if self._stall:
                await asyncio.sleep(10)
            if self._stream_error is not None:
                raise self._stream_error
            for chunk in self._chunks:
                yield chunk
            if self._hang_after_chunks:
                await asyncio.sleep(30)
        finally:
            self.stream_closed = True


def _drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


ATTEMPT = parse_requested_model("openai/gpt-5-mini")


class GenerationRunnerTests(unittest.IsolatedAsyncioTestCase):
    async def test_meta_is_emitted_before_the_provider_is_built(self) -> None:
        channel: asyncio.Queue = asyncio.Queue()
        seen_at_build: list[int] = []

        def factory(attempt):
            seen_at_build.append(channel.qsize())
            return _FakeProvider(chunks=["Hi"])

        await GenerationRunner(factory).run(ATTEMPT, "prompt", channel=channel)

        self.assertEqual(seen_at_build, [1])
        first = _drain(channel)[0]
        self.assertEqual(first, MetaEvent(model="openai/gpt-5-mini", model_label="openai/gpt-5-mini"))

    async def test_streaming_forwards_only_new_text(self) -> None:
        provider = _FakeProvider(chunks=["Hello", "Hello world", "world!"])
        channel: asyncio.Queue = asyncio.Queue()

        result = await GenerationRunner(lambda a: provider).run(ATTEMPT, "p", channel=channel)

        chunks = [e.text for e in _drain(channel) if isinstance(e, ChunkEvent)]
        self.assertEqual(chunks, ["Hello", " world", "world!"])
        self.assertEqual(result.text, "Hello worldworld!")
        self.assertTrue(result.streamed)
        self.assertEqual(result.usage.total_tokens, 15)

    async def test_non_streaming_when_disallowed(self) -> None:
        provider = _FakeProvider(text="Full summary")
        channel: asyncio.Queue = asyncio.Queue()

        result = await GenerationRunner(lambda a: provider).run(
            ATTEMPT, "p", streaming_allowed=False, channel=channel,
        )

        self.assertEqual(result.text, "Full summary")
        self.assertFalse(result.streamed)
        self.assertEqual(provider.stream_calls, 0)
        self.assertFalse(any(isinstance(e, ChunkEvent) for e in _drain(channel)))

    async def test_streaming_unsupported_falls_back_once(self) -> None:
        provider = _FakeProvider(
            text="Fallback text",
            stream_error=StreamingUnsupportedError("fake", "streaming is not supported"),
        )
        result = await GenerationRunner(lambda a: provider).run(ATTEMPT, "p")
        self.assertEqual(result.text, "Fallback text")
        self.assertFalse(result.streamed)
        self.assertEqual((provider.stream_calls, provider.complete_calls), (1, 1))

    async def test_first_token_timeout_falls_back_to_complete(self) -> None:
        provider = _FakeProvider(text="Late but whole", stall=True)
        runner = GenerationRunner(lambda a: provider, timeout_s=0.05)
        result = await runner.run(ATTEMPT, "p")
        self.assertEqual(result.text, "Late but whole")
        self.assertTrue(provider.stream_closed)

    async def test_whitespace_only_stream_is_an_error(self) -> None:
        provider = _FakeProvider(chunks=["  ", "\n"])
        with self.assertRaises(EmptyOutputError) as ctx:
            await GenerationRunner(lambda a: provider).run(ATTEMPT, "p")
        self.assertIn("LLM returned an empty summary (model openai/gpt-5-mini)", str(ctx.exception))

    async def test_whitespace_only_completion_is_an_error(self) -> None:
        provider = _FakeProvider(text="   ", streaming=False)
        with self.assertRaises(EmptyOutputError):
            await GenerationRunner(lambda a: provider).run(ATTEMPT, "p")

    async def test_retries_empty_completion(self) -> None:
        provider = _FakeProvider(streaming=False, complete_results=["", "second try"])
        runner = GenerationRunner(lambda a: provider, retries=1)
        with patch("summarycast.runner.asyncio.sleep", new=AsyncMock()):
            result = await runner.run(ATTEMPT, "p")
        self.assertEqual(result.text, "second try")
        self.assertEqual(provider.complete_calls, 2)

    async def test_stop_event_cancels_and_closes_stream(self) -> None:
        provider = _FakeProvider(chunks=["a", "b", "c"])
        stop = asyncio.Event()
        stop.set()
        with self.assertRaises(RunCancelledError):
            await GenerationRunner(lambda a: provider).run(ATTEMPT, "p", stop_event=stop)
        self.assertTrue(provider.stream_closed)

    async def test_stop_during_a_silent_stream_cancels_promptly(self) -> None:
        provider = _FakeProvider(chunks=["First words"], hang_after_chunks=True)
        channel: asyncio.Queue = asyncio.Queue()
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, stop.set)

        with self.assertRaises(RunCancelledError):
            await asyncio.wait_for(
                GenerationRunner(lambda a: provider).run(ATTEMPT, "p", channel=channel, stop_event=stop),
                timeout=2,
            )

        self.assertTrue(provider.stream_closed)
        chunks = [e.text for e in _drain(channel) if isinstance(e, ChunkEvent)]
        self.assertEqual(chunks, ["First words"])

    async def test_stop_during_a_slow_completion_cancels_promptly(self) -> None:
        provider = _FakeProvider(text="never seen", complete_delay=30)
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, stop.set)

        with self.assertRaises(RunCancelledError):
            await asyncio.wait_for(
                GenerationRunner(lambda a: provider).run(
                    ATTEMPT, "p", streaming_allowed=False, stop_event=stop,
                ),
                timeout=2,
            )
        self.assertEqual(provider.complete_calls, 1)

    async def test_stop_event_left_unset_does_not_disturb_streaming(self) -> None:
        provider = _FakeProvider(chunks=["Hello", " world"])
        result = await GenerationRunner(lambda a: provider).run(ATTEMPT, "p", stop_event=asyncio.Event())
        self.assertEqual(result.text, "Hello world")
        self.assertTrue(provider.stream_closed)

    async def test_output_ceiling_clamps_max_tokens(self) -> None:
        provider = _FakeProvider(text="ok", streaming=False)
        attempt = parse_requested_model("xai/grok-4-fast-non-reasoning")
        await GenerationRunner(lambda a: provider, max_output_tokens=100_000).run(attempt, "p")
        self.assertEqual(provider.last_max_tokens, 30_000)

    async def test_string_prompt_becomes_a_user_message(self) -> None:
        provider = _FakeProvider(text="ok", streaming=False)
        await GenerationRunner(lambda a: provider).run(ATTEMPT, "Summarize this")
        self.assertEqual(provider.last_messages, [Message(role="user", content="Summarize this")])


if __name__ == "__main__":
    unittest.main()
