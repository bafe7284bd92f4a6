"""
Generation runner: execute one Attempt, streamed or not.

Progress goes out on a single asyncio.Queue channel of RunEvents:
  - MetaEvent(model, model_label) as soon as the attempt is chosen, before
    any network activity
  - ChunkEvent(text) for every newly appended piece of streamed text

Streamed fragments are folded through StreamState, so a provider that
resends cumulative buffers or echoes its tail never causes duplicate text.

Failure policy inside one attempt:
  - streaming rejected for this model, or no first token within the timeout:
    retry the same attempt once without streaming (only if nothing was sent yet)
  - whitespace-only output: EmptyOutputError, never a success
  - stop_event set: RunCancelledError, even mid-call; the provider stream is closed
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from summarycast.attempt_log import AttemptLogger
from summarycast.errors import RunCancelledError
from summarycast.events import ChunkEvent, MetaEvent, RunEvent
from summarycast.finish_line import format_model_label
from summarycast.merge import StreamState
from summarycast.providers.base import (
    Completion,
    EmptyOutputError,
    LLMProvider,
    Message,
    Prompt,
    ProviderError,
    ProviderTimeoutError,
    StreamingUnsupportedError,
    TokenUsage,
    as_messages,
)
from summarycast.registry import Attempt

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Attempt], LLMProvider]
T = TypeVar("T")


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model_id: str
    provider: str
    usage: TokenUsage | None = None
    streamed: bool = False      # text already went out as ChunkEvents
    cost_usd: float | None = None


class GenerationRunner:
    def __init__(
        self,
        provider_factory: ProviderFactory,
        *,
        timeout_s: float = 120,
        max_output_tokens: int = 2048,
        retries: int = 0,
        attempt_logger: AttemptLogger | None = None,
    ) -> None:
        self._provider_factory = provider_factory
        self._timeout_s = timeout_s
        self._max_output_tokens = max_output_tokens
        self._retries = retries
        self._attempt_logger = attempt_logger

    async def run(
        self,
        attempt: Attempt,
        prompt: Prompt,
        *,
        streaming_allowed: bool = True,
        channel: asyncio.Queue[RunEvent | None] | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> GenerationResult:
        """
        Produce text for one attempt.

        Raises:
            MissingCredentialError: the provider could not be built for lack of a key.
            ProviderError: the call failed, timed out, or returned nothing.
            RunCancelledError: stop_event was set while working.
        """
        if channel is not None:
            channel.put_nowait(MetaEvent(model=attempt.model_id, model_label=format_model_label(attempt.model_id)))

        provider = self._provider_factory(attempt)
        messages = as_messages(prompt)
        max_tokens = self._max_output_tokens
        if attempt.max_output_tokens is not None:
            max_tokens = min(max_tokens, attempt.max_output_tokens)

        use_stream = streaming_allowed and not attempt.force_stream_off and provider.supports_streaming
        if use_stream:
            state = StreamState()
            try:
                return await self._run_streaming(
                    attempt, provider, messages, max_tokens, state, channel, stop_event,
                )
            except (StreamingUnsupportedError, ProviderTimeoutError) as exc:
                if state.text:
                    raise
                logger.info("Streaming failed, retrying without streaming [model=%s]: %s",
                            attempt.model_id, exc)

        completion = await self._run_complete(attempt, provider, messages, max_tokens, stop_event)
        return GenerationResult(
            text=completion.text,
            model_id=attempt.model_id,
            provider=provider.name,
            usage=completion.usage,
            streamed=False,
            cost_usd=completion.cost_usd,
        )

    # ------------------------------------------------------------------ #
    # Streaming                                                            #
    # ------------------------------------------------------------------ #

    async def _run_streaming(
        self,
        attempt: Attempt,
        provider: LLMProvider,
        messages: list[Message],
        max_tokens: int,
        state: StreamState,
        channel: asyncio.Queue[RunEvent | None] | None,
        stop_event: asyncio.Event | None,
    ) -> GenerationResult:
        self._log_request(attempt, messages, streaming=True)
        async with aclosing(provider.stream(messages, max_tokens=max_tokens)) as stream:
            try:
                async with asyncio.timeout(self._timeout_s):
                    fragment = await _until_stopped(_next_fragment(stream), stop_event)
            except TimeoutError as exc:
                error = ProviderTimeoutError(
                    provider.name,
                    f"LLM request timed out after {int(self._timeout_s * 1000)}ms waiting for the first token",
                    cause=exc,
                )
                self._log_error(attempt, error)
                raise error from exc
            except ProviderError as exc:
                self._log_error(attempt, exc)
                raise

            while fragment is not None:
                if stop_event is not None and stop_event.is_set():
                    raise RunCancelledError("Run cancelled")
                appended = state.apply(fragment)
                if appended and channel is not None:
                    channel.put_nowait(ChunkEvent(text=appended))
                try:
                    fragment = await _until_stopped(_next_fragment(stream), stop_event)
                except ProviderError as exc:
                    self._log_error(attempt, exc)
                    raise

        self._log_response(attempt, state.text)
        if not state.text.strip():
            raise EmptyOutputError(provider.name, f"LLM returned an empty summary (model {attempt.model_id}).")
        return GenerationResult(
            text=state.text,
            model_id=attempt.model_id,
            provider=provider.name,
            usage=provider.last_usage,
            streamed=True,
        )

    # ------------------------------------------------------------------ #
    # Non-streaming                                                        #
    # ------------------------------------------------------------------ #

    async def _run_complete(
        self,
        attempt: Attempt,
        provider: LLMProvider,
        messages: list[Message],
        max_tokens: int,
        stop_event: asyncio.Event | None,
    ) -> Completion:
        last_error: ProviderError | None = None
        for try_num in range(self._retries + 1):
            if stop_event is not None and stop_event.is_set():
                raise RunCancelledError("Run cancelled")
            if try_num > 0:
                await asyncio.sleep(min(0.5 * 2 ** (try_num - 1), 4))

            self._log_request(attempt, messages, streaming=False)
            try:
                async with asyncio.timeout(self._timeout_s):
                    completion = await _until_stopped(
                        provider.complete(messages, max_tokens=max_tokens), stop_event,
                    )
            except TimeoutError as exc:
                last_error = ProviderTimeoutError(
                    provider.name,
                    f"LLM request timed out after {int(self._timeout_s * 1000)}ms",
                    cause=exc,
                )
                self._log_error(attempt, last_error)
                continue
            except ProviderError as exc:
                self._log_error(attempt, exc)
                if isinstance(exc, (ProviderTimeoutError, EmptyOutputError)):
                    last_error = exc
                    continue
                raise

            self._log_response(attempt, completion.text)
            if completion.text.strip():
                return completion
            last_error = EmptyOutputError(
                provider.name, f"LLM returned an empty summary (model {attempt.model_id})."
            )

        assert last_error is not None
        raise last_error

    # ------------------------------------------------------------------ #
    # Attempt log                                                          #
    # ------------------------------------------------------------------ #

    def _log_request(self, attempt: Attempt, messages: list[Message], *, streaming: bool) -> None:
        if self._attempt_logger:
            self._attempt_logger.log_request(
                model_id=attempt.model_id,
                transport=attempt.transport,
                streaming=streaming,
                messages=messages,
            )

    def _log_response(self, attempt: Attempt, raw: str) -> None:
        if self._attempt_logger:
            self._attempt_logger.log_response(model_id=attempt.model_id, raw=raw)

    def _log_error(self, attempt: Attempt, error: Exception) -> None:
        if self._attempt_logger:
            self._attempt_logger.log_error(model_id=attempt.model_id, error=error)


async def _next_fragment(stream) -> str | None:
    return await anext(stream, None)


async def _until_stopped(work: Awaitable[T], stop_event: asyncio.Event | None) -> T:
    """
    Await `work`, abandoning it as soon as stop_event is set.

    The abandoned call is cancelled and awaited before RunCancelledError is
    raised, so a provider stream is no longer running when it gets closed.
    """
    if stop_event is None:
        return await work
    task = asyncio.ensure_future(work)
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    if task.cancelled() and stop_event.is_set():
        raise RunCancelledError("Run cancelled")
    return task.result()
