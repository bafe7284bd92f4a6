"""
Run pipeline: one request in, an ordered stream of RunEvents out.

Shape of a summarize run:

    MetaEvent(input_summary)        what is being summarized
    StatusEvent("Summarizing…")
    MetaEvent(model, model_label)   per attempt, from the runner
    ChunkEvent* ...                 streamed text (or the whole text at once)
    MetricsEvent                    the finish line
    DoneEvent                       or ErrorEvent, never both

The pipeline is transport-agnostic: the daemon feeds it into a RunHub and
the CLI consumes it in-process through the same StreamController.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import AsyncIterator

from summarycast.config import Config, EnvSnapshot
from summarycast.attempt_log import AttemptLogger
from summarycast.events import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    MetaEvent,
    MetricsEvent,
    RunEvent,
    StatusEvent,
)
from summarycast.finish_line import build_finish_line, format_compact_count
from summarycast.orchestrator import FallbackOutcome, compose_failure, run_with_fallback
from summarycast.providers import create_provider
from summarycast.providers.base import Message, Prompt
from summarycast.registry import (
    TASK_KINDS,
    Attempt,
    has_credential,
    parse_requested_model,
    rank_attempts,
    with_provider_overrides,
)
from summarycast.runner import GenerationResult, GenerationRunner, ProviderFactory

logger = logging.getLogger(__name__)

_SUMMARY_SYSTEM_PROMPT = (
    "You summarize content for a reader who has not seen it. "
    "Write clear Markdown. Lead with the key point, then the supporting details. "
    "Do not invent facts that are not in the content."
)

_CHAT_SYSTEM_PROMPT = (
    "You answer questions about the page content below. "
    "Base answers on the content; say so when it does not contain the answer.\n\n"
    "<content>\n{content}\n</content>"
)


@dataclass(frozen=True)
class SummaryRequest:
    content: str
    task: str = "text"
    model: str | None = None
    instructions: str | None = None
    source: str | None = None           # file name or URL, shown in the input summary
    image_bytes: bytes | None = None


@dataclass(frozen=True)
class ChatRequest:
    content: str
    messages: list[Message] = field(default_factory=list)   # history, latest question last
    model: str | None = None


def estimate_tokens(text: str) -> int:
    # Roughly four characters per token for English prose.
    return max(1, len(text) // 4) if text else 0


def describe_input(content: str, source: str | None = None) -> str:
    words = len(content.split())
    parts = [
        source,
        f"{format_compact_count(words)} words",
        f"~{format_compact_count(estimate_tokens(content))} tokens",
    ]
    return " · ".join(p for p in parts if p)


def build_summary_prompt(request: SummaryRequest) -> list[Message]:
    user = request.content
    if request.instructions:
        user = f"{request.instructions.strip()}\n\n{request.content}"
    return [
        Message(role="system", content=_SUMMARY_SYSTEM_PROMPT),
        Message(role="user", content=user, image_bytes=request.image_bytes),
    ]


def build_chat_prompt(request: ChatRequest) -> list[Message]:
    system = Message(role="system", content=_CHAT_SYSTEM_PROMPT.format(content=request.content))
    return [system, *(m for m in request.messages if m.role != "system")]


# --------------------------------------------------------------------------- #
# Attempt planning                                                             #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class AttemptPlan:
    attempts: list[Attempt]
    fixed: bool
    requested_model: str


def plan_attempts(
    requested: str | None,
    task: str,
    config: Config,
    snapshot: EnvSnapshot,
    prompt_tokens: int | None = None,
) -> AttemptPlan:
    """
    Resolve the model selection into the attempt list.

    Precedence: explicit request > SUMMARIZE_MODEL > config `model`.

    Raises:
        ValueError: the pinned model id cannot be parsed.
    """
    selection = config.resolve_model(requested or snapshot.get("SUMMARIZE_MODEL"))
    if selection.is_auto:
        attempts = rank_attempts(task, snapshot, config, prompt_tokens)
        fixed = False
        label = "auto"
    else:
        pinned = parse_requested_model(selection.id or "", snapshot)
        if pinned is None:
            attempts = rank_attempts(task, snapshot, config, prompt_tokens)
            fixed = False
            label = "auto"
        else:
            attempts = [pinned]
            fixed = True
            label = selection.id or pinned.model_id
    return AttemptPlan(
        attempts=[with_provider_overrides(a, config) for a in attempts],
        fixed=fixed,
        requested_model=label,
    )


# --------------------------------------------------------------------------- #
# Driving attempts                                                             #
# --------------------------------------------------------------------------- #

class _AttemptDrive:
    """Run the orchestrator in a task and relay the runner's channel as it fills."""

    def __init__(
        self,
        runner: GenerationRunner,
        plan: AttemptPlan,
        prompt: Prompt,
        *,
        snapshot: EnvSnapshot,
        streaming_allowed: bool,
        stop_event: asyncio.Event,
    ) -> None:
        self._runner = runner
        self._plan = plan
        self._prompt = prompt
        self._snapshot = snapshot
        self._streaming_allowed = streaming_allowed
        self._stop_event = stop_event
        self.outcome: FallbackOutcome[GenerationResult] | None = None
        self.text_shown = False     # the reader still shows streamed attempt text

    async def events(self) -> AsyncIterator[RunEvent]:
        """
        Relay runner events.  When a later attempt starts after an earlier one
        already streamed text, its first chunk carries reset=True so readers
        drop the abandoned partial text.
        """
        channel: asyncio.Queue[RunEvent | None] = asyncio.Queue()

        async def _execute(attempt: Attempt) -> GenerationResult:
            return await self._runner.run(
                attempt,
                self._prompt,
                streaming_allowed=self._streaming_allowed,
                channel=channel,
                stop_event=self._stop_event,
            )

        async def _drive() -> FallbackOutcome[GenerationResult]:
            try:
                return await run_with_fallback(
                    self._plan.attempts,
                    _execute,
                    fixed=self._plan.fixed,
                    has_credential=lambda a: has_credential(a, self._snapshot),
                    stop_event=self._stop_event,
                )
            finally:
                channel.put_nowait(None)  # sentinel: orchestration finished

        task = asyncio.create_task(_drive())
        try:
            attempt_streamed = False
            reset_next = False
            while (event := await channel.get()) is not None:
                if isinstance(event, MetaEvent) and event.model is not None:
                    reset_next = reset_next or attempt_streamed
                    attempt_streamed = False
                elif isinstance(event, ChunkEvent):
                    attempt_streamed = True
                    if reset_next:
                        event = replace(event, reset=True)
                        reset_next = False
                yield event
                self.text_shown = attempt_streamed or reset_next
            self.outcome = await task
        finally:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass


def _make_runner(
    config: Config,
    snapshot: EnvSnapshot,
    provider_factory: ProviderFactory | None,
    log_name: str,
) -> GenerationRunner:
    attempt_logger = None
    if config.run.log_attempts:
        attempt_logger = AttemptLogger(Path(config.run.log_dir), log_name)
    return GenerationRunner(
        provider_factory or (lambda attempt: create_provider(attempt, snapshot, config)),
        timeout_s=config.run.timeout_s,
        max_output_tokens=config.run.max_output_tokens,
        retries=config.run.retries,
        attempt_logger=attempt_logger,
    )


def _metrics(result: GenerationResult, started: float) -> MetricsEvent:
    elapsed_ms = int((time.monotonic() - started) * 1000)
    summary, details = build_finish_line(
        elapsed_ms=elapsed_ms,
        model=result.model_id,
        usage=result.usage,
        cost_usd=result.cost_usd,
    )
    return MetricsEvent(summary=summary, details=details, elapsed_ms=elapsed_ms)


# --------------------------------------------------------------------------- #
# Public entry points                                                          #
# --------------------------------------------------------------------------- #

async def run_summary(
    request: SummaryRequest,
    *,
    config: Config,
    snapshot: EnvSnapshot,
    stop_event: asyncio.Event | None = None,
    provider_factory: ProviderFactory | None = None,
) -> AsyncIterator[RunEvent]:
    """Summarize request.content, yielding events until Done or Error."""
    started = time.monotonic()
    stop_event = stop_event or asyncio.Event()

    if request.task not in TASK_KINDS:
        yield ErrorEvent(message=f"Unknown task kind {request.task!r}.")
        return
    if not request.content.strip() and request.image_bytes is None:
        yield ErrorEvent(message="Nothing to summarize: the input is empty.")
        return

    yield MetaEvent(input_summary=describe_input(request.content, request.source))
    yield StatusEvent(text="Summarizing…")

    prompt = build_summary_prompt(request)
    try:
        plan = plan_attempts(
            request.model, request.task, config, snapshot, estimate_tokens(request.content),
        )
    except ValueError as exc:
        yield ErrorEvent(message=str(exc))
        return

    runner = _make_runner(config, snapshot, provider_factory, "summarize")
    drive = _AttemptDrive(
        runner, plan, prompt,
        snapshot=snapshot,
        streaming_allowed=config.run.stream,
        stop_event=stop_event,
    )
    async for event in drive.events():
        yield event

    outcome = drive.outcome
    assert outcome is not None
    if outcome.cancelled:
        yield ErrorEvent(message="Run cancelled.")
        return

    if outcome.succeeded:
        result = outcome.result
        if not result.streamed:
            yield ChunkEvent(text=result.text, reset=drive.text_shown)
        yield _metrics(result, started)
        yield DoneEvent()
        return

    if not plan.fixed and config.run.raw_fallback and request.content.strip():
        error = await compose_failure(outcome, plan.attempts, requested_model=plan.requested_model)
        logger.warning("No model produced a summary, returning raw content: %s", error)
        yield StatusEvent(text=f"No model available ({error}). Showing the extracted content.")
        yield ChunkEvent(text=request.content, reset=drive.text_shown)
        yield DoneEvent()
        return

    error = await compose_failure(outcome, plan.attempts, requested_model=plan.requested_model)
    yield ErrorEvent(message=str(error))


async def run_chat(
    request: ChatRequest,
    *,
    config: Config,
    snapshot: EnvSnapshot,
    stop_event: asyncio.Event | None = None,
    provider_factory: ProviderFactory | None = None,
) -> AsyncIterator[RunEvent]:
    """Answer the latest question about request.content; text is streamed verbatim."""
    started = time.monotonic()
    stop_event = stop_event or asyncio.Event()

    if not request.messages or request.messages[-1].role != "user":
        yield ErrorEvent(message="Chat needs a user message to answer.")
        return

    prompt = build_chat_prompt(request)
    try:
        plan = plan_attempts(
            request.model, "text", config, snapshot, estimate_tokens(request.content),
        )
    except ValueError as exc:
        yield ErrorEvent(message=str(exc))
        return

    runner = _make_runner(config, snapshot, provider_factory, "chat")
    drive = _AttemptDrive(
        runner, plan, prompt,
        snapshot=snapshot,
        streaming_allowed=config.run.stream,
        stop_event=stop_event,
    )
    async for event in drive.events():
        yield event

    outcome = drive.outcome
    assert outcome is not None
    if outcome.cancelled:
        yield ErrorEvent(message="Run cancelled.")
    elif outcome.succeeded:
        result = outcome.result
        if not result.streamed:
            yield ChunkEvent(text=result.text, reset=drive.text_shown)
        yield _metrics(result, started)
        yield DoneEvent()
    else:
        error = await compose_failure(outcome, plan.attempts, requested_model=plan.requested_model)
        yield ErrorEvent(message=str(error))
