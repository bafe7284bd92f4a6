"""
Attempt orchestration: run candidates one at a time until one succeeds.

run_with_fallback() never raises for a per-attempt failure.  It records what
happened and returns a FallbackOutcome; the caller decides whether exhaustion
is an error or degrades to raw content.  compose_failure() turns an exhausted
outcome into the one error message the user should see.

Attempts are strictly sequential: provider calls cost money and must never
overlap for the same run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, TypeVar

from summarycast.errors import MissingCredentialError, SummaryError
from summarycast.gateway import EndpointFetcher, build_no_allowed_providers_message
from summarycast.providers.base import NoAllowedProvidersError
from summarycast.registry import Attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FallbackOutcome(Generic[T]):
    result: T | None = None
    used_attempt: Attempt | None = None
    last_error: Exception | None = None
    missing_required_envs: list[str] = field(default_factory=list)
    saw_no_allowed_providers: bool = False
    attempts_run: int = 0
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.used_attempt is not None

    def _add_missing(self, required_env: str) -> None:
        if required_env not in self.missing_required_envs:
            self.missing_required_envs.append(required_env)


async def run_with_fallback(
    attempts: list[Attempt],
    execute_one: Callable[[Attempt], Awaitable[T]],
    *,
    fixed: bool = False,
    has_credential: Callable[[Attempt], bool] | None = None,
    stop_event: asyncio.Event | None = None,
) -> FallbackOutcome[T]:
    """
    Execute attempts in order and stop at the first success.

    Fixed mode (a pinned model) runs exactly one attempt; its failure ends the
    run with the original error.  Auto mode skips attempts whose credential is
    missing, records failures and moves on.

    An attempt counts as ineligible when has_credential() says so, or when
    execute_one() raises MissingCredentialError before doing any work.
    """
    if fixed and len(attempts) != 1:
        raise ValueError(f"Fixed mode needs exactly one attempt, got {len(attempts)}")

    outcome: FallbackOutcome[T] = FallbackOutcome()

    for attempt in attempts:
        if stop_event is not None and stop_event.is_set():
            outcome.cancelled = True
            return outcome

        if has_credential is not None and not has_credential(attempt):
            outcome._add_missing(attempt.required_env)
            if fixed:
                outcome.last_error = MissingCredentialError(attempt.required_env, attempt.model_id)
                return outcome
            logger.info("Skipping %s: missing %s", attempt.model_id, attempt.required_env)
            continue

        outcome.attempts_run += 1
        try:
            result = await execute_one(attempt)
        except MissingCredentialError as exc:
            outcome._add_missing(exc.required_env)
            if fixed:
                outcome.last_error = exc
                return outcome
            logger.info("Skipping %s: %s", attempt.model_id, exc)
            continue
        except Exception as exc:
            if stop_event is not None and stop_event.is_set():
                outcome.cancelled = True
                return outcome
            outcome.last_error = exc
            if isinstance(exc, NoAllowedProvidersError):
                outcome.saw_no_allowed_providers = True
            if fixed:
                return outcome
            logger.warning("Attempt failed [model=%s transport=%s]: %s",
                           attempt.model_id, attempt.transport, exc)
            continue

        outcome.result = result
        outcome.used_attempt = attempt
        return outcome

    return outcome


async def compose_failure(
    outcome: FallbackOutcome,
    attempts: list[Attempt],
    *,
    requested_model: str = "auto",
    fetch_endpoints: EndpointFetcher | None = None,
) -> SummaryError:
    """
    Build the user-facing error for a run where no attempt succeeded.

    Preference: the gateway remediation message when a gateway refused every
    route; "Missing X, Y" when nothing got as far as a provider call; otherwise
    the last concrete error.  The remediation lookup is best-effort and never
    replaces the original error with its own failure.
    """
    last_error = outcome.last_error

    if outcome.saw_no_allowed_providers:
        try:
            message = await build_no_allowed_providers_message(attempts, fetch_endpoints)
        except Exception as exc:
            logger.warning("Could not build gateway remediation message: %s", exc)
        else:
            error = SummaryError(message)
            error.__cause__ = last_error
            return error

    if outcome.missing_required_envs and (last_error is None or isinstance(last_error, MissingCredentialError)):
        envs = ", ".join(sorted(outcome.missing_required_envs))
        return SummaryError(f"Missing {envs} for --model {requested_model}.")

    if last_error is not None:
        if isinstance(last_error, SummaryError):
            return last_error
        error = SummaryError(str(last_error))
        error.__cause__ = last_error
        return error

    return SummaryError(f"No model available for --model {requested_model}.")
