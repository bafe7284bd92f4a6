"""Errors raised outside individual provider calls."""

from __future__ import annotations


class SummaryError(Exception):
    """A run could not produce a summary; the message is shown to the user as-is."""


class MissingCredentialError(SummaryError):
    """An attempt's required key or local tool is not available."""

    def __init__(self, required_env: str, model_id: str | None = None) -> None:
        self.required_env = required_env
        self.model_id = model_id
        suffix = f" for {model_id}" if model_id else ""
        super().__init__(f"Missing {required_env}{suffix}")


class StreamProtocolError(SummaryError):
    """The event stream broke before a terminal event arrived."""


class RunCancelledError(SummaryError):
    """The run's stop signal was set; work stopped without a result."""
