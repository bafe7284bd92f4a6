"""
Abstract LLM provider interface.

Every transport (direct API, OpenAI-compatible gateway, local CLI tool)
implements LLMProvider.  The Message NamedTuple is the canonical way to pass
conversation turns; a bare prompt string is wrapped into a single user turn
by as_messages().
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, NamedTuple


class Message(NamedTuple):
    role: str                    # "system" | "user" | "assistant"
    content: str                 # text content
    image_bytes: bytes | None = None  # set only on user turns for image tasks


Prompt = str | list[Message]


def as_messages(prompt: Prompt) -> list[Message]:
    if isinstance(prompt, str):
        return [Message(role="user", content=prompt)]
    return list(prompt)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class Completion:
    """Full response from a non-streaming call."""

    text: str
    usage: TokenUsage | None = None
    cost_usd: float | None = None


class LLMProvider(ABC):
    """Abstract base for all generation backends."""

    name: str = "llm"

    @property
    @abstractmethod
    def supports_streaming(self) -> bool:
        """False for transports that can only run to completion."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ) -> Completion:
        """
        Send messages and return the whole response.

        Raises:
            ProviderError: Wraps provider-specific exceptions for uniform handling.
        """
        ...

    @abstractmethod
    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ) -> AsyncIterator[str]:
        """
        Yield raw text fragments as the model produces them.

        Implementors must define this as an async generator (async def + yield).
        Fragments may be deltas or cumulative snapshots; callers fold them with
        merge_streaming_chunk().

        Raises:
            ProviderError: Wraps provider-specific exceptions for uniform handling.
        """
        raise NotImplementedError
        yield  # marks this as an async generator so subclasses can too

    @property
    def last_usage(self) -> TokenUsage | None:
        """Usage reported by the most recent stream(), if the provider sent any."""
        return None


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider: str, message: str, cause: Exception | None = None) -> None:
        self.provider = provider
        self.cause = cause
        self.detail = message
        super().__init__(f"[{provider}] {message}")


class EmptyOutputError(ProviderError):
    """The call succeeded but produced no usable text."""


class StreamingUnsupportedError(ProviderError):
    """The provider rejected a streamed request for this model or request shape."""


class ProviderTimeoutError(ProviderError):
    """No response (or no first byte, when streaming) within the timeout."""


class NoAllowedProvidersError(ProviderError):
    """The gateway had no permitted upstream provider for the requested model."""
