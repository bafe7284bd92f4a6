"""
OpenAI provider. It also handles any OpenAI-compatible API: the OpenRouter
gateway, xAI, Z.AI, NVIDIA and self-hosted endpoints.

Pass base_url to redirect requests to a compatible endpoint.

Parameter compatibility notes:
- max_completion_tokens: used by all models (replaces the deprecated max_tokens).
- Streamed calls ask for a trailing usage chunk via stream_options.
- Gateway routing hints go in the request body as {"provider": {"only": [...]}}.
"""

from __future__ import annotations

import base64
import logging

from openai import APITimeoutError, AsyncOpenAI

from summarycast.providers.base import (
    Completion,
    LLMProvider,
    Message,
    NoAllowedProvidersError,
    ProviderError,
    ProviderTimeoutError,
    TokenUsage,
)

logger = logging.getLogger(__name__)

_NO_ALLOWED_PROVIDERS = "no allowed providers"


def _classify(provider: str, exc: Exception) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    message = str(exc)
    if isinstance(exc, APITimeoutError):
        return ProviderTimeoutError(provider, f"LLM request timed out: {message}", cause=exc)
    if _NO_ALLOWED_PROVIDERS in message.lower():
        return NoAllowedProvidersError(provider, message, cause=exc)
    return ProviderError(provider, message, cause=exc)


def _usage_from(raw) -> TokenUsage | None:
    if raw is None:
        return None
    return TokenUsage(
        prompt_tokens=getattr(raw, "prompt_tokens", None),
        completion_tokens=getattr(raw, "completion_tokens", None),
        total_tokens=getattr(raw, "total_tokens", None),
    )


class OpenAIProvider(LLMProvider):
    """
    Supports all OpenAI chat models and OpenAI-compatible endpoints.

    For the OpenRouter gateway, pass:
        base_url="https://openrouter.ai/api/v1"
        api_key=<OPENROUTER_API_KEY>
        routing_providers=("groq", "cerebras")   # optional
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        provider_label: str = "openai",
        default_headers: dict[str, str] | None = None,
        routing_providers: tuple[str, ...] | None = None,
    ) -> None:
        self._model = model
        self._provider_label = provider_label
        self._routing_providers = routing_providers
        self._last_usage: TokenUsage | None = None
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers=default_headers,
        )
        self.name = provider_label

    @property
    def supports_streaming(self) -> bool:
        return True

    @property
    def last_usage(self) -> TokenUsage | None:
        return self._last_usage

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ) -> Completion:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=self._build_api_messages(messages),  # type: ignore[arg-type]
                max_completion_tokens=max_tokens,
                **self._request_kwargs(),
            )
        except Exception as exc:
            logger.error("complete() failed [provider=%s model=%s]: %s",
                         self._provider_label, self._model, exc, exc_info=True)
            raise _classify(self._provider_label, exc) from exc
        text = (response.choices[0].message.content or "") if response.choices else ""
        return Completion(text=text.strip(), usage=_usage_from(response.usage))

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ):
        self._last_usage = None
        try:
            async with await self._client.chat.completions.create(
                model=self._model,
                messages=self._build_api_messages(messages),  # type: ignore[arg-type]
                max_completion_tokens=max_tokens,
                stream=True,
                stream_options={"include_usage": True},
                **self._request_kwargs(),
            ) as stream:
                async for chunk in stream:
                    if chunk.usage is not None:
                        self._last_usage = _usage_from(chunk.usage)
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta.content
                    if delta:
                        yield delta
        except Exception as exc:
            logger.error("stream() failed [provider=%s model=%s]: %s",
                         self._provider_label, self._model, exc, exc_info=True)
            raise _classify(self._provider_label, exc) from exc

    def _request_kwargs(self) -> dict:
        if not self._routing_providers:
            return {}
        return {"extra_body": {"provider": {"only": list(self._routing_providers)}}}

    def _build_api_messages(self, messages: list[Message]) -> list[dict]:
        result: list[dict] = []
        for msg in messages:
            if msg.image_bytes:
                b64 = base64.b64encode(msg.image_bytes).decode()
                result.append({
                    "role": msg.role,
                    "content": [
                        {"type": "text", "text": msg.content},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{b64}"},
                        },
                    ],
                })
            else:
                result.append({"role": msg.role, "content": msg.content})
        return result
