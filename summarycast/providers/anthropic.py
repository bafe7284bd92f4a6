"""
Anthropic (Claude) provider.

Anthropic's API separates the system prompt from user/assistant turns,
so the system message is extracted from the messages list and passed
via the dedicated `system` parameter.

Access errors (bad key, model not enabled for the key) are rewritten into a
message that says which model was refused and what to check.
"""

from __future__ import annotations

import base64

import anthropic

from summarycast.providers.base import (
    Completion,
    LLMProvider,
    Message,
    ProviderError,
    ProviderTimeoutError,
    TokenUsage,
)

_ACCESS_STATUSES = (401, 403, 404)


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
    ) -> None:
        self._model = model
        self._last_usage: TokenUsage | None = None
        self._client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url)

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
            system_content, user_messages = self._split(messages)
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=system_content,
                messages=user_messages,  # type: ignore[arg-type]
            )
        except Exception as exc:
            raise self._error(exc) from exc
        text = "".join(block.text for block in response.content if hasattr(block, "text"))
        return Completion(text=text.strip(), usage=self._usage(response.usage))

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ):
        self._last_usage = None
        try:
            system_content, user_messages = self._split(messages)
            async with self._client.messages.stream(
                model=self._model,
                max_tokens=max_tokens,
                system=system_content,
                messages=user_messages,  # type: ignore[arg-type]
            ) as stream:
                async for text in stream.text_stream:
                    yield text
                final = await stream.get_final_message()
                self._last_usage = self._usage(final.usage)
        except Exception as exc:
            raise self._error(exc) from exc

    def _split(self, messages: list[Message]) -> tuple[str, list[dict]]:
        system_content = next(
            (m.content for m in messages if m.role == "system"), ""
        )
        return system_content, self._build_api_messages(
            [m for m in messages if m.role != "system"]
        )

    @staticmethod
    def _usage(raw) -> TokenUsage | None:
        if raw is None:
            return None
        prompt = getattr(raw, "input_tokens", None)
        completion = getattr(raw, "output_tokens", None)
        total = prompt + completion if prompt is not None and completion is not None else None
        return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def _error(self, exc: Exception) -> ProviderError:
        if isinstance(exc, anthropic.APITimeoutError):
            return ProviderTimeoutError("anthropic", f"LLM request timed out: {exc}", cause=exc)
        status = getattr(exc, "status_code", None)
        if status in _ACCESS_STATUSES or "not_found_error" in str(exc):
            return ProviderError(
                "anthropic",
                f"Anthropic API rejected model \"{self._model}\" (HTTP {status}). "
                "Your ANTHROPIC_API_KEY may not have access to this model, or the id is wrong. "
                "Try a versioned id such as claude-sonnet-4-5.",
                cause=exc,
            )
        return ProviderError("anthropic", str(exc), cause=exc)

    def _build_api_messages(self, messages: list[Message]) -> list[dict]:
        result: list[dict] = []
        for msg in messages:
            if msg.image_bytes:
                b64 = base64.b64encode(msg.image_bytes).decode()
                result.append({
                    "role": msg.role,
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": "image/png",
                                "data": b64,
                            },
                        },
                        {"type": "text", "text": msg.content},
                    ],
                })
            else:
                result.append({"role": msg.role, "content": msg.content})
        return result
