"""
Google Gemini provider via the google-genai SDK (native async).

Some Gemini models reject streamGenerateContent; those errors are raised as
StreamingUnsupportedError so the runner can retry the same model without
streaming.
"""

from __future__ import annotations

import re

from google import genai
from google.genai import types

from summarycast.providers.base import (
    Completion,
    LLMProvider,
    Message,
    ProviderError,
    StreamingUnsupportedError,
    TokenUsage,
)

_UNSUPPORTED_RE = re.compile(
    r"does not support|not supported|Call ListModels|supported methods", re.IGNORECASE
)


def is_streaming_unsupported(message: str) -> bool:
    return "streamGenerateContent" in message and bool(_UNSUPPORTED_RE.search(message))


class GoogleProvider(LLMProvider):
    name = "google"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
    ) -> None:
        self._model_name = model
        self._last_usage: TokenUsage | None = None
        http_options = types.HttpOptions(base_url=base_url) if base_url else None
        self._client = genai.Client(api_key=api_key, http_options=http_options)

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
            contents, gen_config = self._request(messages, max_tokens)
            response = await self._client.aio.models.generate_content(
                model=self._model_name,
                contents=contents,
                config=gen_config,
            )
        except Exception as exc:
            raise ProviderError("google", str(exc), cause=exc) from exc
        return Completion(
            text=(response.text or "").strip(),
            usage=self._usage(response.usage_metadata),
        )

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ):
        self._last_usage = None
        try:
            contents, gen_config = self._request(messages, max_tokens)
            response_stream = await self._client.aio.models.generate_content_stream(
                model=self._model_name,
                contents=contents,
                config=gen_config,
            )
            async for chunk in response_stream:
                if chunk.usage_metadata is not None:
                    self._last_usage = self._usage(chunk.usage_metadata)
                if chunk.text:
                    yield chunk.text
        except Exception as exc:
            message = f"streamGenerateContent: {exc}"
            if is_streaming_unsupported(message):
                raise StreamingUnsupportedError("google", message, cause=exc) from exc
            raise ProviderError("google", str(exc), cause=exc) from exc

    def _request(self, messages: list[Message], max_tokens: int):
        system_content = next(
            (m.content for m in messages if m.role == "system"), None
        )
        contents = self._build_contents(
            [m for m in messages if m.role != "system"]
        )
        gen_config = types.GenerateContentConfig(
            max_output_tokens=max_tokens,
            system_instruction=system_content,
        )
        return contents, gen_config

    @staticmethod
    def _usage(meta) -> TokenUsage | None:
        if meta is None:
            return None
        return TokenUsage(
            prompt_tokens=meta.prompt_token_count,
            completion_tokens=meta.candidates_token_count,
            total_tokens=meta.total_token_count,
        )

    def _build_contents(self, messages: list[Message]) -> list:
        """
        Build the contents list for the google-genai SDK.

        Google uses "model" for assistant turns instead of "assistant".
        """
        contents = []
        for msg in messages:
            role = "model" if msg.role == "assistant" else "user"
            parts: list = []
            if msg.image_bytes:
                parts.append(
                    types.Part.from_bytes(
                        data=msg.image_bytes,
                        mime_type="image/png",
                    )
                )
            parts.append(types.Part(text=msg.content))
            contents.append(types.Content(role=role, parts=parts))
        return contents
