"""
Provider factory.

create_provider() is the single entry point for turning an Attempt into an
LLMProvider.  xAI, Z.AI, NVIDIA and the OpenRouter gateway are OpenAI-compatible
and are handled as special cases of OpenAIProvider with a custom base_url.

To add a new provider:
  1. Create summarycast/providers/<name>.py implementing LLMProvider
  2. Add a case here in create_provider()
  3. Teach summarycast/registry.py its required key and capabilities
"""

from __future__ import annotations

from summarycast.config import Config, EnvSnapshot
from summarycast.errors import MissingCredentialError
from summarycast.providers.base import (
    Completion,
    EmptyOutputError,
    LLMProvider,
    Message,
    NoAllowedProvidersError,
    ProviderError,
    ProviderTimeoutError,
    StreamingUnsupportedError,
    TokenUsage,
)
from summarycast.providers.openai import OpenAIProvider
from summarycast.providers.anthropic import AnthropicProvider
from summarycast.providers.google import GoogleProvider
from summarycast.providers.cli import CliProvider
from summarycast.registry import Attempt, resolve_key

__all__ = [
    "Completion",
    "EmptyOutputError",
    "LLMProvider",
    "Message",
    "NoAllowedProvidersError",
    "ProviderError",
    "ProviderTimeoutError",
    "StreamingUnsupportedError",
    "TokenUsage",
    "OpenAIProvider",
    "AnthropicProvider",
    "GoogleProvider",
    "CliProvider",
    "create_provider",
]

GATEWAY_BASE_URL = "https://openrouter.ai/api/v1"
_XAI_BASE_URL = "https://api.x.ai/v1"
_ZAI_BASE_URL = "https://api.z.ai/api/paas/v4"
_NVIDIA_BASE_URL = "https://integrate.api.nvidia.com/v1"


def _gateway_headers() -> dict[str, str]:
    # OpenRouter attributes traffic to the calling app through these headers.
    return {
        "HTTP-Referer": "https://github.com/summarycast/summarycast",
        "X-Title": "summarycast",
    }


def _env_base_url(snapshot: EnvSnapshot, *keys: str) -> str | None:
    for key in keys:
        value = snapshot.get(key)
        if value:
            return value
    return None


def create_provider(
    attempt: Attempt,
    snapshot: EnvSnapshot,
    config: Config | None = None,
) -> LLMProvider:
    """
    Instantiate the LLMProvider that executes the given attempt.

    Raises:
        MissingCredentialError: the attempt's key is not in the snapshot.
        ValueError: the attempt names a provider this factory does not know.
    """
    config = config or Config()

    if attempt.is_local_tool:
        tool_cfg = config.cli.tool(attempt.provider)
        return CliProvider(
            tool=attempt.provider,
            binary=snapshot.cli_binaries.get(attempt.provider, attempt.provider),
            model=attempt.native_model,
            extra_args=tool_cfg.extra_args,
            env={k: v for k, v in snapshot.env.items() if k != "PATH"},
        )

    token = attempt.api_key_override or resolve_key(snapshot.env, attempt.required_env)
    if not token:
        raise MissingCredentialError(attempt.required_env, attempt.model_id)

    match attempt.provider:
        case "openai":
            return OpenAIProvider(
                api_key=token,
                model=attempt.native_model,
                base_url=attempt.base_url_override or _env_base_url(snapshot, "OPENAI_BASE_URL"),
            )
        case "anthropic":
            return AnthropicProvider(
                api_key=token,
                model=attempt.native_model,
                base_url=attempt.base_url_override or _env_base_url(snapshot, "ANTHROPIC_BASE_URL"),
            )
        case "google":
            return GoogleProvider(
                api_key=token,
                model=attempt.native_model,
                base_url=attempt.base_url_override,
            )
        case "openrouter":
            return OpenAIProvider(
                api_key=token,
                model=attempt.native_model,
                base_url=attempt.base_url_override or GATEWAY_BASE_URL,
                provider_label="openrouter",
                default_headers=_gateway_headers(),
                routing_providers=attempt.gateway_providers,
            )
        case "xai" | "zai" | "nvidia":
            default_url = {
                "xai": _env_base_url(snapshot, "XAI_BASE_URL") or _XAI_BASE_URL,
                "zai": _env_base_url(snapshot, "Z_AI_BASE_URL", "ZAI_BASE_URL") or _ZAI_BASE_URL,
                "nvidia": _NVIDIA_BASE_URL,
            }[attempt.provider]
            return OpenAIProvider(
                api_key=token,
                model=attempt.native_model,
                base_url=attempt.base_url_override or default_url,
                provider_label=attempt.provider,
            )
        case _:
            raise ValueError(
                f"Unknown provider: '{attempt.provider}'. "
                "Supported: openai, anthropic, google, xai, zai, nvidia, openrouter, cli/*"
            )
