"""
Gateway-style model identifiers: "<provider>/<model>".

Users type model names loosely ("gemini-3-flash-preview", "claude-sonnet-4",
"OpenAI/GPT-5-mini").  Everything downstream works with the canonical,
lower-cased "<provider>/<model>" form produced here.
"""

from __future__ import annotations

from typing import Literal, NamedTuple

LlmProvider = Literal["xai", "openai", "google", "anthropic", "zai"]

PROVIDERS: tuple[str, ...] = ("xai", "openai", "google", "anthropic", "zai")

# Bare generation names are not valid Anthropic API ids; the "-0" alias
# always points at the latest point release for that generation.
_ANTHROPIC_ALIASES = {
    "claude-sonnet-4": "claude-sonnet-4-0",
    "claude-opus-4": "claude-opus-4-0",
}

_LEGACY_ALIASES = {
    "grok-4-1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
    "grok-4.1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
    "xai/grok-4-1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
    "xai/grok-4.1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
}

# Bare names are mapped to a provider by prefix; anything else is OpenAI.
_PREFIX_PROVIDERS = (
    ("grok-", "xai"),
    ("gemini-", "google"),
    ("claude-", "anthropic"),
)


class ParsedModelId(NamedTuple):
    provider: str   # one of PROVIDERS
    model: str      # provider-native id, no prefix
    canonical: str  # "<provider>/<model>"


def normalize_model_id(raw: str) -> str:
    """
    Return the canonical "<provider>/<model>" form of a user-supplied id.

    Raises:
        ValueError: empty id, unknown provider prefix, or nothing after the prefix.
    """
    normalized = raw.strip().lower()
    if not normalized:
        raise ValueError("Missing model id")

    if normalized in _LEGACY_ALIASES:
        return _LEGACY_ALIASES[normalized]

    alias = _ANTHROPIC_ALIASES.get(normalized.removeprefix("anthropic/"))
    if alias:
        return f"anthropic/{alias}"

    provider, sep, model = normalized.partition("/")
    if not sep:
        for prefix, inferred in _PREFIX_PROVIDERS:
            if normalized.startswith(prefix):
                return f"{inferred}/{normalized}"
        return f"openai/{normalized}"

    if provider not in PROVIDERS:
        raise ValueError(
            f'Unsupported model provider "{provider}". '
            "Use xai/..., openai/..., google/..., anthropic/..., or zai/..."
        )
    if not model.strip():
        raise ValueError("Missing model id after provider prefix")
    return f"{provider}/{model}"


def parse_model_id(raw: str) -> ParsedModelId:
    canonical = normalize_model_id(raw)
    provider, _, model = canonical.partition("/")
    return ParsedModelId(provider=provider, model=model, canonical=canonical)
