"""
Provider capability registry and attempt construction.

Answers two questions for a run:
  - parse_requested_model(): the user pinned a model; what single Attempt is it?
  - rank_attempts(): auto mode; which Attempts, in which order?

Everything here is pure with respect to its inputs (the config and an
EnvSnapshot).  No network, no filesystem, no os.environ.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Literal, Mapping

from summarycast.config import CLI_TOOLS, AutoRule, Config, EnvSnapshot, TokenBand
from summarycast.model_id import normalize_model_id, parse_model_id

logger = logging.getLogger(__name__)

TransportKind = Literal["direct", "gateway", "local-tool"]
TaskKind = Literal["text", "image", "video-understanding", "website", "video-transcript-based"]
TASK_KINDS: tuple[str, ...] = ("text", "image", "video-understanding", "website", "video-transcript-based")


DEFAULT_CLI_MODELS = {
    "claude": "sonnet",
    "codex": "gpt-5.2",
    "gemini": "gemini-3-flash-preview",
    "agent": "gpt-5.2",
}

# Models the gateway does not carry; never add a gateway fallback for them.
NATIVE_ONLY_MODELS = frozenset({"xai/grok-4-fast-non-reasoning"})


# --------------------------------------------------------------------------- #
# Capabilities                                                                 #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class ModelCapabilities:
    provider: str
    required_env: str
    transport: TransportKind
    text: bool = True
    image: bool = False
    video: bool = False
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None

    def supports(self, task: str) -> bool:
        match task:
            case "image":
                return self.image
            case "video-understanding":
                return self.video
            case _:
                return self.text


_PROVIDER_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "xai": "XAI_API_KEY",
    "zai": "Z_AI_API_KEY",
    "nvidia": "NVIDIA_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

# Alternate names accepted for the same credential.
_ENV_ALIASES = {
    "GEMINI_API_KEY": ("GEMINI_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY"),
    "Z_AI_API_KEY": ("Z_AI_API_KEY", "ZAI_API_KEY"),
}

_PROVIDER_MEDIA = {
    # provider: (image, video)
    "google": (True, True),
    "openai": (True, False),
    "anthropic": (True, False),
    "xai": (True, False),
    "zai": (False, False),
    "nvidia": (False, False),
}

# (max_input_tokens, max_output_tokens) for models we know about.
_MODEL_LIMITS: dict[str, tuple[int | None, int | None]] = {
    "google/gemini-3-flash-preview": (1_048_576, 65_536),
    "google/gemini-2.5-flash-lite-preview-09-2025": (1_048_576, 65_536),
    "openai/gpt-5-mini": (400_000, 128_000),
    "anthropic/claude-sonnet-4-5": (200_000, 64_000),
    "xai/grok-4-fast-non-reasoning": (2_000_000, 30_000),
}


def cli_required_env(tool: str) -> str:
    return f"CLI_{tool.upper()}"


def capabilities_for(model_id: str) -> ModelCapabilities:
    """Look up what a model id (any accepted spelling) can do and what it needs."""
    lower = model_id.strip().lower()
    if lower.startswith("cli/"):
        tool = lower.split("/")[1]
        return ModelCapabilities(
            provider=tool, required_env=cli_required_env(tool), transport="local-tool",
        )
    if lower.startswith("openrouter/"):
        inner = lower.removeprefix("openrouter/")
        author = inner.split("/", 1)[0]
        image, _ = _PROVIDER_MEDIA.get(author, (False, False))
        max_in, max_out = _MODEL_LIMITS.get(inner, (None, None))
        return ModelCapabilities(
            provider="openrouter", required_env="OPENROUTER_API_KEY", transport="gateway",
            image=image, max_input_tokens=max_in, max_output_tokens=max_out,
        )
    if lower.startswith("nvidia/"):
        return ModelCapabilities(provider="nvidia", required_env="NVIDIA_API_KEY", transport="direct")

    parsed = parse_model_id(lower)
    image, video = _PROVIDER_MEDIA.get(parsed.provider, (False, False))
    max_in, max_out = _MODEL_LIMITS.get(parsed.canonical, (None, None))
    return ModelCapabilities(
        provider=parsed.provider,
        required_env=_PROVIDER_ENV[parsed.provider],
        transport="direct",
        image=image,
        video=video,
        max_input_tokens=max_in,
        max_output_tokens=max_out,
    )


def required_env_for(model_id: str) -> str:
    return capabilities_for(model_id).required_env


def env_has_key(env: Mapping[str, str], required_env: str) -> bool:
    names = _ENV_ALIASES.get(required_env, (required_env,))
    return any((env.get(name) or "").strip() for name in names)


def resolve_key(env: Mapping[str, str], required_env: str) -> str | None:
    for name in _ENV_ALIASES.get(required_env, (required_env,)):
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


# --------------------------------------------------------------------------- #
# Attempt                                                                      #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class Attempt:
    """One candidate way to produce a summary.  Created once, never mutated."""

    transport: TransportKind
    model_id: str              # user-facing id: "google/…", "openrouter/…", "cli/claude/sonnet"
    provider: str              # "google", "openrouter", "claude", …
    native_model: str          # id sent to the provider API or tool
    required_env: str
    gateway_providers: tuple[str, ...] | None = None
    force_stream_off: bool = False
    api_key_override: str | None = None
    base_url_override: str | None = None
    debug: str = field(default="", compare=False)

    @property
    def is_local_tool(self) -> bool:
        return self.transport == "local-tool"

    @property
    def max_output_tokens(self) -> int | None:
        return capabilities_for(self.model_id).max_output_tokens

    def dedup_key(self) -> str:
        providers = ",".join(self.gateway_providers or ())
        return f"{self.transport}:{self.model_id}:{providers}"


def has_credential(attempt: Attempt, snapshot: EnvSnapshot) -> bool:
    if attempt.api_key_override:
        return True
    if attempt.is_local_tool:
        return bool(snapshot.cli_available.get(attempt.provider, False))
    return env_has_key(snapshot.env, attempt.required_env)


def eligible_attempts(attempts: list[Attempt], snapshot: EnvSnapshot) -> list[Attempt]:
    return [a for a in attempts if has_credential(a, snapshot)]


def _gateway_attempt(inner_model: str, providers: tuple[str, ...] | None) -> Attempt:
    inner = inner_model.strip().lower()
    return Attempt(
        transport="gateway",
        model_id=f"openrouter/{inner}",
        provider="openrouter",
        native_model=inner,
        required_env="OPENROUTER_API_KEY",
        gateway_providers=providers,
    )


def _cli_attempt(tool: str, model: str | None) -> Attempt:
    resolved = (model or "").strip() or DEFAULT_CLI_MODELS[tool]
    return Attempt(
        transport="local-tool",
        model_id=f"cli/{tool}/{resolved}",
        provider=tool,
        native_model=resolved,
        required_env=cli_required_env(tool),
        force_stream_off=True,
    )


def _direct_attempt(model_id: str) -> Attempt:
    parsed = parse_model_id(model_id)
    return Attempt(
        transport="direct",
        model_id=parsed.canonical,
        provider=parsed.provider,
        native_model=parsed.model,
        required_env=_PROVIDER_ENV[parsed.provider],
    )


def parse_requested_model(raw: str, snapshot: EnvSnapshot | None = None) -> Attempt | None:
    """
    Turn a user-pinned model id into a single Attempt; None means "auto".

    Raises:
        ValueError: the id is malformed or names an unknown provider.
    """
    trimmed = raw.strip()
    if not trimmed:
        raise ValueError("Missing model id")
    lower = trimmed.lower()
    if lower == "auto":
        return None

    gateway_providers = _gateway_providers_from(snapshot)

    if lower.startswith("openrouter/"):
        inner = trimmed[len("openrouter/"):].strip()
        if not inner:
            raise ValueError("Invalid model id: openrouter/… is missing the OpenRouter model id")
        if "/" not in inner:
            raise ValueError(
                f'Invalid OpenRouter model id "{inner}". Expected "author/slug" (e.g. "openai/gpt-5-mini").'
            )
        return _gateway_attempt(inner, gateway_providers)

    if lower.startswith("nvidia/"):
        model = trimmed[len("nvidia/"):].strip()
        if not model:
            raise ValueError("Invalid model id: nvidia/… is missing the model id")
        return Attempt(
            transport="direct",
            model_id=f"nvidia/{model}",
            provider="nvidia",
            native_model=model,
            required_env="NVIDIA_API_KEY",
        )

    if lower.startswith("cli/"):
        parts = [p.strip() for p in trimmed.split("/") if p.strip()]
        tool = parts[1].lower() if len(parts) > 1 else ""
        if tool not in CLI_TOOLS:
            raise ValueError(f'Invalid CLI model id "{trimmed}". Expected cli/<provider>/<model>.')
        return _cli_attempt(tool, "/".join(parts[2:]))

    if "/" not in trimmed:
        raise ValueError(
            f'Unknown model "{trimmed}". Expected "auto" or a provider-prefixed id like '
            "openai/..., google/..., anthropic/..., xai/..., zai/..., nvidia/..., openrouter/... or cli/...."
        )
    return _direct_attempt(trimmed)


# --------------------------------------------------------------------------- #
# Auto ranking                                                                 #
# --------------------------------------------------------------------------- #

_DEFAULT_TEXT = [
    "google/gemini-3-flash-preview",
    "openai/gpt-5-mini",
    "anthropic/claude-sonnet-4-5",
]

DEFAULT_RULES: list[AutoRule] = [
    AutoRule(
        when=["video-understanding"],
        candidates=["google/gemini-3-flash-preview", "google/gemini-2.5-flash-lite-preview-09-2025"],
    ),
    AutoRule(when=["image"], candidates=list(_DEFAULT_TEXT)),
    AutoRule(
        when=["website", "video-transcript-based", "text"],
        bands=[
            TokenBand(max_tokens=50_000, candidates=list(_DEFAULT_TEXT)),
            TokenBand(max_tokens=200_000, candidates=list(_DEFAULT_TEXT)),
            TokenBand(candidates=["xai/grok-4-fast-non-reasoning", *_DEFAULT_TEXT]),
        ],
    ),
    AutoRule(candidates=[*_DEFAULT_TEXT, "xai/grok-4-fast-non-reasoning"]),
]

# Older configs use these names in `when`.
_KIND_ALIASES = {
    "video-understanding": {"video"},
    "video-transcript-based": {"youtube"},
}


def _rule_matches(rule: AutoRule, task: str) -> bool:
    if not rule.when:
        return True
    names = {task} | _KIND_ALIASES.get(task, set())
    return any(kind in names for kind in rule.when)


def _band_matches(band: TokenBand, prompt_tokens: int | None) -> bool:
    if band.min_tokens is None and band.max_tokens is None:
        return True
    if prompt_tokens is None:
        return False
    low = band.min_tokens or 0
    high = band.max_tokens if band.max_tokens is not None else float("inf")
    return low <= prompt_tokens <= high


def resolve_rule_candidates(task: str, rules: list[AutoRule], prompt_tokens: int | None) -> list[str]:
    rules = rules or DEFAULT_RULES
    for rule in rules:
        if not _rule_matches(rule, task):
            continue
        if rule.candidates:
            return list(rule.candidates)
        for band in rule.bands:
            if _band_matches(band, prompt_tokens):
                return list(band.candidates)
    return list(rules[-1].candidates)


def _cli_candidates(config: Config) -> list[str]:
    out: list[str] = []
    for tool in config.cli.enabled:
        model = config.cli.tool(tool).model or DEFAULT_CLI_MODELS[tool]
        candidate = f"cli/{tool}/{model}"
        if candidate not in out:
            out.append(candidate)
    return out


def _gateway_providers_from(snapshot: EnvSnapshot | None) -> tuple[str, ...] | None:
    if snapshot is None:
        return None
    raw = snapshot.get("OPENROUTER_PROVIDERS")
    if not raw:
        return None
    providers = tuple(p.strip() for p in raw.split(",") if p.strip())
    return providers or None


def rank_attempts(
    task: str,
    snapshot: EnvSnapshot,
    config: Config | None = None,
    prompt_tokens: int | None = None,
) -> list[Attempt]:
    """
    Build the ordered fallback chain for a task kind.

    Excluded outright: models that cannot handle the task, disabled providers,
    local tools that are not installed, and models whose known input ceiling
    is below prompt_tokens.  API attempts without a key stay in the chain so
    the orchestrator can report which keys were missing.
    """
    if task not in TASK_KINDS:
        raise ValueError(f"Unknown task kind {task!r}; expected one of {TASK_KINDS}")
    config = config or Config()
    requires_video = task == "video-understanding"
    gateway_providers = _gateway_providers_from(snapshot)
    has_gateway_key = env_has_key(snapshot.env, "OPENROUTER_API_KEY")

    candidates = resolve_rule_candidates(task, config.model.rules, prompt_tokens)
    if not requires_video:
        candidates = _cli_candidates(config) + candidates

    attempts: list[Attempt] = []

    def add(attempt: Attempt) -> None:
        caps = capabilities_for(attempt.model_id)
        if not caps.supports(task):
            logger.debug("Skipping %s: no %s support", attempt.model_id, task)
            return
        if attempt.provider in snapshot.disabled_providers:
            logger.debug("Skipping %s: provider disabled", attempt.model_id)
            return
        if attempt.is_local_tool and not snapshot.cli_available.get(attempt.provider, False):
            logger.debug("Skipping %s: tool not available", attempt.model_id)
            return
        if (
            not attempt.is_local_tool
            and prompt_tokens is not None
            and caps.max_input_tokens is not None
            and prompt_tokens > caps.max_input_tokens
        ):
            logger.debug("Skipping %s: prompt exceeds %d input tokens", attempt.model_id, caps.max_input_tokens)
            return
        keyed = "yes" if has_credential(attempt, snapshot) else "no"
        debug = (
            f"model={attempt.model_id} transport={attempt.transport} order={len(attempts) + 1} "
            f"key={keyed}({attempt.required_env}) "
            f"promptTok={prompt_tokens if prompt_tokens is not None else 'unknown'} "
            f"maxIn={caps.max_input_tokens if caps.max_input_tokens is not None else 'unknown'}"
        )
        attempts.append(replace(attempt, debug=debug))

    for raw in candidates:
        candidate = raw.strip()
        if not candidate:
            continue
        lower = candidate.lower()
        try:
            if lower.startswith("cli/"):
                add(_cli_attempt(lower.split("/")[1], "/".join(candidate.split("/")[2:])))
                continue
            if lower.startswith("openrouter/"):
                if not requires_video:
                    add(_gateway_attempt(candidate[len("openrouter/"):], gateway_providers))
                continue
            direct = _direct_attempt(candidate)
        except (ValueError, KeyError) as exc:
            logger.warning("Ignoring invalid auto candidate %r: %s", candidate, exc)
            continue

        add(direct)
        slug = normalize_model_id(candidate)
        if not requires_video and has_gateway_key and slug not in NATIVE_ONLY_MODELS:
            add(_gateway_attempt(slug, gateway_providers))

    seen: set[str] = set()
    unique: list[Attempt] = []
    for attempt in attempts:
        key = attempt.dedup_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(attempt)
    return unique


def with_provider_overrides(attempt: Attempt, config: Config) -> Attempt:
    """Point the attempt at the base_url configured for its provider (self-hosted endpoints)."""
    prov = config.providers.get(attempt.provider)
    if prov is None or not prov.base_url or attempt.is_local_tool:
        return attempt
    return replace(attempt, base_url_override=prov.base_url)
