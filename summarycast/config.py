"""
Configuration loading from config.yaml, plus the per-run environment snapshot.

Uses typed dataclasses throughout so the rest of the app gets IDE
completion and type-checker support without touching raw dicts.

config.yaml is optional: a missing default file means "all defaults",
while an explicitly requested path that does not exist is an error.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping

import yaml

CliTool = Literal["claude", "codex", "gemini", "agent"]
CLI_TOOLS: tuple[str, ...] = ("claude", "codex", "gemini", "agent")

# Environment keys a run is allowed to see.  Anything else in os.environ
# is ignored so a daemon never leaks unrelated variables into providers.
ENV_KEYS: tuple[str, ...] = (
    "PATH",
    "XAI_API_KEY",
    "XAI_BASE_URL",
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENROUTER_API_KEY",
    "OPENROUTER_PROVIDERS",
    "Z_AI_API_KEY",
    "ZAI_API_KEY",
    "Z_AI_BASE_URL",
    "ZAI_BASE_URL",
    "NVIDIA_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_GENERATIVE_AI_API_KEY",
    "GOOGLE_API_KEY",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "SUMMARIZE_MODEL",
    "CLAUDE_PATH",
    "CODEX_PATH",
    "GEMINI_PATH",
    "AGENT_PATH",
)

_CLI_PATH_ENV = {
    "claude": "CLAUDE_PATH",
    "codex": "CODEX_PATH",
    "gemini": "GEMINI_PATH",
    "agent": "AGENT_PATH",
}


@dataclass
class RunConfig:
    timeout_s: int = 120          # bounds the connection phase of one attempt
    stream: bool = True
    max_output_tokens: int = 2048
    retries: int = 0              # extra non-streaming tries on timeout/empty output
    raw_fallback: bool = True     # auto mode: show raw content when every model fails
    log_attempts: bool = False
    log_dir: str = "./logs"


@dataclass
class TokenBand:
    candidates: list[str]
    min_tokens: int | None = None
    max_tokens: int | None = None


@dataclass
class AutoRule:
    when: list[str] = field(default_factory=list)  # empty = any task kind
    candidates: list[str] = field(default_factory=list)
    bands: list[TokenBand] = field(default_factory=list)


@dataclass
class ModelConfig:
    id: str | None = None                 # fixed model; None = auto
    rules: list[AutoRule] = field(default_factory=list)

    @property
    def is_auto(self) -> bool:
        return self.id is None


@dataclass
class CliToolConfig:
    binary: str | None = None
    model: str | None = None
    extra_args: list[str] = field(default_factory=list)


@dataclass
class CliConfig:
    enabled: list[str] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    tools: dict[str, CliToolConfig] = field(default_factory=dict)

    def tool(self, name: str) -> CliToolConfig:
        return self.tools.get(name) or CliToolConfig()


@dataclass
class ProviderConfig:
    api_key: str = ""
    base_url: str | None = None
    enabled: bool = True


@dataclass
class DaemonConfig:
    host: str = "127.0.0.1"
    port: int = 8787
    token_path: str = ".summarycast_token.json"
    run_ttl_s: int = 300          # finished runs stay replayable this long


@dataclass
class Config:
    run: RunConfig = field(default_factory=RunConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    models: dict[str, ModelConfig] = field(default_factory=dict)  # named presets
    cli: CliConfig = field(default_factory=CliConfig)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)

    @property
    def disabled_providers(self) -> frozenset[str]:
        return frozenset(name for name, p in self.providers.items() if not p.enabled)

    def resolve_model(self, requested: str | None) -> ModelConfig:
        """
        Pick the model selection for a run.

        Order: explicit request > SUMMARIZE_MODEL (handled by the caller) >
        config `model`.  A request naming a preset expands to that preset;
        "auto" keeps the configured rules.
        """
        if not requested:
            return self.model
        key = requested.strip()
        if key.lower() == "auto":
            return ModelConfig(id=None, rules=self.model.rules)
        if key in self.models:
            return self.models[key]
        return ModelConfig(id=key)


def load_config(path: str | Path | None = None) -> Config:
    """
    Load and validate config.yaml.

    Raises:
        FileNotFoundError: an explicitly requested config file is missing.
        ValueError: required fields are absent or invalid.
    """
    cfg_path = Path(path) if path is not None else Path("config.yaml")
    if not cfg_path.exists():
        if path is None:
            return Config()
        raise FileNotFoundError(f"Config file not found: {cfg_path.resolve()}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError("config.yaml must contain a mapping at the top level")
    return parse_config(raw)


def parse_config(raw: dict) -> Config:
    try:
        run_raw = raw.get("run") or {}
        run_cfg = RunConfig(
            timeout_s=int(run_raw.get("timeout_s", 120)),
            stream=bool(run_raw.get("stream", True)),
            max_output_tokens=int(run_raw.get("max_output_tokens", 2048)),
            retries=int(run_raw.get("retries", 0)),
            raw_fallback=bool(run_raw.get("raw_fallback", True)),
            log_attempts=bool(run_raw.get("log_attempts", False)),
            log_dir=str(run_raw.get("log_dir", "./logs")),
        )

        model_cfg = _parse_model(raw.get("model"))
        presets = {
            str(name): _parse_model(value)
            for name, value in (raw.get("models") or {}).items()
        }

        cli_raw = raw.get("cli") or {}
        tools = {
            name: CliToolConfig(
                binary=(cli_raw[name] or {}).get("binary"),
                model=(cli_raw[name] or {}).get("model"),
                extra_args=[str(a) for a in (cli_raw[name] or {}).get("extra_args", [])],
            )
            for name in CLI_TOOLS
            if name in cli_raw
        }
        cli_cfg = CliConfig(
            enabled=[str(p).lower() for p in cli_raw.get("enabled", [])],
            disabled=[str(p).lower() for p in cli_raw.get("disabled", [])],
            tools=tools,
        )

        providers: dict[str, ProviderConfig] = {}
        for provider_name, prov_raw in (raw.get("providers") or {}).items():
            prov_raw = prov_raw or {}
            providers[str(provider_name)] = ProviderConfig(
                api_key=str(prov_raw.get("api_key", "")),
                base_url=prov_raw.get("base_url"),
                enabled=bool(prov_raw.get("enabled", True)),
            )

        daemon_raw = raw.get("daemon") or {}
        daemon_cfg = DaemonConfig(
            host=str(daemon_raw.get("host", "127.0.0.1")),
            port=int(daemon_raw.get("port", 8787)),
            token_path=str(daemon_raw.get("token_path", ".summarycast_token.json")),
            run_ttl_s=int(daemon_raw.get("run_ttl_s", 300)),
        )

        config = Config(
            run=run_cfg,
            model=model_cfg,
            models=presets,
            cli=cli_cfg,
            providers=providers,
            daemon=daemon_cfg,
        )
        _validate(config)
        return config

    except (KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid config.yaml structure: {exc}") from exc


def _parse_model(value: object) -> ModelConfig:
    if value is None:
        return ModelConfig()
    if isinstance(value, str):
        if value.strip().lower() == "auto":
            return ModelConfig()
        return ModelConfig(id=value.strip())
    if not isinstance(value, dict):
        raise ValueError(f"model must be a string or a mapping, got {value!r}")
    if value.get("id"):
        return ModelConfig(id=str(value["id"]).strip())
    mode = value.get("mode", "auto")
    if mode != "auto":
        raise ValueError(f"model.mode must be 'auto' when no id is given, got {mode!r}")
    rules = [
        AutoRule(
            when=[str(k) for k in rule.get("when", [])],
            candidates=[str(c) for c in rule.get("candidates", [])],
            bands=[
                TokenBand(
                    candidates=[str(c) for c in band["candidates"]],
                    min_tokens=(band.get("token") or {}).get("min"),
                    max_tokens=(band.get("token") or {}).get("max"),
                )
                for band in rule.get("bands", [])
            ],
        )
        for rule in value.get("rules", [])
    ]
    return ModelConfig(id=None, rules=rules)


def _validate(config: Config) -> None:
    if config.run.timeout_s < 1:
        raise ValueError("run.timeout_s must be >= 1")
    if config.run.max_output_tokens < 1:
        raise ValueError("run.max_output_tokens must be >= 1")
    if config.run.retries < 0:
        raise ValueError("run.retries must be >= 0")
    unknown = [p for p in config.cli.enabled + config.cli.disabled if p not in CLI_TOOLS]
    if unknown:
        raise ValueError(f"cli.enabled/disabled contain unknown tools: {unknown}; expected {CLI_TOOLS}")
    for rule in config.model.rules:
        if not rule.candidates and not rule.bands:
            raise ValueError("each model.rules entry needs candidates or bands")


# --------------------------------------------------------------------------- #
# Environment snapshot                                                         #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class EnvSnapshot:
    """
    Everything a run may know about credentials and local tools.

    Built once per run; the registry and provider factory read only this,
    never os.environ directly.
    """

    env: Mapping[str, str] = field(default_factory=dict)
    cli_available: Mapping[str, bool] = field(default_factory=dict)
    cli_binaries: Mapping[str, str] = field(default_factory=dict)
    disabled_providers: frozenset[str] = frozenset()

    def get(self, key: str) -> str | None:
        return self.env.get(key) or None


def build_env_snapshot(
    env: Mapping[str, str | None] | None = None,
    config: Config | None = None,
) -> EnvSnapshot:
    """Trim and keep only known keys, then resolve which CLI tools can run."""
    source = os.environ if env is None else env
    config = config or Config()

    kept: dict[str, str] = {}
    for key in ENV_KEYS:
        raw = source.get(key)
        if not isinstance(raw, str):
            continue
        value = raw.strip()
        if value:
            kept[key] = value

    # Per-provider keys in config.yaml fill gaps the environment leaves.
    for provider_name, prov in config.providers.items():
        env_key = _PROVIDER_KEY_ENV.get(provider_name)
        if env_key and prov.api_key and env_key not in kept:
            kept[env_key] = prov.api_key.strip()

    binaries = {tool: resolve_cli_binary(tool, config.cli, kept) for tool in CLI_TOOLS}
    available = resolve_cli_availability(config.cli, kept, binaries)
    return EnvSnapshot(
        env=kept,
        cli_available=available,
        cli_binaries=binaries,
        disabled_providers=config.disabled_providers,
    )


_PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "xai": "XAI_API_KEY",
    "zai": "Z_AI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "nvidia": "NVIDIA_API_KEY",
}


def resolve_cli_binary(tool: str, cli: CliConfig, env: Mapping[str, str]) -> str:
    override = env.get(_CLI_PATH_ENV[tool], "").strip()
    if override:
        return override
    configured = (cli.tool(tool).binary or "").strip()
    return configured or tool


def resolve_cli_availability(
    cli: CliConfig,
    env: Mapping[str, str],
    binaries: Mapping[str, str],
) -> dict[str, bool]:
    availability: dict[str, bool] = {}
    for tool in CLI_TOOLS:
        if tool in cli.disabled:
            availability[tool] = False
            continue
        availability[tool] = shutil.which(binaries[tool], path=env.get("PATH")) is not None
    return availability

