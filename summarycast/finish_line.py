"""
Finish-line formatting: the one-line "7.2s · $0.0012 · openai/gpt-5-mini · ↑1.2k ↓310 Δ1.5k"
summary shown after a run, plus an optional detail line.
"""

from __future__ import annotations

from summarycast.providers.base import TokenUsage


def format_model_label(model: str) -> str:
    """
    Collapse gateway spellings for display.

    OpenAI-compatible gateway ids often read "openai/<publisher>/<model>",
    which looks like an OpenAI model; show "<publisher>/<model>" instead.
    """
    trimmed = model.strip()
    parts = [p for p in trimmed.split("/") if p]
    if len(parts) >= 3 and parts[0] in ("openai", "openrouter"):
        return f"{parts[1]}/{'/'.join(parts[2:])}"
    return trimmed


def format_compact_count(value: int) -> str:
    for threshold, suffix in ((1_000_000_000, "b"), (1_000_000, "m"), (1_000, "k")):
        if abs(value) >= threshold:
            scaled = value / threshold
            text = f"{scaled:.1f}" if scaled < 100 else f"{scaled:.0f}"
            return text.removesuffix(".0") + suffix
    return str(value)


def format_elapsed_ms(elapsed_ms: int) -> str:
    if elapsed_ms < 1000:
        return f"{elapsed_ms}ms"
    seconds = elapsed_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(int(round(seconds)), 60)
    return f"{minutes}m {rest:02d}s"


def format_usd(value: float) -> str:
    if value >= 1:
        return f"${value:.2f}"
    if value >= 0.01:
        return f"${value:.3f}"
    return f"${value:.4f}"


def format_tokens(usage: TokenUsage | None) -> str | None:
    if usage is None:
        return None
    values = (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens)
    if all(v is None for v in values):
        return None
    up, down, delta = (format_compact_count(v) if v is not None else "unknown" for v in values)
    return f"↑{up} ↓{down} Δ{delta}"


def build_finish_line(
    *,
    elapsed_ms: int,
    model: str | None,
    usage: TokenUsage | None = None,
    cost_usd: float | None = None,
    label: str | None = None,
    calls: int = 1,
    extra: list[str] | None = None,
) -> tuple[str, str | None]:
    """Return (summary line, detail line or None)."""
    parts = [
        format_elapsed_ms(elapsed_ms),
        format_usd(cost_usd) if cost_usd is not None else None,
        label,
        format_model_label(model) if model else None,
        format_tokens(usage),
    ]
    summary = " · ".join(p for p in parts if p)

    details: list[str] = []
    if calls > 1:
        details.append(f"calls={format_compact_count(calls)}")
    details.extend(extra or [])
    return summary, (" | ".join(details) if details else None)
