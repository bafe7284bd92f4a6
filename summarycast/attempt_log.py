"""
Per-run attempt log.

Every model call a run makes is appended to one plain-text file so a failed
fallback chain can be read back afterwards:

    #1 openai/gpt-5-mini  direct  stream  14:02:11
      user     | Summarize the following text ...
    #1 failed after 0.8s  ProviderError  [openai] rate limited
    #2 anthropic/claude-sonnet-4-5  direct  stream  14:02:12
      user     | Summarize the following text ...
    #2 ok after 2.4s  812 chars
      | The article argues ...

Message bodies are clipped to `max_chars` so large inputs do not balloon the
file; responses are written in full.  Enabled with run.log_attempts.
"""

from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path

from summarycast.providers.base import Message, ProviderError


class AttemptLogger:
    def __init__(self, log_dir: Path, name: str, *, max_chars: int = 2000) -> None:
        log_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        self.path = log_dir / f"{_slug(name)}_{stamp}.log"
        self._max_chars = max_chars
        self._number = 0
        self._started: float | None = None

    def log_request(
        self,
        *,
        model_id: str,
        transport: str,
        streaming: bool,
        messages: list[Message],
    ) -> None:
        self._number += 1
        self._started = time.monotonic()
        mode = "stream" if streaming else "complete"
        lines = [f"#{self._number} {model_id}  {transport}  {mode}  {datetime.now():%H:%M:%S}"]
        for message in messages:
            lines.extend(_indent(f"{message.role:<8} | ", self._clip(message.content)))
            if message.image_bytes:
                lines.append(f"  {'':<8} | <image, {len(message.image_bytes)} bytes>")
        self._append(lines)

    def log_response(self, *, model_id: str, raw: str) -> None:
        head = f"#{self._number} ok after {self._elapsed()}  {len(raw)} chars"
        if raw.strip():
            self._append([head, *_indent("| ", raw)])
        else:
            self._append([f"{head}  (blank)"])

    def log_error(self, *, model_id: str, error: Exception) -> None:
        kind = type(error).__name__
        line = f"#{self._number} failed after {self._elapsed()}  {kind}  {error}"
        if isinstance(error, ProviderError) and error.cause is not None:
            line += f"  (cause: {type(error.cause).__name__})"
        self._append([line])

    # ------------------------------------------------------------------ #

    def _clip(self, text: str) -> str:
        if len(text) <= self._max_chars:
            return text
        return f"{text[:self._max_chars]} ... [{len(text) - self._max_chars} more chars]"

    def _elapsed(self) -> str:
        if self._started is None:
            return "?"
        return f"{time.monotonic() - self._started:.1f}s"

    def _append(self, lines: list[str]) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")


def _indent(prefix: str, text: str) -> list[str]:
    pad = " " * len(prefix)
    return [f"  {prefix if i == 0 else pad}{line}" for i, line in enumerate(text.splitlines() or [""])]


def _slug(name: str) -> str:
    return "".join(c if c.isalnum() or c in "_-" else "_" for c in name) or "run"
