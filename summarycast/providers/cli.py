"""
Local CLI tool provider: claude, codex, gemini and agent.

The prompt goes to the tool (stdin, or argv for agent), the tool runs to
completion, and its structured JSON output is mined for the answer text,
token usage and cost.  There is no incremental streaming; stream() yields
the whole answer once so callers can treat every provider alike.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Mapping

from summarycast.providers.base import (
    Completion,
    EmptyOutputError,
    LLMProvider,
    Message,
    ProviderError,
    TokenUsage,
)

logger = logging.getLogger(__name__)

_RESULT_KEYS = ("result", "response", "output", "message", "text")


class CliProvider(LLMProvider):
    def __init__(
        self,
        tool: str,
        binary: str,
        model: str | None = None,
        extra_args: list[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._tool = tool
        self._binary = binary
        self._model = (model or "").strip() or None
        self._extra_args = list(extra_args or [])
        self._env = dict(env or {})
        self.name = f"cli/{tool}"

    @property
    def supports_streaming(self) -> bool:
        return False

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ) -> Completion:
        prompt = render_prompt(messages)
        if self._tool == "codex":
            return await self._run_codex(prompt)

        args = list(self._extra_args)
        stdin = prompt
        if self._tool == "agent":
            args += ["--print", "--output-format", "json", "--mode", "ask"]
            if self._model:
                args += ["--model", self._model]
            args.append(prompt)
            stdin = ""
        else:
            if self._model:
                args += ["--model", self._model]
            if self._tool == "claude":
                args.append("--print")
            args += ["--output-format", "json"]

        stdout = await self._exec(args, stdin)
        return parse_tool_output(self._tool, stdout)

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
    ):
        completion = await self.complete(messages, max_tokens=max_tokens)
        yield completion.text

    async def _run_codex(self, prompt: str) -> Completion:
        with tempfile.TemporaryDirectory(prefix="summarycast-codex-") as tmp:
            output_path = Path(tmp) / "last-message.txt"
            args = list(self._extra_args)
            args += ["exec", "--output-last-message", str(output_path), "--skip-git-repo-check", "--json"]
            if self._model:
                args += ["-m", self._model]
            if not any("text.verbosity" in a for a in args):
                args += ["-c", 'text.verbosity="medium"']
            stdout = await self._exec(args, prompt)
            usage, cost = parse_codex_usage(stdout)
            last_message = output_path.read_text(encoding="utf-8").strip() if output_path.exists() else ""
        text = last_message or stdout.strip()
        if not text:
            raise EmptyOutputError(self.name, "CLI returned empty output")
        return Completion(text=text, usage=usage, cost_usd=cost)

    async def _exec(self, args: list[str], stdin: str) -> str:
        env = {**os.environ, **self._env}
        if self._tool == "gemini" and not env.get("GEMINI_CLI_NO_RELAUNCH"):
            env["GEMINI_CLI_NO_RELAUNCH"] = "true"
        logger.debug("Running %s %s", self._binary, " ".join(args[:6]))
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise ProviderError(self.name, f"Could not start {self._binary}: {exc}", cause=exc) from exc

        try:
            stdout, stderr = await proc.communicate(stdin.encode("utf-8"))
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            message = f"{self._binary} exited with code {proc.returncode}"
            raise ProviderError(self.name, f"{message}: {detail}" if detail else message)
        return stdout.decode("utf-8", errors="replace")


# --------------------------------------------------------------------------- #
# Output parsing                                                               #
# --------------------------------------------------------------------------- #

def render_prompt(messages: list[Message]) -> str:
    """Flatten role-tagged turns into one text prompt for a CLI tool."""
    if len(messages) == 1:
        return messages[0].content
    return "\n\n".join(
        msg.content if msg.role == "user" else f"[{msg.role.upper()}]\n{msg.content}"
        for msg in messages
    )


def _parse_json(output: str) -> dict | None:
    trimmed = output.strip()
    if not trimmed:
        return None
    candidates = [trimmed]
    last = trimmed.rfind("\n{")
    if last >= 0:
        candidates.append(trimmed[last + 1:])
    for candidate in candidates:
        if not candidate.startswith("{"):
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _num(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _claude_usage(payload: dict) -> TokenUsage | None:
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return None
    inputs = _num(usage.get("input_tokens"))
    outputs = _num(usage.get("output_tokens"))
    if inputs is None and outputs is None:
        return None
    cached = (_num(usage.get("cache_creation_input_tokens")) or 0) + (_num(usage.get("cache_read_input_tokens")) or 0)
    prompt = int(inputs + cached) if inputs is not None else None
    completion = int(outputs) if outputs is not None else None
    total = prompt + completion if prompt is not None and completion is not None else None
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _gemini_usage(payload: dict) -> TokenUsage | None:
    models = (payload.get("stats") or {}).get("models") if isinstance(payload.get("stats"), dict) else None
    if not isinstance(models, dict):
        return None
    sums = {"prompt": None, "candidates": None, "total": None}
    for entry in models.values():
        tokens = entry.get("tokens") if isinstance(entry, dict) else None
        if not isinstance(tokens, dict):
            continue
        for key in sums:
            value = _num(tokens.get(key))
            if value is not None:
                sums[key] = (sums[key] or 0) + int(value)
    prompt, completion, total = sums["prompt"], sums["candidates"], sums["total"]
    if prompt is None and completion is None and total is None:
        return None
    if not total and prompt is not None and completion is not None:
        total = prompt + completion
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total or None)


def parse_tool_output(tool: str, stdout: str) -> Completion:
    """
    Extract answer text, usage and cost from a tool's JSON output.

    Falls back to the raw stdout when there is no recognisable JSON result.

    Raises:
        EmptyOutputError: the tool printed nothing.
    """
    trimmed = stdout.strip()
    if not trimmed:
        raise EmptyOutputError(f"cli/{tool}", "CLI returned empty output")
    payload = _parse_json(trimmed)
    if payload is not None:
        keys = _RESULT_KEYS if tool == "agent" else _RESULT_KEYS[:2]
        result = next((payload[k] for k in keys if isinstance(payload.get(k), str) and payload[k].strip()), None)
        if result is not None:
            if tool == "claude":
                return Completion(
                    text=result.strip(),
                    usage=_claude_usage(payload),
                    cost_usd=_num(payload.get("total_cost_usd")),
                )
            if tool == "gemini":
                return Completion(text=result.strip(), usage=_gemini_usage(payload))
            return Completion(text=result.strip())
    return Completion(text=trimmed)


def parse_codex_usage(output: str) -> tuple[TokenUsage | None, float | None]:
    """Scan codex --json output (JSON lines) for the last usage record and any cost."""
    usage: TokenUsage | None = None
    cost: float | None = None
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(parsed, dict):
            continue
        nested = [parsed.get("usage")]
        for parent in ("response", "metrics"):
            if isinstance(parsed.get(parent), dict):
                nested.append(parsed[parent].get("usage"))
        for candidate in nested:
            if not isinstance(candidate, dict):
                continue
            inputs = _first_num(candidate, "input_tokens", "prompt_tokens", "inputTokens")
            outputs = _first_num(candidate, "output_tokens", "completion_tokens", "outputTokens")
            total = _first_num(candidate, "total_tokens", "totalTokens")
            if total is None and inputs is not None and outputs is not None:
                total = inputs + outputs
            if inputs is not None or outputs is not None or total is not None:
                usage = TokenUsage(prompt_tokens=inputs, completion_tokens=outputs, total_tokens=total)
        if cost is None:
            usage_raw = parsed.get("usage") if isinstance(parsed.get("usage"), dict) else {}
            cost = _num(parsed.get("cost_usd"))
            if cost is None:
                cost = _num(usage_raw.get("cost_usd"))
    return usage, cost


def _first_num(record: dict, *keys: str) -> int | None:
    for key in keys:
        value = _num(record.get(key))
        if value is not None:
            return int(value)
    return None
