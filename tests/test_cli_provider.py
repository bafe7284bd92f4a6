import json
import unittest
from unittest.mock import patch

from summarycast.providers.base import EmptyOutputError, Message, ProviderError
from summarycast.providers.cli import (
    CliProvider,
    parse_codex_usage,
    parse_tool_output,
    render_prompt,
)


class _FakeProcess:
    def __init__(self, stdout: str, returncode: int = 0, stderr: str = "") -> None:
        self._stdout = stdout.encode()
        self._stderr = stderr.encode()
        self.returncode = returncode
        self.stdin_seen: bytes | None = None

    async def communicate(self, data: bytes):
        self.stdin_seen = data
        return self._stdout, self._stderr

    def kill(self) -> None:
        pass

    async def wait(self) -> int:
        return self.returncode


class ParseToolOutputTests(unittest.TestCase):
    def test_claude_result_usage_and_cost(self) -> None:
        stdout = json.dumps({
            "result": "  Summary text ",
            "total_cost_usd": 0.0123,
            "usage": {"input_tokens": 100, "cache_read_input_tokens": 20, "output_tokens": 30},
        })
        completion = parse_tool_output("claude", stdout)
        self.assertEqual(completion.text, "Summary text")
        self.assertEqual(completion.cost_usd, 0.0123)
        self.assertEqual(completion.usage.prompt_tokens, 120)
        self.assertEqual(completion.usage.completion_tokens, 30)
        self.assertEqual(completion.usage.total_tokens, 150)

    def test_gemini_usage_is_summed_across_models(self) -> None:
        stdout = json.dumps({
            "response": "Gemini says",
            "stats": {"models": {
                "a": {"tokens": {"prompt": 10, "candidates": 5}},
                "b": {"tokens": {"prompt": 1, "candidates": 2}},
            }},
        })
        completion = parse_tool_output("gemini", stdout)
        self.assertEqual(completion.text, "Gemini says")
        self.assertEqual(completion.usage.prompt_tokens, 11)
        self.assertEqual(completion.usage.completion_tokens, 7)
        self.assertEqual(completion.usage.total_tokens, 18)

    def test_json_after_log_lines_is_found(self) -> None:
        stdout = 'warming up\n{"result": "done"}'
        self.assertEqual(parse_tool_output("claude", stdout).text, "done")

    def test_plain_text_is_returned_as_is(self) -> None:
        self.assertEqual(parse_tool_output("gemini", "just text\n").text, "just text")

    def test_empty_output_is_an_error(self) -> None:
        with self.assertRaises(EmptyOutputError):
            parse_tool_output("claude", "   \n")


class ParseCodexUsageTests(unittest.TestCase):
    def test_last_usage_record_wins(self) -> None:
        output = "\n".join([
            "not json",
            json.dumps({"usage": {"input_tokens": 1, "output_tokens": 1}}),
            json.dumps({"response": {"usage": {"prompt_tokens": 40, "completion_tokens": 2}}, "cost_usd": 0.5}),
        ])
        usage, cost = parse_codex_usage(output)
        self.assertEqual(usage.prompt_tokens, 40)
        self.assertEqual(usage.total_tokens, 42)
        self.assertEqual(cost, 0.5)

    def test_no_usage(self) -> None:
        self.assertEqual(parse_codex_usage("hello\n"), (None, None))


class RenderPromptTests(unittest.TestCase):
    def test_single_message_is_passed_through(self) -> None:
        self.assertEqual(render_prompt([Message("user", "hi")]), "hi")

    def test_roles_are_tagged(self) -> None:
        prompt = render_prompt([Message("system", "be brief"), Message("user", "text")])
        self.assertEqual(prompt, "[SYSTEM]\nbe brief\n\ntext")


class CliProviderExecTests(unittest.IsolatedAsyncioTestCase):
    async def test_claude_invocation(self) -> None:
        proc = _FakeProcess(json.dumps({"result": "ok"}))
        provider = CliProvider("claude", "/usr/bin/claude", model="sonnet")

        with patch("summarycast.providers.cli.asyncio.create_subprocess_exec", return_value=proc) as spawn:
            completion = await provider.complete([Message("user", "Summarize")])

        self.assertEqual(completion.text, "ok")
        args = spawn.call_args.args
        self.assertEqual(args[0], "/usr/bin/claude")
        self.assertEqual(list(args[1:]), ["--model", "sonnet", "--print", "--output-format", "json"])
        self.assertEqual(proc.stdin_seen, b"Summarize")
        self.assertFalse(provider.supports_streaming)

    async def test_agent_passes_prompt_as_argument(self) -> None:
        proc = _FakeProcess(json.dumps({"text": "agent answer"}))
        provider = CliProvider("agent", "agent", model="gpt-5.2")

        with patch("summarycast.providers.cli.asyncio.create_subprocess_exec", return_value=proc) as spawn:
            completion = await provider.complete([Message("user", "Q?")])

        self.assertEqual(completion.text, "agent answer")
        self.assertEqual(spawn.call_args.args[-1], "Q?")
        self.assertEqual(proc.stdin_seen, b"")

    async def test_gemini_gets_no_relaunch_env(self) -> None:
        proc = _FakeProcess("plain")
        provider = CliProvider("gemini", "gemini")

        with patch("summarycast.providers.cli.asyncio.create_subprocess_exec", return_value=proc) as spawn:
            await provider.complete([Message("user", "x")])

        self.assertEqual(spawn.call_args.kwargs["env"]["GEMINI_CLI_NO_RELAUNCH"], "true")

    async def test_non_zero_exit_raises_provider_error(self) -> None:
        proc = _FakeProcess("", returncode=2, stderr="not logged in")
        provider = CliProvider("claude", "claude")

        with patch("summarycast.providers.cli.asyncio.create_subprocess_exec", return_value=proc):
            with self.assertRaises(ProviderError) as ctx:
                await provider.complete([Message("user", "x")])
        self.assertIn("not logged in", str(ctx.exception))

    async def test_missing_binary_raises_provider_error(self) -> None:
        provider = CliProvider("claude", "/nope/claude")
        with patch(
            "summarycast.providers.cli.asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError("no such file"),
        ):
            with self.assertRaises(ProviderError):
                await provider.complete([Message("user", "x")])


if __name__ == "__main__":
    unittest.main()
