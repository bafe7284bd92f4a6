import unittest
from dataclasses import replace

from summarycast.config import CliConfig, CliToolConfig, Config, EnvSnapshot
from summarycast.errors import MissingCredentialError
from summarycast.providers import create_provider
from summarycast.providers.anthropic import AnthropicProvider
from summarycast.providers.cli import CliProvider
from summarycast.providers.google import GoogleProvider
from summarycast.providers.openai import OpenAIProvider
from summarycast.registry import parse_requested_model


class CreateProviderTests(unittest.TestCase):
    def test_direct_providers(self) -> None:
        snapshot = EnvSnapshot(env={
            "OPENAI_API_KEY": "o",
            "ANTHROPIC_API_KEY": "a",
            "GOOGLE_API_KEY": "g",
        })
        self.assertIsInstance(create_provider(parse_requested_model("openai/gpt-5-mini"), snapshot), OpenAIProvider)
        self.assertIsInstance(
            create_provider(parse_requested_model("anthropic/claude-sonnet-4-5"), snapshot), AnthropicProvider,
        )
        # GOOGLE_API_KEY is accepted in place of GEMINI_API_KEY.
        self.assertIsInstance(
            create_provider(parse_requested_model("google/gemini-3-flash-preview"), snapshot), GoogleProvider,
        )

    def test_openai_compatible_providers_keep_their_label(self) -> None:
        snapshot = EnvSnapshot(env={"XAI_API_KEY": "x", "OPENROUTER_API_KEY": "r"})

        xai = create_provider(parse_requested_model("xai/grok-4-fast-non-reasoning"), snapshot)
        self.assertIsInstance(xai, OpenAIProvider)
        self.assertEqual(xai.name, "xai")

        gateway = create_provider(parse_requested_model("openrouter/openai/gpt-5-mini"), snapshot)
        self.assertIsInstance(gateway, OpenAIProvider)
        self.assertEqual(gateway.name, "openrouter")

    def test_missing_key_raises(self) -> None:
        with self.assertRaises(MissingCredentialError) as ctx:
            create_provider(parse_requested_model("openai/gpt-5-mini"), EnvSnapshot())
        self.assertEqual(ctx.exception.required_env, "OPENAI_API_KEY")
        self.assertEqual(str(ctx.exception), "Missing OPENAI_API_KEY for openai/gpt-5-mini")

    def test_config_key_override_needs_no_env(self) -> None:
        attempt = replace(parse_requested_model("openai/gpt-5-mini"), api_key_override="from-config")
        self.assertIsInstance(create_provider(attempt, EnvSnapshot()), OpenAIProvider)

    def test_local_tool_uses_resolved_binary_and_config(self) -> None:
        config = Config(cli=CliConfig(tools={"claude": CliToolConfig(extra_args=["--verbose"])}))
        snapshot = EnvSnapshot(cli_available={"claude": True}, cli_binaries={"claude": "/opt/bin/claude"})

        provider = create_provider(parse_requested_model("cli/claude/sonnet"), snapshot, config)

        self.assertIsInstance(provider, CliProvider)
        self.assertEqual(provider.name, "cli/claude")
        self.assertFalse(provider.supports_streaming)
        self.assertEqual(provider._binary, "/opt/bin/claude")
        self.assertEqual(provider._extra_args, ["--verbose"])

    def test_streaming_support(self) -> None:
        snapshot = EnvSnapshot(env={"OPENAI_API_KEY": "o"})
        self.assertTrue(create_provider(parse_requested_model("openai/gpt-5-mini"), snapshot).supports_streaming)


if __name__ == "__main__":
    unittest.main()
