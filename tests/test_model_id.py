import unittest

from summarycast.model_id import normalize_model_id, parse_model_id


class NormalizeModelIdTests(unittest.TestCase):
    def test_prefixed_id_is_lowercased(self) -> None:
        self.assertEqual(normalize_model_id("  OpenAI/GPT-5-mini "), "openai/gpt-5-mini")

    def test_bare_names_are_inferred_by_prefix(self) -> None:
        self.assertEqual(normalize_model_id("gemini-3-flash-preview"), "google/gemini-3-flash-preview")
        self.assertEqual(normalize_model_id("claude-sonnet-4-5"), "anthropic/claude-sonnet-4-5")
        self.assertEqual(normalize_model_id("grok-4"), "xai/grok-4")
        self.assertEqual(normalize_model_id("gpt-5-mini"), "openai/gpt-5-mini")

    def test_anthropic_generation_alias(self) -> None:
        self.assertEqual(normalize_model_id("claude-sonnet-4"), "anthropic/claude-sonnet-4-0")
        self.assertEqual(normalize_model_id("anthropic/claude-opus-4"), "anthropic/claude-opus-4-0")

    def test_legacy_grok_alias(self) -> None:
        self.assertEqual(
            normalize_model_id("grok-4.1-fast-non-reasoning"),
            "xai/grok-4-fast-non-reasoning",
        )

    def test_unknown_provider_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            normalize_model_id("mistral/large")

    def test_empty_and_missing_model_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            normalize_model_id("   ")
        with self.assertRaises(ValueError):
            normalize_model_id("openai/")

    def test_parse_splits_provider_and_model(self) -> None:
        parsed = parse_model_id("google/gemini-3-flash-preview")
        self.assertEqual(parsed.provider, "google")
        self.assertEqual(parsed.model, "gemini-3-flash-preview")
        self.assertEqual(parsed.canonical, "google/gemini-3-flash-preview")


if __name__ == "__main__":
    unittest.main()
