import unittest

from summarycast.finish_line import (
    build_finish_line,
    format_compact_count,
    format_elapsed_ms,
    format_model_label,
    format_tokens,
    format_usd,
)
from summarycast.providers.base import TokenUsage


class FormatTests(unittest.TestCase):
    def test_compact_counts(self) -> None:
        self.assertEqual(format_compact_count(310), "310")
        self.assertEqual(format_compact_count(1_000), "1k")
        self.assertEqual(format_compact_count(1_234), "1.2k")
        self.assertEqual(format_compact_count(250_000), "250k")
        self.assertEqual(format_compact_count(3_400_000), "3.4m")

    def test_elapsed(self) -> None:
        self.assertEqual(format_elapsed_ms(850), "850ms")
        self.assertEqual(format_elapsed_ms(4_200), "4.2s")
        self.assertEqual(format_elapsed_ms(65_000), "1m 05s")

    def test_usd(self) -> None:
        self.assertEqual(format_usd(0.0012), "$0.0012")
        self.assertEqual(format_usd(0.25), "$0.250")
        self.assertEqual(format_usd(3), "$3.00")

    def test_gateway_model_label(self) -> None:
        self.assertEqual(format_model_label("openrouter/x-ai/grok-4"), "x-ai/grok-4")
        self.assertEqual(format_model_label("openai/gpt-5-mini"), "openai/gpt-5-mini")

    def test_tokens_with_gaps(self) -> None:
        self.assertIsNone(format_tokens(None))
        self.assertIsNone(format_tokens(TokenUsage()))
        self.assertEqual(format_tokens(TokenUsage(prompt_tokens=1_200, completion_tokens=310)), "↑1.2k ↓310 Δunknown")


class BuildFinishLineTests(unittest.TestCase):
    def test_full_line(self) -> None:
        summary, details = build_finish_line(
            elapsed_ms=7_200,
            model="openai/gpt-5-mini",
            usage=TokenUsage(prompt_tokens=1_200, completion_tokens=310, total_tokens=1_510),
            cost_usd=0.0012,
        )
        self.assertEqual(summary, "7.2s · $0.0012 · openai/gpt-5-mini · ↑1.2k ↓310 Δ1.5k")
        self.assertIsNone(details)

    def test_minimal_line_and_details(self) -> None:
        summary, details = build_finish_line(elapsed_ms=400, model=None, calls=3, extra=["cache=hit"])
        self.assertEqual(summary, "400ms")
        self.assertEqual(details, "calls=3 | cache=hit")


if __name__ == "__main__":
    unittest.main()
