import unittest

from summarycast.gateway import build_no_allowed_providers_message, truncate_list
from summarycast.registry import parse_requested_model


class TruncateListTests(unittest.TestCase):
    def test_short_list_is_joined(self) -> None:
        self.assertEqual(truncate_list(["a", " b ", ""], 3), "a, b")

    def test_long_list_counts_the_rest(self) -> None:
        self.assertEqual(truncate_list(["a", "b", "c", "d"], 2), "a, b (+2 more)")


class NoAllowedProvidersMessageTests(unittest.IsolatedAsyncioTestCase):
    async def test_only_gateway_attempts_are_listed_and_looked_up(self) -> None:
        urls: list[str] = []

        async def fetch(url: str):
            urls.append(url)
            return {"data": {"endpoints": [{"provider_name": " Groq "}, {"provider_name": ""}, {"bad": 1}]}}

        attempts = [
            parse_requested_model("openai/gpt-5-mini"),
            parse_requested_model("openrouter/meta-llama/llama-4"),
            parse_requested_model("openrouter/meta-llama/llama-4"),
        ]
        message = await build_no_allowed_providers_message(attempts, fetch)

        self.assertEqual(urls, ["https://openrouter.ai/api/v1/models/meta-llama/llama-4/endpoints"])
        self.assertIn("Tried: openrouter/meta-llama/llama-4.", message)
        self.assertIn("Providers to allow: Groq.", message)

    async def test_unexpected_payload_gives_no_hint(self) -> None:
        async def fetch(url: str):
            return ["not", "a", "mapping"]

        message = await build_no_allowed_providers_message(
            [parse_requested_model("openrouter/openai/gpt-5-mini")], fetch,
        )
        self.assertNotIn("Providers to allow", message)


if __name__ == "__main__":
    unittest.main()
