import unittest

from fakes import FakeProvider
from pixie.llm.intent import (
    CLASSIFIER_OPTIONS,
    LOCATION_INSTRUCTION,
    IntentClassifier,
    clean_location,
    match_location,
)
from pixie.llm.providers import BaseProvider, ModelSpec


class ChattyProvider(BaseProvider):
    """Says yes first, then keeps talking; records how far it was read."""

    name = "chatty"

    def __init__(self, chunks):
        super().__init__(ModelSpec("chatty", 100), {"api_key": "test-key"})
        self.chunks = chunks
        self.consumed = 0
        self.seen_options = []

    async def stream_chat(self, messages, options=None):
        self.seen_options.append(options)
        async for text in super().stream_chat(messages, options):
            yield text

    async def _stream(self, credential, messages, temperature, max_tokens):
        for chunk in self.chunks:
            self.consumed += 1
            yield chunk


class MatchLocationTest(unittest.TestCase):
    def test_common_phrasings(self):
        cases = {
            "what's the weather in Paris?": "Paris",
            "What is the weather like in New York today?": "New York",
            "how is the weather in Tokyo, Japan right now": "Tokyo, Japan",
            "temperature in Berlin": "Berlin",
            "forecast for London tomorrow!": "London",
        }
        for query, expected in cases.items():
            with self.subTest(query=query):
                self.assertEqual(match_location(query), expected)

    def test_no_location(self):
        self.assertIsNone(match_location("how's the weather?"))
        self.assertIsNone(match_location("tell me a joke"))

    def test_clean_location(self):
        self.assertEqual(clean_location("  in Madrid today?  "), "Madrid")
        self.assertEqual(clean_location('"Oslo."'), "Oslo")

    def test_time_words_alone_are_not_a_location(self):
        self.assertIsNone(match_location("weather for tomorrow?"))
        self.assertIsNone(match_location("what's the weather like for today"))
        self.assertEqual(clean_location("tonight"), "")
        self.assertEqual(match_location("weather in Paris for tomorrow"), "Paris")
        self.assertEqual(match_location("weather in Snowdonia now"), "Snowdonia")


class ClassifierTest(unittest.IsolatedAsyncioTestCase):
    async def test_first_yes_settles_the_answer(self):
        provider = ChattyProvider(["YES", " because", " it", " is", " current"])

        self.assertTrue(await IntentClassifier(provider).needs_web_search("who won yesterday?"))
        self.assertEqual(provider.consumed, 1)
        self.assertEqual(provider.seen_options[0], CLASSIFIER_OPTIONS)

    async def test_no_answer(self):
        provider = ChattyProvider(["NO"])
        self.assertFalse(await IntentClassifier(provider).is_weather_query("tell me a joke"))

    async def test_yes_is_case_insensitive(self):
        provider = ChattyProvider(["Yes."])
        self.assertTrue(await IntentClassifier(provider).is_weather_query("is it raining in Rome?"))


class ExtractLocationTest(unittest.IsolatedAsyncioTestCase):
    async def test_regex_match_needs_no_model_call(self):
        provider = FakeProvider()
        location = await IntentClassifier(provider).extract_location("weather in Lisbon")

        self.assertEqual(location, "Lisbon")
        self.assertEqual(provider.requests, [])

    async def test_model_fallback(self):
        provider = FakeProvider(location="Output: Cape Town, South Africa\nextra")
        location = await IntentClassifier(provider).extract_location("do I need an umbrella in cape town?")

        self.assertEqual(location, "Cape Town, South Africa")
        self.assertEqual(provider.requests[0][0]["content"], LOCATION_INSTRUCTION)

    async def test_model_says_none(self):
        provider = FakeProvider(location="NONE")
        self.assertEqual(await IntentClassifier(provider).extract_location("is it cold?"), "")


if __name__ == "__main__":
    unittest.main()
