import json
import unittest

import httpx

from pixie.llm.tools.weather import FORECAST_URL, GEOCODING_URL, WeatherSearch, describe_weather_code, weather_icon
from pixie.llm.tools.web_search import SearchResult, WebSearch

TAVILY_URL = "https://tavily.test/search"


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class WebSearchTest(unittest.IsolatedAsyncioTestCase):
    async def test_results_are_normalized(self):
        sent = {}

        def handler(request):
            sent.update(json.loads(request.content))
            return httpx.Response(200, json={
                "answer": "ignored",
                "results": [
                    {"title": "Release notes", "url": "https://example.com/notes", "content": "Version 2 is out."},
                    {"url": "https://example.com/untitled", "content": "No title here."},
                ],
            })

        async with mock_client(handler) as client:
            results = await WebSearch("tvly-key", TAVILY_URL, client).search("latest release", limit=3)

        self.assertEqual(sent["query"], "latest release")
        self.assertEqual(sent["api_key"], "tvly-key")
        self.assertEqual(sent["max_results"], 3)
        self.assertEqual(sent["search_depth"], "advanced")
        self.assertEqual(results[0], SearchResult("Release notes", "https://example.com/notes", "Version 2 is out."))
        self.assertEqual(results[1].title, "https://example.com/untitled")
        self.assertEqual(results[1].source, "Tavily Search")

    async def test_missing_key_returns_nothing(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            search = WebSearch(None, TAVILY_URL, client)
            search.api_key = None
            self.assertEqual(await search.search("anything"), [])

    async def test_http_errors_return_nothing(self):
        async with mock_client(lambda request: httpx.Response(500, text="down")) as client:
            self.assertEqual(await WebSearch("tvly-key", TAVILY_URL, client).search("anything"), [])

    async def test_unexpected_payload_returns_nothing(self):
        async with mock_client(lambda request: httpx.Response(200, text="not json")) as client:
            self.assertEqual(await WebSearch("tvly-key", TAVILY_URL, client).search("anything"), [])

    async def test_malformed_api_url_returns_nothing(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            search = WebSearch("tvly-key", "http://[bad", client)
            with self.assertLogs("pixie.llm.tools.web_search", "ERROR"):
                self.assertEqual(await search.search("anything"), [])

    def test_format_results(self):
        self.assertEqual(WebSearch.format_results([]), "No search results found.")
        text = WebSearch.format_results([SearchResult("A", "https://a.test", "alpha")])
        self.assertEqual(text, "[A](https://a.test)\nalpha")


class WeatherSearchTest(unittest.IsolatedAsyncioTestCase):
    async def test_geocode_then_forecast(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            if str(request.url).startswith(GEOCODING_URL):
                return httpx.Response(200, json={"results": [
                    {"name": "Paris", "country": "France", "latitude": 48.85, "longitude": 2.35},
                ]})
            if str(request.url).startswith(FORECAST_URL):
                return httpx.Response(200, json={"current": {
                    "temperature_2m": 18.6,
                    "relative_humidity_2m": 60,
                    "wind_speed_10m": 12.5,
                    "weather_code": 2,
                }})
            return httpx.Response(404)

        async with mock_client(handler) as client:
            report = await WeatherSearch(client).get_current_weather("Paris")

        self.assertEqual(seen[0].params["name"], "Paris")
        self.assertEqual(seen[0].params["count"], "1")
        self.assertEqual(seen[1].params["latitude"], "48.85")
        self.assertEqual(report.location.name, "Paris")
        self.assertEqual(report.conditions.description, "Partly cloudy")
        data = report.to_prompt_data()
        self.assertEqual(data["location"], {"name": "Paris", "country": "France"})
        self.assertEqual(data["conditions"]["temperature"], 19)
        self.assertEqual(data["conditions"]["humidity"], 60)

    async def test_unknown_place(self):
        async with mock_client(lambda request: httpx.Response(200, json={})) as client:
            self.assertIsNone(await WeatherSearch(client).get_current_weather("Atlantis"))

    async def test_upstream_failure(self):
        async with mock_client(lambda request: httpx.Response(503)) as client:
            self.assertIsNone(await WeatherSearch(client).get_current_weather("Paris"))

    def test_weather_codes(self):
        self.assertEqual(describe_weather_code(0), "Clear sky")
        self.assertEqual(describe_weather_code(42), "Unknown")
        self.assertEqual(weather_icon(0), "☀️")
        self.assertEqual(weather_icon(95), "⛈️")


if __name__ == "__main__":
    unittest.main()
