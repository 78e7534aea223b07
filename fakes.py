"""
In-process stand-ins for the LLM provider and the HTTP tools, plus a helper
for an in-memory database. Shared by the test modules.
"""

from datetime import datetime, timezone

from pixie.db.database import Database
from pixie.llm.intent import LOCATION_INSTRUCTION, WEATHER_INSTRUCTION, WEB_SEARCH_INSTRUCTION
from pixie.llm.providers import BaseProvider, ModelSpec
from pixie.llm.tools.weather import Conditions, Location, WeatherReport
from pixie.llm.tools.web_search import SearchResult

USER_ID = "123456789012345678"
OTHER_USER_ID = "223456789012345678"
GUILD_ID = "323456789012345678"
CHANNEL_ID = "423456789012345678"
OTHER_CHANNEL_ID = "523456789012345678"


async def memory_database() -> Database:
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.connect()
    await db.create_tables()
    return db


class FakeProvider(BaseProvider):
    """Answers classifier prompts from flags and everything else with `reply`."""

    name = "fake"

    def __init__(self, reply="Hello from Pixie!", *, weather=False, search=False, location="NONE", error=None):
        super().__init__(ModelSpec("fake-model", 4096), {"api_key": "test-key"})
        self.reply = reply
        self.weather = weather
        self.search = search
        self.location = location
        self.error = error
        self.requests: list[list[dict[str, str]]] = []

    @property
    def completions(self) -> list[list[dict[str, str]]]:
        """Requests other than the intent classifiers."""
        instructions = (WEATHER_INSTRUCTION, WEB_SEARCH_INSTRUCTION, LOCATION_INSTRUCTION)
        return [r for r in self.requests if not r or r[0]["content"] not in instructions]

    async def _stream(self, credential, messages, temperature, max_tokens):
        self.requests.append(messages)
        system = messages[0]["content"] if messages and messages[0]["role"] == "system" else ""
        if system == WEATHER_INSTRUCTION:
            yield "YES" if self.weather else "NO"
        elif system == WEB_SEARCH_INSTRUCTION:
            yield "YES" if self.search else "NO"
        elif system == LOCATION_INSTRUCTION:
            yield self.location
        else:
            if self.error is not None:
                raise self.error
            for i in range(0, len(self.reply), 7):
                yield self.reply[i:i + 7]


class FakeWebSearch:
    def __init__(self, results=()):
        self.results = list(results)
        self.queries: list[str] = []

    async def search(self, query, limit=5):
        self.queries.append(query)
        return self.results[:limit]


class FakeWeather:
    def __init__(self, report=None):
        self.report = report
        self.locations: list[str] = []

    async def get_current_weather(self, location):
        self.locations.append(location)
        return self.report


def paris_report() -> WeatherReport:
    return WeatherReport(
        location=Location(name="Paris", country="France", latitude=48.85, longitude=2.35),
        conditions=Conditions(
            temperature=18.4, feels_like=18.4, humidity=60, wind_speed=12.0,
            description="Partly cloudy", icon="🌤️",
        ),
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def search_results() -> list[SearchResult]:
    return [
        SearchResult(title="Match report", link="https://example.com/a", snippet="The home side won 2-1."),
        SearchResult(title="Highlights", link="https://example.com/b", snippet="A late winner settled it."),
    ]
