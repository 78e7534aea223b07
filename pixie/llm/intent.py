"""
Intent classification: does a query need a web search, is it about the
weather, and if so for which location.

Classifiers are tiny one-shot completions answered with YES/NO. The first
streamed fragment that contains "yes" settles the answer and the rest of the
stream is closed unread.
"""

from __future__ import annotations

import logging
import re
from contextlib import aclosing

from .providers import BaseProvider, ChatOptions

logger = logging.getLogger(__name__)

CLASSIFIER_OPTIONS = ChatOptions(temperature=0.1, max_tokens=10)
EXTRACTION_OPTIONS = ChatOptions(temperature=0.1, max_tokens=20)

WEB_SEARCH_INSTRUCTION = (
    "Your task is to determine if a web search is needed to properly answer the user query. "
    'Respond with "YES" or "NO". Only respond YES if the question requires current or '
    "real-time information."
)

WEATHER_INSTRUCTION = (
    "Your task is to determine if the user is asking about current weather, temperature or "
    'forecast conditions for a place. Respond with "YES" or "NO".'
)

LOCATION_INSTRUCTION = """Extract the location from the user's weather question.
Respond with the location name only. If no location is mentioned respond with NONE.

Examples:
Input: "what's it like outside in Berlin right now" -> Output: Berlin
Input: "is it going to rain in new york today?" -> Output: new york
Input: "do I need a jacket in Tokyo, Japan" -> Output: Tokyo, Japan
Input: "how's the weather?" -> Output: NONE"""

LOCATION_PATTERNS = (
    re.compile(r"what(?:'s|\s+is)\s+the\s+weather\s+like\s+(?:in|at|for)\s+(.+)", re.I),
    re.compile(r"how(?:'s|\s+is)\s+the\s+weather\s+(?:in|at|for)\s+(.+)", re.I),
    re.compile(r"weather\s+(?:in|at|for)\s+(.+)", re.I),
    re.compile(r"temperature\s+(?:in|at)\s+(.+)", re.I),
    re.compile(r"forecast\s+(?:for|in)\s+(.+)", re.I),
)

_LEADING_PREPOSITION = re.compile(r"^(?:in|at|for|of|near|around)\s+", re.I)
_TRAILING_TIME = re.compile(
    r"(?:^|\s+)(?:(?:for|on)\s+)?"
    r"(?:right\s+now|now|today|tonight|tomorrow|this\s+(?:morning|afternoon|evening|week|weekend))$",
    re.I,
)
_TRAILING_PUNCTUATION = re.compile(r"[\s?!.,;:\"']+$")


def clean_location(raw: str) -> str:
    location = raw.strip().strip("\"'")
    previous = None
    while previous != location:
        previous = location
        location = _TRAILING_PUNCTUATION.sub("", location)
        location = _TRAILING_TIME.sub("", location)
        location = _LEADING_PREPOSITION.sub("", location).strip()
    return location


def match_location(query: str) -> str | None:
    """Regex stage of location extraction; None when no phrasing matched."""
    for pattern in LOCATION_PATTERNS:
        match = pattern.search(query)
        if match:
            location = clean_location(match.group(1))
            if location:
                return location
    return None


class IntentClassifier:
    def __init__(self, provider: BaseProvider):
        self.provider = provider

    async def _ask_yes_no(self, instruction: str, query: str) -> bool:
        messages = [
            {"role": "system", "content": instruction},
            {"role": "user", "content": query},
        ]
        async with aclosing(self.provider.stream_chat(messages, CLASSIFIER_OPTIONS)) as stream:
            async for chunk in stream:
                if "yes" in chunk.lower():
                    return True
        return False

    async def needs_web_search(self, query: str) -> bool:
        result = await self._ask_yes_no(WEB_SEARCH_INSTRUCTION, query)
        logger.debug("Web search needed for %r: %s", query, result)
        return result

    async def is_weather_query(self, query: str) -> bool:
        result = await self._ask_yes_no(WEATHER_INSTRUCTION, query)
        logger.debug("Weather query %r: %s", query, result)
        return result

    async def extract_location(self, query: str) -> str:
        """Location named in a weather question, or "" when there is none."""
        location = match_location(query)
        if location is not None:
            return location

        messages = [
            {"role": "system", "content": LOCATION_INSTRUCTION},
            {"role": "user", "content": query},
        ]
        answer = ""
        async for chunk in self.provider.stream_chat(messages, EXTRACTION_OPTIONS):
            answer += chunk

        first_line = answer.strip().splitlines()[0] if answer.strip() else ""
        location = clean_location(re.sub(r"^output:\s*", "", first_line, flags=re.I))
        if location.upper() == "NONE":
            return ""
        return location
