"""Current weather through the Open-Meteo geocoding and forecast APIs (no key needed)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

logger = logging.getLogger(__name__)

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
REQUEST_TIMEOUT = 10.0

WEATHER_CODES: dict[int, str] = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}

# (highest code, icon), checked in order
_ICONS = (
    (0, "☀️"),
    (3, "🌤️"),
    (48, "🌫️"),
    (65, "🌧️"),
    (77, "🌨️"),
    (82, "🌦️"),
    (86, "🌨️"),
    (99, "⛈️"),
)


def describe_weather_code(code: int) -> str:
    return WEATHER_CODES.get(code, "Unknown")


def weather_icon(code: int) -> str:
    for upper, icon in _ICONS:
        if code <= upper:
            return icon
    return "❓"


@dataclass(frozen=True)
class Location:
    name: str
    country: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Conditions:
    temperature: float
    feels_like: float
    humidity: float
    wind_speed: float
    description: str
    icon: str


@dataclass(frozen=True)
class WeatherReport:
    location: Location
    conditions: Conditions
    timestamp: datetime

    def to_prompt_data(self) -> dict[str, Any]:
        return {
            "location": {"name": self.location.name, "country": self.location.country},
            "conditions": {
                "temperature": round(self.conditions.temperature),
                "feelsLike": round(self.conditions.feels_like),
                "humidity": self.conditions.humidity,
                "windSpeed": self.conditions.wind_speed,
                "description": self.conditions.description,
                "icon": self.conditions.icon,
            },
            "timestamp": self.timestamp.isoformat(),
        }


class WeatherSearch:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def _get(self, client: httpx.AsyncClient, url: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def get_current_weather(self, location: str) -> WeatherReport | None:
        logger.debug('Searching weather for location: "%s"', location)
        try:
            if self._client is not None:
                return await self._lookup(self._client, location)
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                return await self._lookup(client, location)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error("Weather search error: %s", e)
            return None

    async def _lookup(self, client: httpx.AsyncClient, location: str) -> WeatherReport | None:
        geo = await self._get(
            client,
            GEOCODING_URL,
            {"name": location, "count": 1, "language": "en", "format": "json"},
        )
        matches = geo.get("results") or []
        if not matches:
            logger.debug('No location found for query: "%s"', location)
            return None

        place = matches[0]
        logger.debug("Found location: %s, %s", place["name"], place.get("country", ""))

        forecast = await self._get(
            client,
            FORECAST_URL,
            {
                "latitude": place["latitude"],
                "longitude": place["longitude"],
                "current": "temperature_2m,relative_humidity_2m,wind_speed_10m,weather_code",
                "timezone": "auto",
            },
        )
        current = forecast["current"]
        code = int(current["weather_code"])
        return WeatherReport(
            location=Location(
                name=place["name"],
                country=place.get("country", ""),
                latitude=place["latitude"],
                longitude=place["longitude"],
            ),
            conditions=Conditions(
                temperature=current["temperature_2m"],
                feels_like=current["temperature_2m"],
                humidity=current["relative_humidity_2m"],
                wind_speed=current["wind_speed_10m"],
                description=describe_weather_code(code),
                icon=weather_icon(code),
            ),
            timestamp=datetime.now(timezone.utc),
        )
