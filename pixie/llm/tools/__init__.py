from .weather import WeatherReport, WeatherSearch, describe_weather_code, weather_icon
from .web_search import SearchResult, WebSearch

__all__ = [
    "SearchResult",
    "WebSearch",
    "WeatherReport",
    "WeatherSearch",
    "describe_weather_code",
    "weather_icon",
]
