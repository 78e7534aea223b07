"""
Web search through the Tavily API.

Results are normalized to `SearchResult` so the orchestration layer never
sees vendor fields. Search is best effort: a missing key, a transport
error or an unexpected payload all produce an empty result list.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_TAVILY_URL = "https://api.tavily.com/search"
REQUEST_TIMEOUT = 15.0


@dataclass(frozen=True)
class SearchResult:
    title: str
    link: str
    snippet: str
    source: str = "Tavily Search"


class WebSearch:
    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key or os.getenv("TAVILY_API_KEY")
        self.api_url = api_url or os.getenv("TAVILY_API_URL") or DEFAULT_TAVILY_URL
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self._client is not None:
            response = await self._client.post(self.api_url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(self.api_url, json=payload)
        response.raise_for_status()
        return response.json()

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        if not self.api_key:
            logger.warning("TAVILY_API_KEY is not configured; web search disabled")
            return []

        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "advanced",
            "max_results": limit,
            "include_domains": [],
            "exclude_domains": [],
            "include_answer": True,
            "include_raw_content": False,
            "include_images": False,
        }
        try:
            data = await self._post(payload)
            return [
                SearchResult(
                    title=r.get("title") or r.get("url", ""),
                    link=r.get("url", ""),
                    snippet=r.get("content", ""),
                )
                for r in data.get("results") or []
            ]
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, AttributeError) as e:
            logger.error("Tavily search error: %s", e)
            return []

    @staticmethod
    def format_results(results: list[SearchResult]) -> str:
        if not results:
            return "No search results found."
        return "\n\n".join(f"[{r.title}]({r.link})\n{r.snippet}" for r in results)
