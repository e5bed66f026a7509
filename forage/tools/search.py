"""Search providers and the ordered fallback chain.

Providers, tried in order until one returns hits (results are never merged):

    1. SerpApiProvider   — Google results via SerpAPI   (needs SERPAPI_API_KEY)
    2. TavilyProvider    — Tavily search API            (needs TAVILY_API_KEY)
    3. BingRssProvider   — Bing's public RSS feed       (always available)

Every provider normalizes hits into ``SourceLink`` and fails soft: transport
errors, timeouts, non-2xx responses and unparseable bodies are logged and
produce an empty list.  A provider error never aborts a task.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable
from typing import Any

import httpx
import structlog

from forage.config import ForageSettings
from forage.models.schemas import SourceLink
from forage.research.sources import normalize_source

logger = structlog.get_logger().bind(component="tools.search")

SERPAPI_URL = "https://serpapi.com/search.json"
TAVILY_URL = "https://api.tavily.com/search"
BING_URL = "https://www.bing.com/search"

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


def _normalize_all(hits: Iterable[tuple[Any, Any, Any]]) -> list[SourceLink]:
    """(url, title, snippet) triples → SourceLinks, dropping unusable URLs."""
    out: list[SourceLink] = []
    for url, title, snippet in hits:
        if not isinstance(url, str):
            continue
        source = normalize_source(
            url,
            title if isinstance(title, str) else None,
            snippet if isinstance(snippet, str) else None,
        )
        if source is not None:
            out.append(source)
    return out


class SearchProvider:
    """Base class: one lookup strategy over a shared or owned httpx client."""

    name = "base"

    def __init__(self, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return True

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def lookup(self, query: str) -> list[SourceLink]:
        """Search for ``query``. Never raises."""
        if not self.enabled:
            return []
        try:
            sources = await self._search(query)
        except (httpx.HTTPError, ValueError, ET.ParseError) as exc:
            logger.warning("provider_failed", provider=self.name, query=query, error=str(exc))
            return []
        logger.debug("provider_results", provider=self.name, query=query, count=len(sources))
        return sources

    async def _search(self, query: str) -> list[SourceLink]:
        raise NotImplementedError


class SerpApiProvider(SearchProvider):
    name = "serpapi"

    def __init__(self, api_key: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str) -> list[SourceLink]:
        client = await self._get_client()
        response = await client.get(
            SERPAPI_URL,
            params={"engine": "google", "q": query, "num": 10, "api_key": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        items = data.get("organic_results") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return _normalize_all(
            (item.get("link"), item.get("title"), item.get("snippet"))
            for item in items
            if isinstance(item, dict)
        )


class TavilyProvider(SearchProvider):
    name = "tavily"

    def __init__(self, api_key: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str) -> list[SourceLink]:
        client = await self._get_client()
        response = await client.post(
            TAVILY_URL,
            json={
                "api_key": self.api_key,
                "query": query,
                "max_results": 8,
                "include_raw_content": False,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        items = data.get("results") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return _normalize_all(
            (item.get("url"), item.get("title"), item.get("content"))
            for item in items
            if isinstance(item, dict)
        )


class BingRssProvider(SearchProvider):
    """Unauthenticated scrape of Bing's RSS result feed. Lowest quality, always on."""

    name = "bing_rss"

    async def _search(self, query: str) -> list[SourceLink]:
        client = await self._get_client()
        response = await client.get(
            BING_URL,
            params={"q": query, "format": "rss"},
            headers={"User-Agent": USER_AGENT},
            timeout=self.timeout,
        )
        response.raise_for_status()
        root = ET.fromstring(response.text)
        return _normalize_all(
            (
                (item.findtext("link") or "").strip(),
                (item.findtext("title") or "").strip(),
                (item.findtext("description") or "").strip(),
            )
            for item in root.iter("item")
        )


class ProviderChain:
    """Ordered providers; the first non-empty result set wins."""

    def __init__(self, providers: Iterable[SearchProvider]) -> None:
        self.providers = list(providers)

    @classmethod
    def from_settings(
        cls,
        settings: ForageSettings,
        client: httpx.AsyncClient | None = None,
    ) -> "ProviderChain":
        opts = {"timeout": settings.provider_timeout_seconds, "client": client}
        return cls([
            SerpApiProvider(settings.serpapi_api_key, **opts),
            TavilyProvider(settings.tavily_api_key, **opts),
            BingRssProvider(**opts),
        ])

    async def lookup(self, query: str) -> tuple[list[SourceLink], str | None]:
        """Return ``(sources, provider_name)``; ``([], None)`` when all come up empty."""
        for provider in self.providers:
            if not provider.enabled:
                continue
            sources = await provider.lookup(query)
            if sources:
                logger.info("provider_hit", provider=provider.name, query=query, count=len(sources))
                return sources, provider.name
        logger.warning("providers_exhausted", query=query)
        return [], None

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()
