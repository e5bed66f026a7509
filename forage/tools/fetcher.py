"""ContentFetcher — page text for selected sources.

Sits between source selection and synthesis: instead of handing the
synthesizer 150-char snippets, each selected source gets up to
``max_chars`` of cleaned page text.

One GET per source, all in flight at once via ``asyncio.gather``.  HTML is
cleaned with BeautifulSoup (script/style/noscript dropped, tags stripped,
whitespace collapsed).

Graceful degradation:
  - Timeout, transport error or non-2xx  → ``content=""`` for that source
  - Invalid URL or any other per-source error → ``content=""``
  - Never raises to the caller
"""

from __future__ import annotations

import asyncio
import re

import httpx
import structlog
from bs4 import BeautifulSoup

from forage.models.schemas import SourceLink
from forage.tools.search import USER_AGENT
from forage.utils.clock import now_utc

logger = structlog.get_logger().bind(component="tools.fetcher")

_WHITESPACE = re.compile(r"\s+")
_DROP_TAGS = ("script", "style", "noscript")


def clean_html(html: str, max_chars: int = 6_000) -> str:
    """Visible text of ``html``, whitespace-collapsed and capped at ``max_chars``."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_DROP_TAGS):
        tag.decompose()
    text = _WHITESPACE.sub(" ", soup.get_text(" ")).strip()
    return text[:max_chars]


class ContentFetcher:
    """Fetches and cleans page text for a batch of sources.

    Usage::

        fetcher = ContentFetcher(timeout=12.0)
        enriched = await fetcher.enrich(sources)
    """

    def __init__(
        self,
        *,
        timeout: float = 12.0,
        max_chars: int = 6_000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_chars = max_chars
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_text(self, url: str) -> str:
        """Cleaned text of one page; ``""`` on any failure."""
        client = await self._get_client()
        try:
            response = await client.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("fetch_failed", url=url[:200], error=str(exc))
            return ""
        text = await asyncio.to_thread(clean_html, response.text, self.max_chars)
        logger.debug("fetch_ok", url=url, chars=len(text))
        return text

    async def enrich(self, sources: list[SourceLink]) -> list[SourceLink]:
        """Copies of ``sources`` with ``content`` and ``fetched_at`` filled in, same order."""
        if not sources:
            return []
        raw = await asyncio.gather(
            *(self.fetch_text(s.url) for s in sources),
            return_exceptions=True,
        )
        texts: list[str] = []
        for source, item in zip(sources, raw):
            if isinstance(item, Exception):
                logger.warning("fetch_error", url=source.url[:200], error=str(item))
                texts.append("")
                continue
            texts.append(item)
        fetched_at = now_utc()
        enriched = [
            source.model_copy(update={"content": text, "fetched_at": fetched_at})
            for source, text in zip(sources, texts)
        ]
        logger.info(
            "sources_enriched",
            total=len(enriched),
            with_content=sum(1 for s in enriched if s.content),
        )
        return enriched
