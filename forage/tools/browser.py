"""BrowserSessionResearcher — search through a remote Browserbase session.

Flow:
  1. Create a session over the Browserbase REST API (optionally bound to a
     persistent browser context)
  2. Fetch the session's live-view (debugger) URL
  3. Connect Playwright over CDP, run a DuckDuckGo search, collect the
     result anchors and save a full-page screenshot under ``<output>/assets``
  4. Return normalized sources plus the session artifacts

Unlike the search providers this strategy does NOT fail soft: any error is
raised as :class:`BrowserSessionError`, carrying whatever artifacts exist, so
the pipeline can record the warning and keep the fallback chain's sources.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote_plus

import httpx
import structlog

from forage.config import ForageSettings
from forage.models.schemas import ResearchArtifacts, ResearchTask, SourceLink
from forage.research.sources import normalize_source
from forage.utils.text import slugify

logger = structlog.get_logger().bind(component="tools.browser")

BROWSERBASE_API = "https://api.browserbase.com/v1"
SESSION_PAGE = "https://www.browserbase.com/sessions/{session_id}"
SEARCH_URL = "https://duckduckgo.com/?q={query}"
RESULT_SELECTOR = 'a[data-testid="result-title-a"]'

# Milliseconds
_NAV_TIMEOUT_MS = 45_000
_SETTLE_MS = 2_000

_COLLECT_JS = """(els, limit) => els.slice(0, limit).map(el => ({
    title: (el.textContent || '').trim(),
    url: el.href,
}))"""


class BrowserSessionError(RuntimeError):
    """The browser strategy failed; ``artifacts`` is set if a session was created."""

    def __init__(self, message: str, artifacts: ResearchArtifacts | None = None) -> None:
        super().__init__(message)
        self.artifacts = artifacts


@dataclass
class BrowserOutcome:
    sources: list[SourceLink] = field(default_factory=list)
    artifacts: ResearchArtifacts = field(default_factory=ResearchArtifacts)


class BrowserSessionResearcher:
    """Runs one search per task inside a fresh Browserbase session."""

    def __init__(
        self,
        api_key: str,
        project_id: str,
        context_id: str = "",
        *,
        max_sources: int = 3,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.project_id = project_id
        self.context_id = context_id
        self.max_sources = max_sources
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(
        cls,
        settings: ForageSettings,
        client: httpx.AsyncClient | None = None,
    ) -> "BrowserSessionResearcher | None":
        """None unless both the API key and project id are configured."""
        if not settings.browserbase_enabled:
            return None
        return cls(
            settings.browserbase_api_key,
            settings.browserbase_project_id,
            settings.browserbase_context_id,
            max_sources=settings.max_sources_per_task,
            client=client,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-BB-API-Key": self.api_key, "Content-Type": "application/json"}

    # ── Browserbase REST ─────────────────────────────────────────────────

    async def create_session(self) -> dict[str, Any]:
        client = await self._get_client()
        body: dict[str, Any] = {"projectId": self.project_id}
        if self.context_id:
            body["browserSettings"] = {"context": {"id": self.context_id, "persist": True}}
        response = await client.post(
            f"{BROWSERBASE_API}/sessions", json=body, headers=self._headers, timeout=self.timeout
        )
        response.raise_for_status()
        session = response.json()
        if not isinstance(session, dict) or not session.get("id") or not session.get("connectUrl"):
            raise ValueError("Browserbase returned a session without id or connectUrl")
        return session

    async def live_view_url(self, session_id: str) -> str | None:
        """Fullscreen debugger URL, or None if Browserbase will not say."""
        client = await self._get_client()
        try:
            response = await client.get(
                f"{BROWSERBASE_API}/sessions/{session_id}/debug",
                headers=self._headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("live_view_unavailable", session_id=session_id, error=str(exc))
            return None
        url = data.get("debuggerFullscreenUrl") if isinstance(data, dict) else None
        return url if isinstance(url, str) and url else None

    # ── Playwright ───────────────────────────────────────────────────────

    async def search_in_session(
        self,
        connect_url: str,
        query: str,
        screenshot_path: Path,
    ) -> list[dict[str, str]]:
        """Drive the remote browser; returns raw ``{title, url}`` anchors."""
        from playwright.async_api import async_playwright

        async with async_playwright() as pw:
            browser = await pw.chromium.connect_over_cdp(connect_url)
            try:
                context = browser.contexts[0] if browser.contexts else await browser.new_context()
                page = await context.new_page()
                await page.goto(
                    SEARCH_URL.format(query=quote_plus(query)),
                    wait_until="domcontentloaded",
                    timeout=_NAV_TIMEOUT_MS,
                )
                await page.wait_for_timeout(_SETTLE_MS)
                anchors = await page.eval_on_selector_all(RESULT_SELECTOR, _COLLECT_JS, self.max_sources)
                screenshot_path.parent.mkdir(parents=True, exist_ok=True)
                await page.screenshot(path=str(screenshot_path), full_page=True)
                await page.close()
            finally:
                await browser.close()
        return anchors or []

    async def research(self, task: ResearchTask, output_dir: Path) -> BrowserOutcome:
        """Run the full session flow for ``task``.

        Raises:
            BrowserSessionError: on any failure. ``artifacts`` is populated
                when the failure happened after the session was created.
        """
        try:
            session = await self.create_session()
        except (httpx.HTTPError, ValueError) as exc:
            raise BrowserSessionError(str(exc) or type(exc).__name__) from exc

        session_id = str(session["id"])
        artifacts = ResearchArtifacts(
            session_id=session_id,
            live_view_url=await self.live_view_url(session_id),
            replay_url=SESSION_PAGE.format(session_id=session_id),
            replay_hint=f"Recording available via Browserbase session {session_id}",
        )
        logger.info("browser_session_created", session_id=session_id, query=task.query)

        screenshot = Path(output_dir) / "assets" / f"{slugify(task.query, 60)}-search.png"
        try:
            anchors = await self.search_in_session(session["connectUrl"], task.query, screenshot)
        except Exception as exc:
            logger.warning("browser_session_failed", session_id=session_id, error=str(exc))
            raise BrowserSessionError(str(exc) or type(exc).__name__, artifacts) from exc

        artifacts.screenshots.append(str(screenshot))
        sources = [
            source
            for item in anchors
            if isinstance(item, dict)
            and (source := normalize_source(str(item.get("url") or ""), item.get("title"))) is not None
        ]
        logger.info("browser_sources", session_id=session_id, count=len(sources))
        return BrowserOutcome(sources=sources, artifacts=artifacts)
