"""ResearchPipeline — one task in, one ResearchResult out.

Stages::

    ProviderChain.lookup ──▶ [browser session override] ──▶ dedupe_by_domain
        ──▶ ContentFetcher.enrich ──▶ rank_sources ──▶ synthesis (LLM → heuristic)

Collaborators are injected so tests can replace any stage.  Every stage
degrades instead of raising: a task only fails when something outside these
contracts breaks (disk, programming errors).
"""

from __future__ import annotations

from pathlib import Path

import httpx
import structlog

from forage.config import ForageSettings
from forage.models.schemas import ResearchArtifacts, ResearchResult, ResearchTask, SourceLink
from forage.research.sources import dedupe_by_domain, rank_sources
from forage.research.synthesizer import (
    GenerativeSynthesis,
    HeuristicSynthesis,
    LlmSynthesizer,
    Synthesis,
    build_citations,
    heuristic_synthesis,
)
from forage.tools.browser import BrowserSessionError, BrowserSessionResearcher
from forage.tools.fetcher import ContentFetcher
from forage.tools.search import ProviderChain

logger = structlog.get_logger().bind(component="research.pipeline")


class ResearchPipeline:
    """Runs the research stages for a single task.

    Args:
        chain:          Provider fallback chain (cold-start candidates).
        fetcher:        Content enrichment for the selected sources.
        max_sources:    Sources kept after scoring.
        browser:        Optional browser session strategy.
        synthesizer:    Optional generative synthesizer.
        client:         Shared httpx client, closed by :meth:`close` if given.
    """

    def __init__(
        self,
        chain: ProviderChain,
        fetcher: ContentFetcher,
        *,
        max_sources: int = 3,
        browser: BrowserSessionResearcher | None = None,
        synthesizer: LlmSynthesizer | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.chain = chain
        self.fetcher = fetcher
        self.max_sources = max_sources
        self.browser = browser
        self.synthesizer = synthesizer
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: ForageSettings,
        client: httpx.AsyncClient | None = None,
    ) -> "ResearchPipeline":
        """Wire the default stages over one shared httpx client."""
        client = client or httpx.AsyncClient(follow_redirects=True)
        return cls(
            ProviderChain.from_settings(settings, client=client),
            ContentFetcher(
                timeout=settings.fetch_timeout_seconds,
                max_chars=settings.content_max_chars,
                client=client,
            ),
            max_sources=settings.max_sources_per_task,
            browser=BrowserSessionResearcher.from_settings(settings, client=client),
            synthesizer=LlmSynthesizer.from_settings(settings, client=client),
            client=client,
        )

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _collect(
        self,
        task: ResearchTask,
        output_dir: Path,
    ) -> tuple[list[SourceLink], str, ResearchArtifacts, str | None]:
        """Candidate sources, mode, artifacts and warning before selection."""
        candidates, provider = await self.chain.lookup(task.query)
        candidates = candidates[: max(2 * self.max_sources, self.max_sources)]
        logger.debug("chain_candidates", query=task.query, provider=provider, count=len(candidates))

        mode = "fallback"
        artifacts = ResearchArtifacts()
        warning = None
        if self.browser is None:
            return candidates, mode, artifacts, warning

        try:
            outcome = await self.browser.research(task, output_dir)
        except BrowserSessionError as exc:
            warning = f"Browser session research failed, fell back to HTTP: {exc}"
            logger.warning("browser_fallback", query=task.query, error=str(exc))
            if exc.artifacts is not None:
                artifacts = exc.artifacts
            return candidates, mode, artifacts, warning

        artifacts = outcome.artifacts
        if outcome.sources:
            candidates = outcome.sources
            mode = "browser"
        return candidates, mode, artifacts, warning

    async def _synthesize(
        self,
        task: ResearchTask,
        sources: list[SourceLink],
        mode: str,
        warning: str | None,
    ) -> Synthesis:
        if self.synthesizer is not None:
            generated = await self.synthesizer.synthesize(task, sources, mode, warning)
            if generated is not None:
                return generated
        return heuristic_synthesis(task, sources, warning)

    async def run(self, task: ResearchTask, output_dir: Path) -> ResearchResult:
        candidates, mode, artifacts, warning = await self._collect(task, Path(output_dir))

        unique = dedupe_by_domain(candidates, self.max_sources)
        enriched = await self.fetcher.enrich(unique)
        selected = rank_sources(enriched, self.max_sources)

        synthesis = await self._synthesize(task, selected, mode, warning)
        result = ResearchResult(
            mode=mode,
            summary=synthesis.summary,
            insights=synthesis.insights,
            citations=build_citations(selected),
            sources=selected,
            artifacts=artifacts,
            confidence=synthesis.confidence,
            confidence_reasons=synthesis.confidence_reasons,
            warning=warning,
        )
        if isinstance(synthesis, GenerativeSynthesis):
            result.synthesis = "llm"
            result.open_questions = synthesis.open_questions
        elif isinstance(synthesis, HeuristicSynthesis):
            result.synthesis = "heuristic"

        logger.info(
            "research_complete",
            query=task.query,
            mode=result.mode,
            synthesis=result.synthesis,
            sources=len(selected),
            confidence=result.confidence,
        )
        return result
