"""Synthesis stage — turns selected sources into a summary, insights and a confidence.

Two strategies, returned as a tagged variant the pipeline dispatches on:

  GenerativeSynthesis  — JSON answer from an OpenAI-compatible LLM, validated
                         strictly; any defect discards the whole answer
  HeuristicSynthesis   — first useful sentence per source, always available

The pipeline tries the generative path first and falls back to the
heuristic one whenever it returns None.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from forage.config import ForageSettings
from forage.models.schemas import ResearchTask, SourceLink
from forage.tools.inference import InferenceClient

logger = structlog.get_logger().bind(component="research.synthesizer")

MAX_INSIGHTS = 5
SENTENCE_MIN_CHARS = 40
SENTENCE_MAX_CHARS = 220
DEEP_CONTENT_CHARS = 900
PROMPT_CONTENT_CHARS = 1_500
NO_SOURCE_CONFIDENCE = 0.2

_SENTENCE_SPLIT = re.compile(r"[.!?]\s+")

_SYSTEM_PROMPT = (
    "You are a research synthesis assistant. Given a research query and source "
    "content, produce a structured JSON synthesis. Be concise, evidence-driven, "
    "and cite sources by number."
)

_SCHEMA_HINT = """\
Respond with a JSON object matching this exact schema:
{
  "summary": "2-3 sentence synthesis of the most important findings",
  "insights": ["insight with [N] citation", "..."] (3-5 bullet insights, each citing at least one source),
  "openQuestions": ["question 1", "question 2", "question 3"] (3 follow-up questions worth investigating),
  "confidence": 0.0-1.0 (float, how well-supported the synthesis is by the sources),
  "confidenceReasons": ["reason 1", "reason 2"] (2-3 reasons explaining the confidence score)
}"""


@dataclass
class GenerativeSynthesis:
    summary: str
    insights: list[str]
    open_questions: list[str]
    confidence: float
    confidence_reasons: list[str]


@dataclass
class HeuristicSynthesis:
    summary: str
    insights: list[str]
    confidence: float
    confidence_reasons: list[str] = field(default_factory=list)


Synthesis = GenerativeSynthesis | HeuristicSynthesis


class _LlmAnswer(BaseModel):
    """Wire shape of the LLM's JSON answer. Strict: no coercion, all fields required."""

    model_config = ConfigDict(strict=True, str_strip_whitespace=True)

    summary: str = Field(min_length=1)
    insights: list[str] = Field(min_length=1)
    openQuestions: list[str]
    confidence: float = Field(ge=0.0, le=1.0)
    confidenceReasons: list[str]


def with_warning(summary: str, warning: str | None) -> str:
    return f"{summary} Warning: {warning}" if warning else summary


def build_citations(sources: list[SourceLink]) -> list[str]:
    return [f"[{i}] {source.title} - {source.url}" for i, source in enumerate(sources, start=1)]


# ── Heuristic ────────────────────────────────────────────────────────────────


def first_useful_sentence(text: str) -> str | None:
    for candidate in _SENTENCE_SPLIT.split(text):
        candidate = candidate.strip()
        if SENTENCE_MIN_CHARS <= len(candidate) <= SENTENCE_MAX_CHARS:
            return candidate
    return None


def heuristic_confidence(sources: list[SourceLink]) -> float:
    if not sources:
        return NO_SOURCE_CONFIDENCE
    avg_quality = sum(s.quality_score for s in sources) / len(sources)
    diversity = min(len({s.domain for s in sources}) / 3, 1.0)
    deep = sum(1 for s in sources if len(s.content or "") > DEEP_CONTENT_CHARS) / len(sources)
    score = avg_quality * 0.6 + diversity * 0.2 + deep * 0.2
    return round(min(max(score, 0.0), 1.0), 2)


def heuristic_synthesis(
    task: ResearchTask,
    sources: list[SourceLink],
    warning: str | None = None,
) -> HeuristicSynthesis:
    insights: list[str] = []
    for index, source in enumerate(sources, start=1):
        sentence = first_useful_sentence(source.content or source.snippet or "")
        if sentence:
            insights.append(f"{sentence} [{index}]")
        if len(insights) >= MAX_INSIGHTS:
            break

    if insights:
        summary = (
            f'Synthesized {len(insights)} evidence-backed insight(s) for "{task.query}" '
            f"from {len(sources)} source(s)."
        )
    else:
        summary = f'Captured {len(sources)} source(s) for "{task.query}" but synthesis is limited.'
        if sources:
            insights.append(
                f'Initial results for "{task.query}" are available, but source text extraction was limited.'
            )
        else:
            insights.append(f'No sources were captured for "{task.query}"; rerun with a refined query.')

    reasons = [
        f"{len(sources)} source(s) captured",
        f"{len({s.domain for s in sources})} unique domain(s)",
        "At least one source has deep content"
        if any(len(s.content or "") > DEEP_CONTENT_CHARS for s in sources)
        else "Sources are shallow or snippet-only",
    ]
    return HeuristicSynthesis(
        summary=with_warning(summary, warning),
        insights=insights,
        confidence=heuristic_confidence(sources),
        confidence_reasons=reasons,
    )


# ── Generative ───────────────────────────────────────────────────────────────


def build_source_context(sources: list[SourceLink]) -> str:
    blocks = []
    for index, source in enumerate(sources, start=1):
        lines = [f"[{index}] {source.title} ({source.domain})", f"URL: {source.url}"]
        text = (source.content or source.snippet or "")[:PROMPT_CONTENT_CHARS].strip()
        if text:
            lines.append(f"Content: {text}")
        blocks.append("\n".join(lines))
    return "\n\n---\n\n".join(blocks)


def build_prompt(task: ResearchTask, sources: list[SourceLink], mode: str, warning: str | None) -> str:
    parts = [
        f'Research query: "{task.query}"',
        f"Source note: {task.source_id}",
        f"Research mode: {mode}",
    ]
    if warning:
        parts.append(f"Warning: {warning}")
    parts.append(f"Sources ({len(sources)}):\n{build_source_context(sources)}")
    parts.append(_SCHEMA_HINT)
    return "\n".join(parts)


def parse_answer(raw: str) -> _LlmAnswer | None:
    """Validate the model's JSON text; None on any defect."""
    if not raw or not raw.strip():
        return None
    try:
        return _LlmAnswer.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("llm_answer_rejected", errors=exc.error_count())
        return None


class LlmSynthesizer:
    """Generative synthesis over an :class:`InferenceClient`.

    Args:
        client: Configured inference client. Owned: closed by :meth:`close`.
    """

    def __init__(self, client: InferenceClient) -> None:
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: ForageSettings,
        client: httpx.AsyncClient | None = None,
    ) -> "LlmSynthesizer | None":
        if not settings.llm_enabled:
            return None
        return cls(
            InferenceClient(
                settings.llm_api_key,
                base_url=settings.llm_base_url,
                model=settings.llm_model,
                timeout=settings.llm_timeout_seconds,
                client=client,
            )
        )

    async def close(self) -> None:
        await self._client.close()

    async def synthesize(
        self,
        task: ResearchTask,
        sources: list[SourceLink],
        mode: str,
        warning: str | None = None,
    ) -> GenerativeSynthesis | None:
        if not sources:
            return None

        try:
            raw = await self._client.chat_simple(
                build_prompt(task, sources, mode, warning),
                system=_SYSTEM_PROMPT,
                temperature=0.2,
                max_tokens=1024,
                json_mode=True,
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("llm_synthesis_failed", query=task.query, error=str(exc))
            return None

        answer = parse_answer(raw)
        if answer is None:
            return None

        logger.info("llm_synthesis_ok", query=task.query, insights=len(answer.insights))
        return GenerativeSynthesis(
            summary=with_warning(answer.summary, warning),
            insights=answer.insights,
            open_questions=answer.openQuestions,
            confidence=round(answer.confidence, 2),
            confidence_reasons=answer.confidenceReasons,
        )
