"""Core schemas — research tasks, sources, results and per-cycle stats.

ResearchTask    — one query extracted from a note
SourceLink      — a normalized, quality-scored search hit
ResearchResult  — everything the pipeline hands to the finding writer
RunStats        — ephemeral per-cycle counters (never persisted)
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from forage.utils.clock import now_utc


class TaskReason(str, Enum):
    EXPLICIT = "explicit"
    HEURISTIC = "heuristic"


class ResearchTask(BaseModel):
    """A research intent found in a note."""

    query: str
    source_id: str = Field(description="Vault-relative path of the originating note")
    reason: TaskReason = TaskReason.EXPLICIT
    snippet: str = Field(default="", description="The note text the query was extracted from")


class SourceLink(BaseModel):
    """A search hit after normalization.

    Only built through ``forage.research.sources.normalize_source`` so
    ``domain`` is always the lowercase hostname of ``url``.
    """

    title: str
    url: str
    domain: str
    snippet: str | None = None
    content: str | None = None
    fetched_at: datetime | None = None
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def is_https(self) -> bool:
        return self.url.startswith("https://")


class ResearchArtifacts(BaseModel):
    """References produced by an interactive browser session."""

    session_id: str | None = None
    live_view_url: str | None = None
    replay_url: str | None = None
    replay_hint: str | None = None
    screenshots: list[str] = []


class ResearchResult(BaseModel):
    """Output of one research pipeline run."""

    mode: str = Field(default="fallback", description="browser | fallback")
    synthesis: str = Field(default="heuristic", description="llm | heuristic")
    summary: str
    insights: list[str] = []
    open_questions: list[str] = []
    citations: list[str] = []
    sources: list[SourceLink] = []
    artifacts: ResearchArtifacts = Field(default_factory=ResearchArtifacts)
    confidence: float = 0.0
    confidence_reasons: list[str] = []
    warning: str | None = None


class SkippedTask(BaseModel):
    query: str
    source_id: str
    reason: str


class RunStats(BaseModel):
    """Counters for one cycle. Rendered into the cycle summary, never persisted."""

    started_at: datetime = Field(default_factory=now_utc)
    ended_at: datetime | None = None
    duration_ms: int | None = None
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    skips: list[SkippedTask] = []

    def finish(self) -> "RunStats":
        self.ended_at = now_utc()
        self.duration_ms = int((self.ended_at - self.started_at).total_seconds() * 1000)
        return self
