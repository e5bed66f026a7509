"""Unit-test conftest — temp vaults, settings factory, fakes and mock transports.

All fixtures here are available to every test under tests/unit/ without import.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from forage.config import ForageSettings
from forage.models.schemas import ResearchArtifacts, ResearchResult, ResearchTask, SourceLink
from forage.research.sources import normalize_source


# ─────────────────────────────────────────────────────────────────────────────
# FakeProbe: drop-in replacement for ProcessProbe
# ─────────────────────────────────────────────────────────────────────────────

class FakeProbe:
    """Process table in a set.

    Args:
        alive:          PIDs reported as alive.
        dies_on_term:   Whether SIGTERM removes the pid from ``alive``.
        dies_on_kill:   Whether SIGKILL removes the pid from ``alive``.
    """

    def __init__(self, alive=(), *, dies_on_term: bool = True, dies_on_kill: bool = True) -> None:
        self.alive = set(alive)
        self.dies_on_term = dies_on_term
        self.dies_on_kill = dies_on_kill
        self.signals: list[tuple[int, bool]] = []

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def signal(self, pid: int, force: bool = False) -> None:
        self.signals.append((pid, force))
        if (force and self.dies_on_kill) or (not force and self.dies_on_term):
            self.alive.discard(pid)


# ─────────────────────────────────────────────────────────────────────────────
# FakePipeline: drop-in replacement for ResearchPipeline
# ─────────────────────────────────────────────────────────────────────────────

class FakePipeline:
    """Returns ``result`` (or raises ``raises``) and records every task."""

    def __init__(self, result: ResearchResult | None = None, raises: Exception | None = None) -> None:
        self.result = result or make_result()
        self.raises = raises
        self.calls: list[ResearchTask] = []
        self.closed = False

    async def run(self, task: ResearchTask, output_dir: Path) -> ResearchResult:
        self.calls.append(task)
        if self.raises:
            raise self.raises
        return self.result

    async def close(self) -> None:
        self.closed = True


def make_source(url: str = "https://example.com/a", title: str = "Example", **updates: Any) -> SourceLink:
    source = normalize_source(url, title)
    assert source is not None
    return source.model_copy(update=updates) if updates else source


def make_result(**overrides: Any) -> ResearchResult:
    data: dict[str, Any] = {
        "mode": "fallback",
        "summary": "summary",
        "insights": ["insight [1]"],
        "citations": ["[1] title - https://example.com"],
        "confidence": 0.77,
        "confidence_reasons": ["reason"],
        "sources": [make_source("https://example.com", "title", content="content", quality_score=0.8)],
        "artifacts": ResearchArtifacts(
            session_id="s_123",
            live_view_url="https://live.example.com",
            replay_url="https://replay.example.com",
            replay_hint="hint",
        ),
    }
    data.update(overrides)
    return ResearchResult(**data)


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def write_note(vault: Path) -> Callable[..., Path]:
    """write_note("Ideas.md", "#investigate x", mtime=...) → absolute path."""

    def _write(rel_path: str, content: str, mtime: float | None = None) -> Path:
        path = vault / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _write


@pytest.fixture
def make_settings(vault: Path) -> Callable[..., ForageSettings]:
    def _make(**overrides: Any) -> ForageSettings:
        return ForageSettings(_env_file=None, vault_dir=vault, **overrides)

    return _make


@pytest.fixture
def settings(make_settings) -> ForageSettings:
    return make_settings()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe(alive={os.getpid()})


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """mock_client(handler) → AsyncClient whose every request goes to ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def offline_client(mock_client) -> httpx.AsyncClient:
    """Every request answers 503 — providers and fetches all come back empty."""
    return mock_client(lambda request: httpx.Response(503, text="unavailable"))


@pytest.fixture
def result_factory() -> Callable[..., ResearchResult]:
    return make_result


@pytest.fixture
def source_factory() -> Callable[..., SourceLink]:
    return make_source


@pytest.fixture
def pipeline_factory() -> type[FakePipeline]:
    return FakePipeline


@pytest.fixture
def probe_factory() -> type[FakeProbe]:
    return FakeProbe
