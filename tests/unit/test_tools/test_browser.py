"""Tests for BrowserSessionResearcher.

The Browserbase REST calls go through MockTransport; the Playwright step is
replaced on the instance so no browser is launched.
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from forage.models.schemas import ResearchTask
from forage.tools.browser import BROWSERBASE_API, BrowserSessionError, BrowserSessionResearcher

TASK = ResearchTask(query="Vector DB comparison", source_id="Ideas.md")


def _browserbase(seen: list[httpx.Request], *, session: dict | None = None, debug_status: int = 200):
    session = session if session is not None else {"id": "sess_1", "connectUrl": "wss://connect.test/sess_1"}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/v1/sessions":
            return httpx.Response(201, json=session)
        if path == "/v1/sessions/sess_1/debug":
            return httpx.Response(debug_status, json={"debuggerFullscreenUrl": "https://live.test/sess_1"})
        return httpx.Response(404)

    return handler


def _researcher(client, **kwargs) -> BrowserSessionResearcher:
    return BrowserSessionResearcher("bb-key", "proj-1", client=client, **kwargs)


class TestFromSettings:
    def test_disabled_without_credentials(self, settings):
        assert BrowserSessionResearcher.from_settings(settings) is None

    def test_enabled(self, make_settings):
        researcher = BrowserSessionResearcher.from_settings(
            make_settings(browserbase_api_key="bb", browserbase_project_id="p", max_sources_per_task=2)
        )
        assert researcher is not None
        assert researcher.max_sources == 2


class TestCreateSession:
    async def test_request_body_with_context(self, mock_client):
        seen: list[httpx.Request] = []
        researcher = _researcher(mock_client(_browserbase(seen)), context_id="ctx-9")

        session = await researcher.create_session()

        assert session["id"] == "sess_1"
        assert str(seen[0].url) == f"{BROWSERBASE_API}/sessions"
        assert seen[0].headers["X-BB-API-Key"] == "bb-key"
        assert json.loads(seen[0].content) == {
            "projectId": "proj-1",
            "browserSettings": {"context": {"id": "ctx-9", "persist": True}},
        }

    async def test_session_without_connect_url_rejected(self, mock_client):
        seen: list[httpx.Request] = []
        researcher = _researcher(mock_client(_browserbase(seen, session={"id": "sess_1"})))
        with pytest.raises(ValueError):
            await researcher.create_session()


class TestResearch:
    async def test_create_failure_has_no_artifacts(self, mock_client, tmp_path: Path):
        researcher = _researcher(mock_client(lambda request: httpx.Response(401, text="bad key")))
        with pytest.raises(BrowserSessionError) as exc_info:
            await researcher.research(TASK, tmp_path)
        assert exc_info.value.artifacts is None

    async def test_success(self, mock_client, tmp_path: Path, monkeypatch):
        seen: list[httpx.Request] = []
        researcher = _researcher(mock_client(_browserbase(seen)))
        calls = []

        async def fake_search(connect_url, query, screenshot_path):
            calls.append((connect_url, query, screenshot_path))
            return [
                {"title": "Qdrant docs", "url": "https://qdrant.tech/documentation/"},
                {"title": "junk", "url": "javascript:void(0)"},
            ]

        monkeypatch.setattr(researcher, "search_in_session", fake_search)
        outcome = await researcher.research(TASK, tmp_path)

        expected_shot = tmp_path / "assets" / "vector-db-comparison-search.png"
        assert calls == [("wss://connect.test/sess_1", TASK.query, expected_shot)]
        assert [s.domain for s in outcome.sources] == ["qdrant.tech"]
        artifacts = outcome.artifacts
        assert artifacts.session_id == "sess_1"
        assert artifacts.live_view_url == "https://live.test/sess_1"
        assert artifacts.replay_url == "https://www.browserbase.com/sessions/sess_1"
        assert artifacts.replay_hint == "Recording available via Browserbase session sess_1"
        assert artifacts.screenshots == [str(expected_shot)]

    async def test_live_view_failure_is_soft(self, mock_client, tmp_path: Path, monkeypatch):
        seen: list[httpx.Request] = []
        researcher = _researcher(mock_client(_browserbase(seen, debug_status=500)))

        async def fake_search(connect_url, query, screenshot_path):
            return []

        monkeypatch.setattr(researcher, "search_in_session", fake_search)
        outcome = await researcher.research(TASK, tmp_path)
        assert outcome.sources == []
        assert outcome.artifacts.live_view_url is None
        assert outcome.artifacts.session_id == "sess_1"

    async def test_failure_after_creation_carries_artifacts(self, mock_client, tmp_path: Path, monkeypatch):
        seen: list[httpx.Request] = []
        researcher = _researcher(mock_client(_browserbase(seen)))

        async def broken_search(connect_url, query, screenshot_path):
            raise RuntimeError("Target closed")

        monkeypatch.setattr(researcher, "search_in_session", broken_search)
        with pytest.raises(BrowserSessionError, match="Target closed") as exc_info:
            await researcher.research(TASK, tmp_path)

        artifacts = exc_info.value.artifacts
        assert artifacts is not None
        assert artifacts.session_id == "sess_1"
        assert artifacts.screenshots == []
