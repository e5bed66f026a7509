"""Tests for ContentFetcher and clean_html."""

from __future__ import annotations

import httpx
import pytest

from forage.models.schemas import SourceLink
from forage.tools.fetcher import ContentFetcher, clean_html

PAGE = """<html><head><title>t</title><style>body { color: red }</style>
<script>var tracking = 1;</script></head>
<body><h1>Vector   stores</h1>
<p>HNSW is the default index.</p><noscript>enable js</noscript></body></html>"""


class TestCleanHtml:
    def test_strips_tags_scripts_and_whitespace(self):
        text = clean_html(PAGE)
        assert "tracking" not in text
        assert "color" not in text
        assert "enable js" not in text
        assert "Vector stores" in text
        assert "HNSW is the default index." in text
        assert "  " not in text

    def test_truncates(self):
        assert len(clean_html("<p>" + "a" * 500 + "</p>", max_chars=100)) == 100

    def test_empty(self):
        assert clean_html("") == ""


class TestEnrich:
    async def test_content_per_source_in_order(self, mock_client, source_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "missing.com":
                return httpx.Response(404, text="<p>not found</p>")
            return httpx.Response(200, text=f"<p>page of {request.url.host}</p>")

        sources = [
            source_factory("https://a.com/x"),
            source_factory("https://missing.com/y"),
            source_factory("https://b.com/z"),
        ]
        enriched = await ContentFetcher(client=mock_client(handler)).enrich(sources)

        assert [s.url for s in enriched] == [s.url for s in sources]
        assert [s.content for s in enriched] == ["page of a.com", "", "page of b.com"]
        assert all(s.fetched_at is not None for s in enriched)
        assert sources[0].content is None

    async def test_transport_error_gives_empty_content(self, mock_client, source_factory):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        [enriched] = await ContentFetcher(client=mock_client(handler)).enrich([source_factory()])
        assert enriched.content == ""

    async def test_max_chars(self, mock_client, source_factory):
        client = mock_client(lambda request: httpx.Response(200, text="<p>" + "w" * 50 + "</p>"))
        [enriched] = await ContentFetcher(max_chars=10, client=client).enrich([source_factory()])
        assert enriched.content == "w" * 10

    async def test_no_sources(self):
        assert await ContentFetcher().enrich([]) == []


class TestSourceLocalFailures:
    BAD_URLS = [
        "https://a\x01b.example.com/a",
        "https://good.example.com/" + "a" * 70_000,
    ]

    @pytest.mark.parametrize("bad_url", BAD_URLS)
    async def test_unusable_url_keeps_the_good_source(self, bad_url, mock_client, source_factory):
        client = mock_client(lambda request: httpx.Response(200, text="<p>good page</p>"))
        sources = [
            source_factory("https://good.example.com/a"),
            SourceLink(title="bad", url=bad_url, domain="good.example.com"),
        ]

        enriched = await ContentFetcher(client=client).enrich(sources)

        assert [s.content for s in enriched] == ["good page", ""]

    async def test_unexpected_error_is_source_local(self, mock_client, source_factory, monkeypatch):
        fetcher = ContentFetcher(client=mock_client(lambda request: httpx.Response(200, text="<p>ok</p>")))
        real_fetch = fetcher.fetch_text

        async def flaky_fetch(url):
            if "b.com" in url:
                raise ValueError("parser blew up")
            return await real_fetch(url)

        monkeypatch.setattr(fetcher, "fetch_text", flaky_fetch)
        enriched = await fetcher.enrich([source_factory("https://a.com/x"), source_factory("https://b.com/y")])

        assert [s.content for s in enriched] == ["ok", ""]
        assert all(s.fetched_at is not None for s in enriched)
