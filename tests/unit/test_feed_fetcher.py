"""Unit tests for feed download and normalisation (httpx MockTransport, no network)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from harvester.core.errors import FeedFetchError
from harvester.services.feed_fetcher import FeedFetcher, clean_title, strip_markup

FEED_URL = "https://aiwire.example.com/feed"

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>AI Wire</title>
    <link>https://aiwire.example.com</link>
    <item>
      <title>\xf0\x9f\x9a\x80 OpenAI   releases GPT-5</title>
      <link>https://aiwire.example.com/gpt-5</link>
      <description>Short teaser</description>
      <content:encoded><![CDATA[<p>Full <b>story</b> here.</p>]]></content:encoded>
      <pubDate>Thu, 07 Aug 2025 17:00:00 GMT</pubDate>
    </item>
    <item>
      <title>No link on this one</title>
    </item>
    <item>
      <link>https://aiwire.example.com/untitled</link>
    </item>
    <item>
      <title>Undated item</title>
      <link>https://aiwire.example.com/undated</link>
      <description>&lt;p&gt;Plain &lt;i&gt;summary&lt;/i&gt;&lt;/p&gt;</description>
    </item>
  </channel>
</rss>
"""

UNTITLED_RSS = b"""<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item><title>Only item</title><link>https://x.example.com/1</link></item>
</channel></rss>
"""


class FeedServer:
    """MockTransport handler replaying a fixed list of (status, body) responses."""

    def __init__(self, *responses: tuple[int, bytes]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses[min(len(self.requests), len(self.responses)) - 1]
        return httpx.Response(status, content=body)


@pytest.fixture
async def client_for():
    clients: list[httpx.AsyncClient] = []

    def _make(server: FeedServer) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(server))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


def test_clean_title_strips_leading_glyphs_and_whitespace():
    assert clean_title("\U0001f525\ufe0f  Big   news ") == "Big news"
    assert clean_title("GPT-5 \U0001f680") == "GPT-5 \U0001f680"


def test_strip_markup():
    assert strip_markup("<p>Hello <a href='#'>world</a></p>\n<br/>") == "Hello world"


class TestFetch:
    async def test_entries_normalised(self, client_for):
        fetcher = FeedFetcher(client=client_for(FeedServer((200, RSS))))
        articles = await fetcher.fetch(FEED_URL)

        assert [a.external_url for a in articles] == [
            "https://aiwire.example.com/gpt-5",
            "https://aiwire.example.com/undated",
        ]
        gpt5, undated = articles
        assert gpt5.title == "OpenAI releases GPT-5"
        assert gpt5.content == "Full story here."
        assert gpt5.published_at == datetime(2025, 8, 7, 17, 0, tzinfo=UTC)
        assert undated.content == "Plain summary"

    async def test_missing_date_defaults_to_now(self, client_for):
        fetcher = FeedFetcher(client=client_for(FeedServer((200, RSS))))
        undated = (await fetcher.fetch(FEED_URL))[-1]
        assert abs(datetime.now(UTC) - undated.published_at) < timedelta(minutes=1)

    async def test_http_error_raises_feed_fetch_error(self, client_for):
        fetcher = FeedFetcher(client=client_for(FeedServer((500, b"oops"))))
        with pytest.raises(FeedFetchError) as exc_info:
            await fetcher.fetch(FEED_URL)
        assert exc_info.value.feed_url == FEED_URL

    async def test_unparseable_body_raises(self, client_for):
        fetcher = FeedFetcher(client=client_for(FeedServer((200, b"<<< not a feed"))))
        with pytest.raises(FeedFetchError):
            await fetcher.fetch(FEED_URL)


class TestFetchSource:
    async def test_transient_failures_retried_with_backoff(
        self, client_for, tracker, fake_sleep
    ):
        server = FeedServer((503, b""), (503, b""), (200, RSS))
        fetcher = FeedFetcher(
            tracker=tracker, client=client_for(server), max_retries=3, initial_delay=2.0
        )

        articles = await fetcher.fetch_source("src-1", FEED_URL)

        assert len(articles) == 2
        assert len(server.requests) == 3
        assert fake_sleep.delays == [2.0, 4.0]
        stats = await tracker.get_stats()
        assert stats.unresolved == 0
        assert stats.total == 1

    async def test_persistent_failure_propagates(self, client_for, tracker, fake_sleep):
        server = FeedServer((404, b""))
        fetcher = FeedFetcher(
            tracker=tracker, client=client_for(server), max_retries=2, initial_delay=1.0
        )

        with pytest.raises(FeedFetchError):
            await fetcher.fetch_source("src-1", FEED_URL)

        assert len(server.requests) == 3
        assert fake_sleep.delays == [1.0, 2.0]
        stats = await tracker.get_stats()
        assert stats.by_type == {"fetch": 1}


class TestValidate:
    async def test_reports_title_and_item_count(self, client_for):
        info = await FeedFetcher(client=client_for(FeedServer((200, RSS)))).validate(FEED_URL)
        assert info.title == "AI Wire"
        assert info.item_count == 4

    async def test_untitled_feed(self, client_for):
        server = FeedServer((200, UNTITLED_RSS))
        info = await FeedFetcher(client=client_for(server)).validate(FEED_URL)
        assert info.title == "Unknown Feed"
        assert info.item_count == 1

    async def test_validation_is_not_retried(self, client_for, tracker):
        server = FeedServer((500, b""))
        fetcher = FeedFetcher(tracker=tracker, client=client_for(server))
        with pytest.raises(FeedFetchError):
            await fetcher.validate(FEED_URL)
        assert len(server.requests) == 1
