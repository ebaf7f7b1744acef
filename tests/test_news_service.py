"""Tests for payload parsing and the endpoint client."""

from unittest.mock import AsyncMock

import pytest

from app.client.errors import MalformedResponse, ServerUnavailable
from app.client.news_service import (
    ANALYZE_PATH,
    NEWS_PATH,
    STATS_PATH,
    NewsServiceClient,
    parse_article,
    parse_articles,
    parse_datetime,
    parse_story_detail,
    parse_story_group,
)
from app.client.retry import RetryController
from app.feed.models import Bias
from tests.conftest import article_payload


class TestParsing:

    def test_parse_article(self):
        article = parse_article(article_payload("a1", bias="left", aiHeading="Short heading"))

        assert article.id == "a1"
        assert article.display_title == "Short heading"
        assert article.source.name == "Reuters"
        assert article.source.bias == Bias.LEFT
        assert article.bias == Bias.LEFT
        assert article.bias_confidence == 0.75
        assert article.keywords == ("budget", "congress")
        assert article.published_at.year == 2024
        assert article.summary is None

    def test_parse_article_variants(self):
        article = parse_article({
            "id": "a2",
            "title": " Title ",
            "source": "Local Paper",
            "bias": "RIGHT",
            "biasConfidence": 3,
        })

        assert article.id == "a2"
        assert article.title == "Title"
        assert article.source.name == "Local Paper"
        assert article.source.bias == Bias.UNKNOWN
        assert article.bias == Bias.RIGHT
        assert article.bias_confidence == 1.0
        assert article.category == "general"

    @pytest.mark.parametrize("payload", [
        {"title": "No id"},
        {"_id": "a3"},
        {"_id": "a3", "title": "Bad confidence", "biasConfidence": "high"},
    ])
    def test_unusable_article(self, payload):
        assert parse_article(payload) is None

    def test_duplicate_ids_are_dropped(self):
        articles = parse_articles([
            article_payload("a1"),
            article_payload("a2"),
            article_payload("a1", title="Repeat"),
            "not an object",
        ])

        assert [a.id for a in articles] == ["a1", "a2"]
        assert articles[0].title == "Headline a1"

    def test_parse_datetime(self):
        assert parse_datetime("2024-05-01T12:00:00Z").tzinfo is not None
        assert parse_datetime("yesterday") is None
        assert parse_datetime(None) is None

    def test_parse_story_group(self):
        group = parse_story_group({
            "_id": "s1",
            "mainHeadline": "Budget vote",
            "summary": "Both sides weigh in.",
            "category": "politics",
            "articles": [article_payload("a1", "left"), article_payload("a2", "left")],
            "biasDistribution": {"left": 5, "center": 0, "right": 0},
            "lastUpdated": "2024-05-02T08:00:00Z",
        })

        assert group.bias_distribution.left == 2
        assert group.bias_distribution.total == 2
        assert group.missing_biases.center and group.missing_biases.right
        assert group.last_updated.day == 2

    def test_parse_story_detail_wrapped(self):
        detail = parse_story_detail({
            "storyGroup": {"_id": "s1", "mainHeadline": "Budget vote"},
            "articlesByBias": {
                "left": [article_payload("a1", "left")],
                "center": [],
                "right": [article_payload("a2", "right")],
            },
            "missingBiases": {"left": False, "center": True, "right": False},
        })

        assert detail.group.id == "s1"
        assert [a.id for a in detail.group.articles] == ["a1", "a2"]
        assert detail.missing_biases.center
        assert not detail.missing_biases.left
        assert [a.id for a in detail.articles_by_bias[Bias.RIGHT]] == ["a2"]

    @pytest.mark.parametrize("by_bias", [
        ["not", "a", "mapping"],
        {"left": {"_id": "a1"}, "center": None, "right": "a2"},
    ])
    def test_parse_story_detail_with_malformed_columns(self, by_bias):
        detail = parse_story_detail({
            "_id": "s1",
            "mainHeadline": "Budget vote",
            "articles": [article_payload("a1", "left")],
            "articlesByBias": by_bias,
        })

        assert detail.group.id == "s1"
        assert detail.articles_by_bias[Bias.CENTER] == ()
        assert detail.articles_by_bias[Bias.RIGHT] == ()

    def test_parse_story_detail_without_id(self):
        with pytest.raises(MalformedResponse):
            parse_story_detail({"mainHeadline": "Anonymous"})


@pytest.fixture
def transport():
    return AsyncMock()


@pytest.fixture
def client(transport, recording_sleep):
    return NewsServiceClient(
        transport,
        retry=RetryController(max_attempts=3, delay=10, sleep=recording_sleep),
        stats_timeout=5,
        analyze_timeout=30,
    )


class TestNewsServiceClient:

    @pytest.mark.asyncio
    async def test_fetch_articles(self, client, transport):
        transport.get.return_value = {
            "articles": [article_payload("a1"), article_payload("a2")],
            "pagination": {"page": 1, "hasMore": True},
        }

        page = await client.fetch_articles({"page": 1, "limit": 2})

        transport.get.assert_awaited_once_with(NEWS_PATH, params={"page": 1, "limit": 2})
        assert [a.id for a in page.items] == ["a1", "a2"]
        assert page.has_more is True

    @pytest.mark.asyncio
    async def test_fetch_articles_retries_cold_start(self, client, transport, recording_sleep):
        transport.get.side_effect = [
            ServerUnavailable(status_code=503),
            {"articles": [], "pagination": {"hasMore": False}},
        ]
        statuses = []

        page = await client.fetch_articles({"page": 1}, on_status=statuses.append)

        assert page.items == []
        assert page.has_more is False
        assert statuses == ["Service is starting up, attempt 1/3..."]
        assert recording_sleep.delays == [10]

    @pytest.mark.asyncio
    async def test_missing_pagination_means_no_more(self, client, transport):
        transport.get.return_value = {"articles": [article_payload("a1")]}

        page = await client.fetch_articles({"page": 1})

        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_non_object_body_is_malformed(self, client, transport):
        transport.get.return_value = ["a1"]

        with pytest.raises(MalformedResponse):
            await client.fetch_articles({"page": 1})

    @pytest.mark.asyncio
    async def test_fetch_story_groups(self, client, transport):
        transport.get.return_value = {
            "storyGroups": [
                {"_id": "s1", "mainHeadline": "One", "articles": [article_payload("a1")]},
                {"mainHeadline": "No id"},
            ],
            "pagination": {"hasMore": False},
        }

        page = await client.fetch_story_groups({"page": 1, "limit": 10})

        assert [g.id for g in page.items] == ["s1"]
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_story_groups_are_not_retried(self, client, transport):
        transport.get.side_effect = ServerUnavailable(status_code=503)

        with pytest.raises(ServerUnavailable):
            await client.fetch_story_groups({"page": 1})
        assert transport.get.await_count == 1

    @pytest.mark.asyncio
    async def test_fetch_story_detail(self, client, transport):
        transport.get.return_value = {
            "_id": "s1",
            "mainHeadline": "Budget vote",
            "articles": [article_payload("a1", "center")],
        }

        detail = await client.fetch_story_detail("s1")

        transport.get.assert_awaited_once_with("/api/news/stories/s1")
        assert [a.id for a in detail.articles_by_bias[Bias.CENTER]] == ["a1"]

    @pytest.mark.asyncio
    async def test_fetch_stats(self, client, transport):
        transport.get.return_value = {
            "totalArticles": 120,
            "lastUpdate": "2024-05-01T12:00:00Z",
            "biasStats": {"left": 40},
        }

        stats = await client.fetch_stats()

        transport.get.assert_awaited_once_with(STATS_PATH, timeout=5)
        assert stats.total_articles == 120
        assert stats.bias_stats == {"left": 40}
        assert stats.category_stats == {}

    @pytest.mark.asyncio
    async def test_analyze(self, client, transport):
        transport.post.return_value = {"summary": "  Lawmakers agreed.  "}

        summary = await client.analyze("Some article text")

        transport.post.assert_awaited_once_with(ANALYZE_PATH, {"text": "Some article text"}, timeout=30)
        assert summary == "Lawmakers agreed."

    @pytest.mark.asyncio
    async def test_close(self, client, transport):
        await client.close()
        transport.close.assert_awaited_once()
