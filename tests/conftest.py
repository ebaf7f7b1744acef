"""Shared fixtures: in-memory news service and feed engine."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from app.client.news_service import FeedPage
from app.feed import aggregator
from app.feed.enrichment import EnrichmentPipeline
from app.feed.filters import FilterController
from app.feed.models import Article, Bias, FeedStats, Source
from app.feed.state import FeedStateMachine

BIAS_CYCLE = (Bias.LEFT, Bias.CENTER, Bias.RIGHT)
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_article(
    article_id: str,
    bias: Bias = Bias.CENTER,
    summary: Optional[str] = None,
    source: str = "Reuters",
    description: str = "Lawmakers met on Tuesday to debate the new budget proposal in detail.",
    minutes_ago: int = 0,
    category: str = "politics"
) -> Article:
    return Article(
        id=article_id,
        title=f"Headline {article_id}",
        description=description,
        url=f"https://example.com/{article_id}",
        published_at=BASE_TIME - timedelta(minutes=minutes_ago),
        source=Source(name=source, url="https://example.com", bias=bias),
        summary=summary,
        category=category,
        bias=bias,
        bias_confidence=0.8,
    )


def article_payload(article_id: str, bias: str = "center", **overrides) -> Dict[str, Any]:
    payload = {
        "_id": article_id,
        "title": f"Headline {article_id}",
        "description": "Lawmakers met on Tuesday to debate the new budget proposal in detail.",
        "url": f"https://example.com/{article_id}",
        "publishedAt": "2024-05-01T12:00:00Z",
        "source": {"name": "Reuters", "url": "https://reuters.com", "bias": bias},
        "category": "politics",
        "articleBias": bias,
        "biasConfidence": 0.75,
        "keywords": ["budget", "congress"],
    }
    payload.update(overrides)
    return payload


class FakeNewsService:
    """
    In-memory stand-in for NewsServiceClient.

    Pages are generated from the query parameters so every filter
    combination yields distinct, predictable article ids. Handlers can be
    replaced per test to inject failures or latency.
    """

    def __init__(self, pages: int = 2, page_size: int = 3):
        self.pages = pages
        self.page_size = page_size
        self.article_calls: List[Dict[str, Any]] = []
        self.story_calls: List[Dict[str, Any]] = []
        self.detail_calls: List[str] = []
        self.analyze_calls: List[str] = []
        self.articles_handler = None
        self.stories_handler = None
        self.detail_handler = None
        self.analyze_handler = None
        self.stats_result: Any = FeedStats(total_articles=42, bias_stats={"left": 10})
        self.closed = False

    def articles_for(self, params: Dict[str, Any]) -> FeedPage:
        page = int(params["page"])
        tag = params.get("search") or params.get("category") or "all"
        items = [
            make_article(f"{tag}-{page}-{i}", bias=BIAS_CYCLE[i % 3], minutes_ago=i)
            for i in range(self.page_size)
        ]
        return FeedPage(items=items, has_more=page < self.pages)

    async def fetch_articles(self, params, on_status=None) -> FeedPage:
        self.article_calls.append(dict(params))
        if self.articles_handler:
            return await self.articles_handler(params, on_status)
        return self.articles_for(params)

    async def fetch_story_groups(self, params) -> FeedPage:
        self.story_calls.append(dict(params))
        if self.stories_handler:
            return await self.stories_handler(params)
        page = int(params["page"])
        groups = [
            aggregator.build_story_group(
                group_id=f"story-{page}-{i}",
                main_headline=f"Story {page}-{i}",
                articles=[
                    make_article(f"s{page}{i}-l", bias=Bias.LEFT),
                    make_article(f"s{page}{i}-c", bias=Bias.CENTER),
                ],
                summary="Both sides weigh in.",
            )
            for i in range(2)
        ]
        return FeedPage(items=groups, has_more=page < self.pages)

    async def fetch_story_detail(self, story_id: str):
        self.detail_calls.append(story_id)
        if self.detail_handler:
            return await self.detail_handler(story_id)
        group = aggregator.build_story_group(
            group_id=story_id,
            main_headline="Budget vote",
            articles=[make_article("d-1", bias=Bias.LEFT), make_article("d-2", bias=Bias.LEFT)],
        )
        return aggregator.build_story_detail(group)

    async def fetch_stats(self) -> FeedStats:
        if isinstance(self.stats_result, Exception):
            raise self.stats_result
        return self.stats_result

    async def analyze(self, text: str) -> str:
        self.analyze_calls.append(text)
        if self.analyze_handler:
            return await self.analyze_handler(text)
        return f"Summary: {text[:24]}"

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest_asyncio.fixture
async def service():
    return FakeNewsService()


@pytest_asyncio.fixture
async def feed(service):
    machine = FeedStateMachine(
        service,
        enrichment=EnrichmentPipeline(service.analyze, delay=0, min_chars=0),
        filters=FilterController(search_debounce=0.05),
        articles_page_size=3,
        stories_page_size=2,
        enrich_summaries=True,
        server_story_grouping=True,
    )
    yield machine
    await machine.close()
