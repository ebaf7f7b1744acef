"""
Client for the news aggregation service endpoints.
Turns JSON payloads into Article, StoryGroup, and stats models.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.client.errors import MalformedResponse
from app.client.retry import RetryController, StatusCallback
from app.client.transport import TransportClient
from app.feed import aggregator
from app.feed.models import (
    Article,
    Bias,
    COVERED_BIASES,
    FeedStats,
    Source,
    StoryDetail,
    StoryGroup,
)

logger = logging.getLogger(__name__)

NEWS_PATH = "/api/news"
STORIES_PATH = "/api/news/stories"
STATS_PATH = "/api/news/stats"
ANALYZE_PATH = "/api/analyze"


@dataclass
class FeedPage:
    """One page of results from a list endpoint."""
    items: List[Any]
    has_more: bool


def parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None


def parse_article(data: Dict[str, Any]) -> Optional[Article]:
    """
    Parse an article payload.

    Args:
        data: Article object from the service

    Returns:
        Article or None if the payload lacks an id or title
    """
    try:
        article_id = str(data.get("_id") or data.get("id") or "").strip()
        title = (data.get("title") or "").strip()

        if not article_id or not title:
            return None

        source_data = data.get("source") or {}
        if isinstance(source_data, str):
            source_data = {"name": source_data}

        source = Source(
            name=(source_data.get("name") or "Unknown").strip(),
            url=source_data.get("url"),
            bias=Bias.parse(source_data.get("bias")),
        )

        confidence = float(data.get("biasConfidence") or 0.0)

        return Article(
            id=article_id,
            title=title,
            description=(data.get("description") or data.get("content") or "").strip(),
            url=data.get("url"),
            published_at=parse_datetime(data.get("publishedAt")),
            source=source,
            ai_heading=data.get("aiHeading") or None,
            summary=data.get("summary") or None,
            category=data.get("category") or "general",
            bias=Bias.parse(data.get("articleBias") or data.get("bias")),
            bias_confidence=min(max(confidence, 0.0), 1.0),
            bias_reasoning=data.get("biasReasoning") or None,
            keywords=tuple(data.get("keywords") or ()),
        )

    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Failed to parse article: {e}")
        return None


def parse_articles(items: List[Dict[str, Any]]) -> List[Article]:
    """Parse a batch, keeping the first occurrence of each identifier."""
    articles = []
    seen_ids = set()

    for item in items or []:
        if not isinstance(item, dict):
            continue
        article = parse_article(item)
        if article is None:
            continue
        if article.id in seen_ids:
            logger.warning(f"Dropping duplicate article {article.id} in batch")
            continue
        seen_ids.add(article.id)
        articles.append(article)

    return articles


def parse_story_group(data: Dict[str, Any]) -> Optional[StoryGroup]:
    try:
        group_id = str(data.get("_id") or data.get("id") or "").strip()
        if not group_id:
            return None

        articles = parse_articles(
            [a for a in data.get("articles") or [] if isinstance(a, dict)]
        )

        return aggregator.build_story_group(
            group_id=group_id,
            main_headline=(data.get("mainHeadline") or data.get("title") or "").strip(),
            summary=data.get("summary") or "",
            category=data.get("category") or "general",
            articles=articles,
            last_updated=parse_datetime(data.get("lastUpdated")),
        )

    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Failed to parse story group: {e}")
        return None


def parse_story_detail(data: Dict[str, Any]) -> StoryDetail:
    """
    Parse a story detail payload.

    Accepts either {storyGroup, articlesByBias, missingBiases} or a
    story group object carrying articlesByBias directly.
    """
    group_data = data.get("storyGroup") if isinstance(data.get("storyGroup"), dict) else data
    by_bias_data = data.get("articlesByBias") or group_data.get("articlesByBias") or {}
    if not isinstance(by_bias_data, dict):
        logger.warning(f"Ignoring malformed articlesByBias of type {type(by_bias_data).__name__}")
        by_bias_data = {}

    columns: Dict[Bias, List[Article]] = {}
    for bias in COVERED_BIASES:
        column = by_bias_data.get(bias.value)
        columns[bias] = parse_articles(column if isinstance(column, list) else [])

    group = parse_story_group(group_data)
    if group is None:
        raise MalformedResponse("Story detail without an identifier", path=STORIES_PATH)

    if not group.articles:
        # Detail payloads may only carry the bias columns
        merged = [a for bias in COVERED_BIASES for a in columns[bias]]
        group = aggregator.build_story_group(
            group_id=group.id,
            main_headline=group.main_headline,
            summary=group.summary,
            category=group.category,
            articles=merged,
            last_updated=group.last_updated,
        )

    detail = aggregator.build_story_detail(group, columns)

    reported = data.get("missingBiases")
    if isinstance(reported, dict) and reported != detail.missing_biases.as_dict():
        logger.info(f"Story {group.id}: server missingBiases {reported} differ from computed")

    return detail


def parse_stats(data: Dict[str, Any]) -> FeedStats:
    return FeedStats(
        total_articles=int(data.get("totalArticles") or 0),
        last_update=parse_datetime(data.get("lastUpdate")),
        bias_stats=dict(data.get("biasStats") or {}),
        category_stats=dict(data.get("categoryStats") or {}),
    )


def _pagination(data: Dict[str, Any]) -> bool:
    pagination = data.get("pagination") or {}
    return bool(pagination.get("hasMore", False))


class NewsServiceClient:
    """
    Endpoint-level client for the news aggregation service.
    """

    def __init__(
        self,
        transport: TransportClient,
        retry: Optional[RetryController] = None,
        stats_timeout: Optional[float] = None,
        analyze_timeout: Optional[float] = None
    ):
        """
        Initialize the service client.

        Args:
            transport: Transport used for every round trip
            retry: Cold-start retry policy for the primary feed endpoint
            stats_timeout: Timeout for the stats endpoint
            analyze_timeout: Timeout for summary requests
        """
        self.transport = transport
        self.retry = retry or RetryController()
        self.stats_timeout = stats_timeout or transport.config["stats_timeout"]
        self.analyze_timeout = analyze_timeout or transport.config["analyze_timeout"]

    async def close(self) -> None:
        await self.transport.close()

    async def fetch_articles(
        self,
        params: Dict[str, Any],
        on_status: Optional[StatusCallback] = None
    ) -> FeedPage:
        """
        Fetch one page of articles from the primary feed, retrying cold starts.

        Args:
            params: Query parameters built from the filter state
            on_status: Receives cold-start status messages

        Returns:
            FeedPage of Article
        """
        data = await self.retry.call(
            lambda: self.transport.get(NEWS_PATH, params=params),
            on_status=on_status
        )
        data = self._expect_object(data, NEWS_PATH)
        return FeedPage(items=parse_articles(data.get("articles") or []), has_more=_pagination(data))

    async def fetch_story_groups(self, params: Dict[str, Any]) -> FeedPage:
        data = self._expect_object(await self.transport.get(STORIES_PATH, params=params), STORIES_PATH)

        groups = []
        for item in data.get("storyGroups") or []:
            group = parse_story_group(item) if isinstance(item, dict) else None
            if group:
                groups.append(group)

        return FeedPage(items=groups, has_more=_pagination(data))

    async def fetch_story_detail(self, story_id: str) -> StoryDetail:
        path = f"{STORIES_PATH}/{story_id}"
        data = self._expect_object(await self.transport.get(path), path)
        return parse_story_detail(data)

    async def fetch_stats(self) -> FeedStats:
        data = self._expect_object(
            await self.transport.get(STATS_PATH, timeout=self.stats_timeout), STATS_PATH
        )
        return parse_stats(data)

    async def analyze(self, text: str) -> str:
        """
        Request a summary for a piece of text.

        Args:
            text: Article text to summarize

        Returns:
            Summary text (may be empty if the service produced none)
        """
        data = self._expect_object(
            await self.transport.post(ANALYZE_PATH, {"text": text}, timeout=self.analyze_timeout),
            ANALYZE_PATH
        )
        return (data.get("summary") or "").strip()

    @staticmethod
    def _expect_object(data: Any, path: str) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise MalformedResponse(f"Expected a JSON object from {path}", path=path)
        return data
