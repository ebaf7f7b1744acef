"""
Story aggregation: bias distribution and missing-perspective detection.
Pure functions over article collections; nothing here holds state.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.feed.models import (
    Article,
    Bias,
    BiasDistribution,
    COVERED_BIASES,
    MissingBiases,
    StoryDetail,
    StoryGroup,
)

logger = logging.getLogger(__name__)

SOURCE_GROUP_PREFIX = "source:"


def bias_distribution(articles: Iterable[Article]) -> BiasDistribution:
    """
    Count articles per bias.

    Every article is counted exactly once, so the total always equals
    the number of articles.
    """
    counts = Counter(article.effective_bias for article in articles)
    return BiasDistribution(
        left=counts[Bias.LEFT],
        center=counts[Bias.CENTER],
        right=counts[Bias.RIGHT],
        unknown=counts[Bias.UNKNOWN],
    )


def missing_biases(distribution: BiasDistribution) -> MissingBiases:
    """Perspectives with no coverage; unknown never covers one."""
    return MissingBiases(
        left=distribution.left == 0,
        center=distribution.center == 0,
        right=distribution.right == 0,
    )


def articles_by_bias(articles: Iterable[Article]) -> Dict[Bias, Tuple[Article, ...]]:
    """Split articles into left/center/right columns, dropping unknowns."""
    columns: Dict[Bias, List[Article]] = {bias: [] for bias in COVERED_BIASES}
    for article in articles:
        bias = article.effective_bias
        if bias in columns:
            columns[bias].append(article)
    return {bias: tuple(items) for bias, items in columns.items()}


def build_story_group(
    group_id: str,
    main_headline: str,
    articles: Sequence[Article],
    summary: str = "",
    category: str = "general",
    last_updated: Optional[datetime] = None
) -> StoryGroup:
    """
    Build a story group with its distribution derived from the articles.

    Args:
        group_id: Story identifier
        main_headline: Headline shown for the story
        articles: Constituent articles (kept by reference)
        summary: Synthesized story summary
        category: Story category
        last_updated: Last update time; defaults to the newest article

    Returns:
        StoryGroup satisfying distribution.total == len(articles)
    """
    articles = tuple(articles)
    distribution = bias_distribution(articles)

    if last_updated is None:
        dated = [a for a in articles if a.published_at]
        last_updated = max(dated, key=_published_key).published_at if dated else None

    return StoryGroup(
        id=group_id,
        main_headline=main_headline or (articles[0].display_title if articles else ""),
        summary=summary,
        category=category,
        articles=articles,
        bias_distribution=distribution,
        missing_biases=missing_biases(distribution),
        last_updated=last_updated,
    )


def aggregate(group: StoryGroup) -> StoryGroup:
    """Recompute a group's distribution and missing flags from its articles."""
    return build_story_group(
        group_id=group.id,
        main_headline=group.main_headline,
        articles=group.articles,
        summary=group.summary,
        category=group.category,
        last_updated=group.last_updated,
    )


def build_story_detail(
    group: StoryGroup,
    columns: Optional[Mapping[Bias, Sequence[Article]]] = None
) -> StoryDetail:
    """
    Build the side-by-side comparison for a story.

    Columns supplied by the service are used as given; otherwise they are
    derived from the group's articles.
    """
    if columns and any(columns.get(bias) for bias in COVERED_BIASES):
        by_bias = {bias: tuple(columns.get(bias) or ()) for bias in COVERED_BIASES}
    else:
        by_bias = articles_by_bias(group.articles)

    missing = MissingBiases(
        left=not by_bias[Bias.LEFT],
        center=not by_bias[Bias.CENTER],
        right=not by_bias[Bias.RIGHT],
    )

    return StoryDetail(group=group, articles_by_bias=by_bias, missing_biases=missing)


def _published_key(article: Article) -> datetime:
    if article.published_at is None:
        return datetime.min
    published = article.published_at
    if published.tzinfo is not None:
        published = published.astimezone(timezone.utc).replace(tzinfo=None)
    return published


def group_by_source(articles: Sequence[Article]) -> List[StoryGroup]:
    """
    Degraded grouping used when the service provides no story groups.

    One group per distinct source, in order of first appearance, headed by
    the source's newest article.
    """
    by_source: Dict[str, List[Article]] = {}
    for article in articles:
        by_source.setdefault(article.source.name, []).append(article)

    groups = []
    for name, items in by_source.items():
        newest = max(items, key=_published_key)
        categories = Counter(a.category for a in items)
        groups.append(build_story_group(
            group_id=f"{SOURCE_GROUP_PREFIX}{name}",
            main_headline=newest.display_title,
            articles=items,
            summary=newest.summary or newest.description,
            category=categories.most_common(1)[0][0],
        ))

    logger.info(f"Grouped {len(articles)} articles into {len(groups)} source groups")
    return groups


def is_source_group(story_id: str) -> bool:
    """Whether a story id was produced by group_by_source rather than the service."""
    return story_id.startswith(SOURCE_GROUP_PREFIX)


def merge_source_groups(existing: Sequence[StoryGroup], incoming: Sequence[StoryGroup]) -> List[StoryGroup]:
    """
    Fold a further page of source groups into the groups already loaded.

    Each source keeps a single group, in order of first appearance.
    """
    articles = [a for group in existing for a in group.articles]
    articles.extend(a for group in incoming for a in group.articles)
    return group_by_source(articles)
