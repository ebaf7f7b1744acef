"""
Data model for the news feed engine.
Articles, story groups, filter state, progress, and the published snapshot.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from app.client.errors import ErrorKind


class Bias(str, Enum):
    """Editorial-bias label of a source or article."""
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "Bias":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


# Perspectives a story can be missing; unknown never counts as coverage
COVERED_BIASES = (Bias.LEFT, Bias.CENTER, Bias.RIGHT)


class FeedState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class ViewMode(str, Enum):
    ARTICLES = "articles"
    STORIES = "stories"


@dataclass(frozen=True)
class Source:
    """Publication an article came from."""
    name: str
    url: Optional[str] = None
    bias: Bias = Bias.UNKNOWN


@dataclass(frozen=True)
class Article:
    """
    A single news item with provenance and bias metadata.

    The summary is None until enrichment completes; once it holds text
    it is never replaced.
    """
    id: str
    title: str
    description: str = ""
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    source: Source = field(default_factory=lambda: Source(name="Unknown"))
    ai_heading: Optional[str] = None
    summary: Optional[str] = None
    category: str = "general"
    bias: Bias = Bias.UNKNOWN
    bias_confidence: float = 0.0
    bias_reasoning: Optional[str] = None
    keywords: Tuple[str, ...] = ()

    @property
    def display_title(self) -> str:
        return self.ai_heading or self.title

    @property
    def has_summary(self) -> bool:
        return bool(self.summary and self.summary.strip())

    @property
    def effective_bias(self) -> Bias:
        """Article label first, then the source label, else unknown."""
        if self.bias in COVERED_BIASES:
            return self.bias
        if self.source.bias in COVERED_BIASES:
            return self.source.bias
        return Bias.UNKNOWN

    def with_summary(self, summary: str) -> "Article":
        """Return a copy carrying the summary, leaving existing summaries intact."""
        if self.has_summary or not summary:
            return self
        return replace(self, summary=summary)


@dataclass(frozen=True)
class BiasDistribution:
    left: int = 0
    center: int = 0
    right: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return self.left + self.center + self.right + self.unknown

    def count(self, bias: Bias) -> int:
        return getattr(self, Bias.parse(bias).value)

    def share(self, bias: Bias) -> float:
        """Fraction of all articles carrying the bias."""
        return self.count(bias) / self.total if self.total else 0.0

    def as_dict(self) -> Dict[str, int]:
        return {
            "left": self.left,
            "center": self.center,
            "right": self.right,
            "unknown": self.unknown,
        }


@dataclass(frozen=True)
class MissingBiases:
    left: bool = True
    center: bool = True
    right: bool = True

    @property
    def any(self) -> bool:
        return self.left or self.center or self.right

    def labels(self) -> Tuple[str, ...]:
        names = {"left": "Left-leaning", "center": "Centrist", "right": "Right-leaning"}
        return tuple(names[b.value] for b in COVERED_BIASES if getattr(self, b.value))

    def as_dict(self) -> Dict[str, bool]:
        return {"left": self.left, "center": self.center, "right": self.right}


@dataclass(frozen=True)
class StoryGroup:
    """
    Cluster of articles covering the same event.

    Articles are shared references; the group does not copy them.
    """
    id: str
    main_headline: str
    summary: str = ""
    category: str = "general"
    articles: Tuple[Article, ...] = ()
    bias_distribution: BiasDistribution = field(default_factory=BiasDistribution)
    missing_biases: MissingBiases = field(default_factory=MissingBiases)
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if self.bias_distribution.total != len(self.articles):
            raise ValueError(
                f"Story {self.id}: bias distribution covers {self.bias_distribution.total} "
                f"articles but the group has {len(self.articles)}"
            )


@dataclass(frozen=True)
class StoryDetail:
    """Story group split into side-by-side bias columns."""
    group: StoryGroup
    articles_by_bias: Mapping[Bias, Tuple[Article, ...]]
    missing_biases: MissingBiases


@dataclass(frozen=True)
class FilterState:
    category: str = "all"
    bias: str = "all"
    sort_by: str = "publishedAt"
    sort_order: str = "desc"
    date_from: str = ""
    date_to: str = ""
    search: str = ""
    page: int = 1

    def __post_init__(self):
        if self.page < 1:
            raise ValueError(f"page is 1-based, got {self.page}")
        if self.sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got {self.sort_order!r}")


@dataclass(frozen=True)
class EnrichmentProgress:
    current: int = 0
    total: int = 0

    def __post_init__(self):
        if not 0 <= self.current <= self.total:
            raise ValueError(f"Invalid progress {self.current}/{self.total}")

    @property
    def complete(self) -> bool:
        return self.current == self.total

    def advance(self) -> "EnrichmentProgress":
        return EnrichmentProgress(current=self.current + 1, total=self.total)


@dataclass(frozen=True)
class FeedStats:
    """Advisory service statistics."""
    total_articles: int = 0
    last_update: Optional[datetime] = None
    bias_stats: Dict[str, int] = field(default_factory=dict)
    category_stats: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class FeedError:
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    attempts_remaining: Optional[int] = None


FeedItem = Union[Article, StoryGroup]


@dataclass(frozen=True)
class FeedSnapshot:
    """
    Published, read-only feed state.

    A new snapshot is produced for every change; earlier ones stay valid.
    """
    state: FeedState = FeedState.IDLE
    view: ViewMode = ViewMode.ARTICLES
    items: Tuple[FeedItem, ...] = ()
    has_more: bool = True
    loading: bool = False
    error: Optional[FeedError] = None
    progress: EnrichmentProgress = field(default_factory=EnrichmentProgress)
    filters: FilterState = field(default_factory=FilterState)
    status_message: Optional[str] = None
    selected_story: Optional[StoryDetail] = None
    selection_error: Optional[str] = None
    generation: int = 0

    @property
    def is_empty(self) -> bool:
        """Ready with nothing to show and nothing more to load."""
        return self.state == FeedState.READY and not self.items and not self.has_more

    @property
    def empty_message(self) -> Optional[str]:
        if not self.is_empty:
            return None
        if self.view == ViewMode.STORIES:
            return "No story groups found. Stories are automatically grouped from similar articles."
        return ErrorKind.EMPTY_RESULT.message
