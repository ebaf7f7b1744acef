"""
Summary enrichment for articles that arrive without one.
Requests are strictly sequential to stay under the service's rate limit.
"""

import asyncio
import logging
import re
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from app.utils.config import get_feed_config
from app.client.errors import ClientError, NetworkError, RateLimited, ServerUnavailable
from app.feed.models import Article, EnrichmentProgress

logger = logging.getLogger(__name__)

Analyzer = Callable[[str], Awaitable[str]]
ProgressCallback = Callable[[EnrichmentProgress, Tuple[Article, ...]], None]

INSUFFICIENT_CONTENT_SUMMARY = "Not enough content available to generate a summary."
RATE_LIMITED_SUMMARY = "Summary unavailable: rate limit reached. Please try again later."
SERVER_ERROR_SUMMARY = "Summary unavailable: the summarization service encountered an error."
GENERIC_FAILURE_SUMMARY = "Summary unavailable."

_whitespace_pattern = re.compile(r"\s+")
_html_pattern = re.compile(r"<[^>]+>")


def prepare_text(article: Article) -> str:
    """
    Build the text sent for summarization.

    Title and description, stripped of markup and with whitespace collapsed.
    """
    parts = [article.title, article.description]
    text = " ".join(p for p in parts if p)
    if _html_pattern.search(text):
        text = BeautifulSoup(text, "html.parser").get_text(separator=" ")
    return _whitespace_pattern.sub(" ", text).strip()


def sentinel_for(error: Exception) -> str:
    """Map a failed summary request to the text shown in its place."""
    if isinstance(error, RateLimited):
        return RATE_LIMITED_SUMMARY
    if isinstance(error, ServerUnavailable):
        return SERVER_ERROR_SUMMARY
    if isinstance(error, ClientError) and error.status_code in (400, 422):
        return INSUFFICIENT_CONTENT_SUMMARY
    return GENERIC_FAILURE_SUMMARY


class EnrichmentPipeline:
    """
    Produces one summary per article lacking one, in source order.

    Failures degrade to a fixed sentinel text; the pipeline as a whole
    never fails.
    """

    def __init__(
        self,
        analyze: Analyzer,
        delay: Optional[float] = None,
        min_chars: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the pipeline.

        Args:
            analyze: Coroutine function returning a summary for a text
            delay: Seconds between successive summary requests
            min_chars: Texts shorter than this are not sent at all
            sleep: Sleep coroutine function, replaceable in tests
        """
        config = get_feed_config()
        self._analyze = analyze
        self.delay = delay if delay is not None else config["enrichment_delay"]
        self.min_chars = min_chars if min_chars is not None else config["min_enrichment_chars"]
        self._sleep = sleep

    @staticmethod
    def pending_indexes(articles: Sequence[Article]) -> List[int]:
        return [i for i, article in enumerate(articles) if not article.has_summary]

    async def stream(
        self,
        articles: Sequence[Article],
        is_cancelled: Optional[Callable[[], bool]] = None
    ) -> AsyncIterator[Tuple[int, str]]:
        """
        Yield (index, summary) for each article needing one.

        Each call starts a fresh, finite pass over the given articles.
        Cancellation is checked before every wait and request.
        """
        requested = False

        for index in self.pending_indexes(articles):
            if is_cancelled and is_cancelled():
                return

            article = articles[index]
            text = prepare_text(article)

            if len(text) < self.min_chars:
                logger.info(f"Article {article.id} too short to summarize ({len(text)} chars)")
                yield index, INSUFFICIENT_CONTENT_SUMMARY
                continue

            if requested and self.delay > 0:
                await self._sleep(self.delay)
                if is_cancelled and is_cancelled():
                    return
            requested = True

            yield index, await self._summarize(article, text)

    async def _summarize(self, article: Article, text: str) -> str:
        try:
            summary = await self._analyze(text)
        except NetworkError as e:
            logger.warning(f"Summary for article {article.id} failed: {e!r}")
            return sentinel_for(e)
        except Exception as e:
            logger.error(f"Unexpected summary failure for article {article.id}: {e}")
            return GENERIC_FAILURE_SUMMARY

        if not summary or not summary.strip():
            logger.warning(f"Empty summary returned for article {article.id}")
            return GENERIC_FAILURE_SUMMARY

        return summary.strip()

    async def run(
        self,
        articles: Sequence[Article],
        on_progress: Optional[ProgressCallback] = None,
        is_cancelled: Optional[Callable[[], bool]] = None
    ) -> Tuple[Article, ...]:
        """
        Enrich a batch, reporting progress after every item.

        Args:
            articles: Ordered batch
            on_progress: Receives the new progress and the partially enriched batch
            is_cancelled: Checked between items; stops the pass when it returns True

        Returns:
            The batch with summaries written at their source positions
        """
        buffer = list(articles)
        progress = EnrichmentProgress(current=0, total=len(self.pending_indexes(buffer)))

        if progress.total == 0:
            return tuple(buffer)

        logger.info(f"Enriching {progress.total} of {len(buffer)} articles")

        async with aclosing(self.stream(buffer, is_cancelled)) as results:
            async for index, summary in results:
                if is_cancelled and is_cancelled():
                    break

                buffer[index] = buffer[index].with_summary(summary)
                progress = progress.advance()

                if on_progress:
                    on_progress(progress, tuple(buffer))

        if not progress.complete:
            logger.info(f"Enrichment stopped at {progress.current}/{progress.total}")

        return tuple(buffer)
