"""
Feed state machine.
Composes filters, retrieval, enrichment, and aggregation into a single
published FeedSnapshot: idle -> loading -> ready | error.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Set

from app.utils.config import get_feed_config
from app.utils.timers import Debouncer, ScheduledCall
from app.client.errors import ClientError, ErrorKind, NetworkError, ServerUnavailable
from app.client.news_service import FeedPage, NewsServiceClient
from app.feed import aggregator
from app.feed.enrichment import EnrichmentPipeline
from app.feed.filters import FilterController, LoadMode
from app.feed.models import (
    Article,
    EnrichmentProgress,
    FeedError,
    FeedSnapshot,
    FeedState,
    FeedStats,
    FilterState,
    StoryDetail,
    StoryGroup,
    ViewMode,
)

logger = logging.getLogger(__name__)

Listener = Callable[[FeedSnapshot], None]

STORY_DETAIL_ERROR = "Failed to load story details."
UNEXPECTED_ERROR = "Failed to load news data. Please try again."


def feed_error(error: NetworkError) -> FeedError:
    """Translate a transport failure into the published error value."""
    message = error.kind.message
    attempts_remaining = None

    if isinstance(error, ServerUnavailable):
        attempts_remaining = error.attempts_remaining
        if error.attempts > 1:
            message = (
                f"The news service is still starting up after {error.attempts} attempts. "
                "Please try again in a moment."
            )

    return FeedError(
        kind=error.kind,
        message=message,
        status_code=error.status_code,
        attempts_remaining=attempts_remaining,
    )


class FeedStateMachine:
    """
    Owns the published feed snapshot.

    Commands schedule work and return immediately; every change to the
    feed is published as a new snapshot. Work belonging to a superseded
    generation is discarded when it completes.
    """

    def __init__(
        self,
        service: NewsServiceClient,
        enrichment: Optional[EnrichmentPipeline] = None,
        filters: Optional[FilterController] = None,
        view: ViewMode = ViewMode.ARTICLES,
        articles_page_size: Optional[int] = None,
        stories_page_size: Optional[int] = None,
        enrich_summaries: Optional[bool] = None,
        server_story_grouping: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the feed.

        Args:
            service: News service client
            enrichment: Summary pipeline; built on service.analyze if None
            filters: Filter controller; defaults to default filters
            view: Initial view mode
            articles_page_size: Articles per page. If None, uses config.
            stories_page_size: Story groups per page. If None, uses config.
            enrich_summaries: Whether to summarize articles lacking one
            server_story_grouping: Whether story groups come from the service
            sleep: Sleep coroutine function used for debounce, replaceable in tests
        """
        config = get_feed_config()
        self.service = service
        self.enrichment = enrichment or EnrichmentPipeline(service.analyze)
        self.filters = filters or FilterController()
        self.articles_page_size = articles_page_size or config["articles_page_size"]
        self.stories_page_size = stories_page_size or config["stories_page_size"]
        self.enrich_summaries = (
            config["enrich_summaries"] if enrich_summaries is None else enrich_summaries
        )
        self.server_story_grouping = (
            config["server_story_grouping"] if server_story_grouping is None else server_story_grouping
        )

        self.stats: Optional[FeedStats] = None

        self._snapshot = FeedSnapshot(view=ViewMode(view), filters=self.filters.filters)
        self._listeners: List[Listener] = []
        self._debouncer = Debouncer(sleep=sleep)
        self._calls: Set[ScheduledCall] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._enrichment_lock: Optional[asyncio.Lock] = None
        self._selection_generation = 0

    # Published state

    @property
    def snapshot(self) -> FeedSnapshot:
        return self._snapshot

    @property
    def progress(self) -> EnrichmentProgress:
        return self._snapshot.progress

    @property
    def state(self) -> FeedState:
        return self._snapshot.state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with every new snapshot.

        Returns:
            Function removing the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, **changes) -> FeedSnapshot:
        self._snapshot = replace(self._snapshot, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception as e:
                logger.error(f"Feed listener failed: {e}")
        return self._snapshot

    # Commands

    async def start(self) -> ScheduledCall:
        """Load the first page and the advisory stats."""
        self._spawn(self.refresh_stats())
        return self._schedule_replace(0.0)

    async def set_filters(self, **changes) -> Optional[ScheduledCall]:
        """
        Apply a partial filter update.

        Search changes are debounced; every other field fetches immediately.
        In-flight requests for the previous filters become stale at once.

        Returns:
            Handle of the scheduled fetch, or None if nothing changed
        """
        change = self.filters.apply(changes)
        if change is None:
            return None

        self._publish(filters=change.filters)
        return self._schedule_replace(change.debounce)

    async def load_more(self) -> Optional[ScheduledCall]:
        """
        Fetch the next page and append it to the current results.

        Ignored unless the feed is ready, has more pages, and no newer
        fetch is pending.
        """
        snapshot = self._snapshot
        if snapshot.state != FeedState.READY or not snapshot.has_more:
            logger.debug(f"load_more ignored in state {snapshot.state.value}")
            return None
        if snapshot.generation != self.filters.generation:
            logger.debug("load_more ignored while a newer fetch is pending")
            return None

        change = self.filters.next_page()
        generation = self.filters.generation

        self._publish(state=FeedState.LOADING, loading=True, filters=change.filters, error=None)

        call = ScheduledCall(0.0, lambda: self._cycle(change.mode, generation, change.filters))
        self._calls.add(call)
        return call

    async def set_view(self, view: ViewMode) -> Optional[ScheduledCall]:
        """Switch between articles and stories, starting over from page 1."""
        view = ViewMode(view)
        if view == self._snapshot.view:
            return None

        filters = self.filters.reset_page()
        self._publish(
            view=view,
            items=(),
            has_more=True,
            filters=filters,
            progress=EnrichmentProgress(),
        )
        return self._schedule_replace(0.0)

    async def retry(self) -> ScheduledCall:
        """Start a fresh fetch of page 1 with the current filters."""
        self.filters.reset_page()
        return self._schedule_replace(0.0)

    async def select_story(self, story_id: str) -> asyncio.Task:
        """Fetch a story's side-by-side detail; independent of the list fetch."""
        self._selection_generation += 1
        generation = self._selection_generation
        self._publish(selected_story=None, selection_error=None)
        return self._spawn(self._load_story(story_id, generation))

    async def clear_selection(self) -> None:
        self._selection_generation += 1
        self._publish(selected_story=None, selection_error=None)

    async def refresh_stats(self) -> Optional[FeedStats]:
        """Fetch advisory stats; failures are logged and otherwise ignored."""
        try:
            self.stats = await self.service.fetch_stats()
        except (NetworkError, ValueError, TypeError) as e:
            logger.warning(f"Stats unavailable: {e}")
            return None
        return self.stats

    async def settle(self) -> FeedSnapshot:
        """Wait until no scheduled or in-flight work remains."""
        while True:
            self._calls = {call for call in self._calls if not call.done}
            self._tasks = {task for task in self._tasks if not task.done()}
            waiters = [call.wait() for call in self._calls] + list(self._tasks)
            if not waiters:
                return self._snapshot
            await asyncio.gather(*waiters, return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending and in-flight work."""
        self._debouncer.cancel()
        for call in self._calls:
            call.abort()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(
            *[call.wait() for call in self._calls], *self._tasks, return_exceptions=True
        )
        self._calls.clear()
        self._tasks.clear()

    # Cycles

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_replace(self, delay: float) -> ScheduledCall:
        generation = self.filters.begin()
        call = self._debouncer.schedule(delay, lambda: self._cycle(LoadMode.REPLACE, generation))
        self._calls.add(call)
        return call

    async def _cycle(self, mode: LoadMode, generation: int, filters: Optional[FilterState] = None) -> None:
        if mode == LoadMode.APPEND:
            await self._append_cycle(generation, filters)
        else:
            await self._replace_cycle(generation)

    def _is_current(self, generation: int) -> bool:
        return self.filters.is_current(generation)

    async def _replace_cycle(self, generation: int) -> None:
        if not self._is_current(generation):
            return

        filters = self.filters.filters
        view = self._snapshot.view

        self._publish(
            state=FeedState.LOADING,
            loading=True,
            items=(),
            has_more=True,
            error=None,
            status_message=None,
            progress=EnrichmentProgress(),
            filters=filters,
            generation=generation,
        )
        logger.info(f"Loading {view.value} (generation {generation})")

        try:
            page = await self._fetch_page(view, filters, generation)
        except NetworkError as e:
            if self._discard_if_stale(generation):
                return
            logger.error(f"Failed to load {view.value}: {e!r}")
            self._publish(
                state=FeedState.ERROR,
                loading=False,
                has_more=False,
                error=feed_error(e),
                status_message=None,
            )
            return
        except Exception as e:
            if self._discard_if_stale(generation):
                return
            logger.error(f"Unexpected failure loading {view.value}: {e}")
            self._publish(
                state=FeedState.ERROR,
                loading=False,
                has_more=False,
                error=FeedError(kind=ErrorKind.MALFORMED_RESPONSE, message=UNEXPECTED_ERROR),
                status_message=None,
            )
            return

        if self._discard_if_stale(generation):
            return

        self._publish(
            state=FeedState.READY,
            loading=False,
            items=tuple(page.items),
            has_more=page.has_more,
            error=None,
            status_message=None,
        )
        if not page.items:
            logger.info(f"No {view.value} matched the current filters")

        self._spawn(self._enrich(generation, 0, page.items))

    async def _append_cycle(self, generation: int, filters: FilterState) -> None:
        view = self._snapshot.view

        try:
            page = await self._fetch_page(view, filters, generation)
        except Exception as e:
            if self._discard_if_stale(generation):
                return
            logger.error(f"Failed to load page {filters.page} of {view.value}: {e!r}")
            error = (
                feed_error(e) if isinstance(e, NetworkError)
                else FeedError(kind=ErrorKind.MALFORMED_RESPONSE, message=UNEXPECTED_ERROR)
            )
            # Keep what is already loaded; stop further pagination
            self._publish(
                state=FeedState.ERROR,
                loading=False,
                has_more=False,
                error=error,
                status_message=None,
            )
            return

        if self._discard_if_stale(generation):
            return

        offset = len(self._snapshot.items)
        items = self._snapshot.items + tuple(page.items)
        if view == ViewMode.STORIES and page.items and all(
            aggregator.is_source_group(group.id) for group in page.items
        ):
            items = tuple(aggregator.merge_source_groups(self._snapshot.items, page.items))

        self._publish(
            state=FeedState.READY,
            loading=False,
            items=items,
            has_more=page.has_more,
            error=None,
            status_message=None,
        )

        self._spawn(self._enrich(generation, offset, page.items))

    def _discard_if_stale(self, generation: int) -> bool:
        if self._is_current(generation):
            return False
        logger.info(f"Discarding stale response for generation {generation}")
        return True

    async def _fetch_page(self, view: ViewMode, filters: FilterState, generation: int) -> FeedPage:
        if view == ViewMode.ARTICLES:
            params = self.filters.query_params(view, self.articles_page_size, filters)
            return await self.service.fetch_articles(
                params, on_status=lambda message: self._on_retry_status(generation, message)
            )

        if self.server_story_grouping:
            params = self.filters.query_params(view, self.stories_page_size, filters)
            try:
                return await self.service.fetch_story_groups(params)
            except ClientError as e:
                if e.status_code != 404:
                    raise
                logger.warning("Story grouping not available from the service, grouping by source")

        params = self.filters.query_params(ViewMode.ARTICLES, self.articles_page_size, filters)
        page = await self.service.fetch_articles(
            params, on_status=lambda message: self._on_retry_status(generation, message)
        )
        return FeedPage(items=aggregator.group_by_source(page.items), has_more=page.has_more)

    def _on_retry_status(self, generation: int, message: str) -> None:
        if self._is_current(generation):
            self._publish(status_message=message)

    # Enrichment

    def _lock(self) -> asyncio.Lock:
        if self._enrichment_lock is None:
            self._enrichment_lock = asyncio.Lock()
        return self._enrichment_lock

    async def _enrich(self, generation: int, offset: int, batch: Sequence[Article]) -> None:
        """Summarize a published batch, publishing after every item."""
        if self._snapshot.view != ViewMode.ARTICLES or not self.enrich_summaries:
            return

        pending = self.enrichment.pending_indexes(batch)
        if not pending:
            return

        async with self._lock():
            if not self._is_current(generation):
                return

            self._publish(progress=EnrichmentProgress(current=0, total=len(pending)))

            def on_progress(progress: EnrichmentProgress, partial) -> None:
                if not self._is_current(generation):
                    return
                items = list(self._snapshot.items)
                items[offset:offset + len(partial)] = partial
                self._publish(items=tuple(items), progress=progress)

            await self.enrichment.run(
                batch,
                on_progress=on_progress,
                is_cancelled=lambda: not self._is_current(generation),
            )

    # Story detail

    def _local_story(self, story_id: str) -> StoryDetail:
        for item in self._snapshot.items:
            if isinstance(item, StoryGroup) and item.id == story_id:
                return aggregator.build_story_detail(item)
        raise LookupError(f"Story {story_id} is not among the loaded stories")

    async def _load_story(self, story_id: str, generation: int) -> None:
        try:
            if aggregator.is_source_group(story_id):
                detail = self._local_story(story_id)
            else:
                detail = await self.service.fetch_story_detail(story_id)
        except NetworkError as e:
            if generation != self._selection_generation:
                return
            logger.error(f"Failed to load story {story_id}: {e!r}")
            self._publish(selection_error=STORY_DETAIL_ERROR)
            return
        except Exception as e:
            if generation != self._selection_generation:
                return
            logger.error(f"Unexpected failure loading story {story_id}: {e}")
            self._publish(selection_error=STORY_DETAIL_ERROR)
            return

        if generation != self._selection_generation:
            logger.info(f"Discarding story {story_id} after selection changed")
            return

        self._publish(selected_story=detail, selection_error=None)
