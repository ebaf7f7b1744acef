"""Tests for the feed data model and error taxonomy."""

import pytest

from app.client.errors import (
    ClientError,
    ErrorKind,
    RateLimited,
    ServerUnavailable,
    error_for_status,
)
from app.feed.models import (
    Bias,
    EnrichmentProgress,
    FeedSnapshot,
    FeedState,
    ViewMode,
)
from app.feed.state import feed_error
from tests.conftest import make_article


class TestArticle:

    def test_summary_is_never_overwritten(self):
        article = make_article("a1")

        enriched = article.with_summary("First summary.")
        again = enriched.with_summary("Second summary.")

        assert article.summary is None
        assert enriched.summary == "First summary."
        assert again is enriched

    def test_blank_summary_counts_as_pending(self):
        assert not make_article("a1", summary="  ").has_summary
        assert make_article("a1").with_summary("").summary is None

    @pytest.mark.parametrize("value,expected", [
        ("left", Bias.LEFT),
        (" Center ", Bias.CENTER),
        ("RIGHT", Bias.RIGHT),
        ("lean-left", Bias.UNKNOWN),
        (None, Bias.UNKNOWN),
    ])
    def test_bias_parse(self, value, expected):
        assert Bias.parse(value) == expected


class TestProgress:

    def test_advance_until_complete(self):
        progress = EnrichmentProgress(current=0, total=2)

        assert not progress.complete
        assert progress.advance().advance().complete

    def test_current_cannot_exceed_total(self):
        with pytest.raises(ValueError):
            EnrichmentProgress(current=3, total=2)
        with pytest.raises(ValueError):
            EnrichmentProgress(current=2, total=2).advance()


class TestSnapshot:

    def test_empty_only_when_ready_and_exhausted(self):
        assert FeedSnapshot(state=FeedState.READY, has_more=False).is_empty
        assert not FeedSnapshot(state=FeedState.READY, has_more=True).is_empty
        assert not FeedSnapshot(state=FeedState.LOADING, has_more=False).is_empty
        assert FeedSnapshot().empty_message is None

    def test_stories_empty_message(self):
        snapshot = FeedSnapshot(state=FeedState.READY, has_more=False, view=ViewMode.STORIES)
        assert snapshot.empty_message.startswith("No story groups found")


class TestErrors:

    @pytest.mark.parametrize("status,error_type", [
        (429, RateLimited),
        (500, ServerUnavailable),
        (599, ServerUnavailable),
        (400, ClientError),
        (404, ClientError),
    ])
    def test_error_for_status(self, status, error_type):
        error = error_for_status(status, path="/api/news")
        assert isinstance(error, error_type)
        assert error.status_code == status
        assert error.detail == error.kind.message

    def test_feed_error_after_exhausted_retries(self):
        error = feed_error(ServerUnavailable(status_code=503, attempts=3, attempts_remaining=0))

        assert error.kind == ErrorKind.SERVER_UNAVAILABLE
        assert error.attempts_remaining == 0
        assert "3 attempts" in error.message

    def test_feed_error_uses_kind_message(self):
        error = feed_error(RateLimited(status_code=429))

        assert error.message == ErrorKind.RATE_LIMITED.message
        assert error.attempts_remaining is None
