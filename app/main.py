"""
FastAPI application exposing the news feed engine.
Rendering clients read the published snapshot and send feed commands.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from app import __version__
from app.utils.config import settings
from app.utils.preferences import ThemePreference, get_theme_preference
from app.client.news_service import NewsServiceClient
from app.client.retry import RetryController
from app.client.transport import TransportClient
from app.feed.models import (
    Article,
    COVERED_BIASES,
    FeedSnapshot,
    FeedStats,
    StoryDetail,
    StoryGroup,
    ViewMode,
)
from app.feed.state import FeedStateMachine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Pydantic models for API requests
class FilterUpdateModel(BaseModel):
    """Partial filter update; omitted fields keep their value."""
    category: Optional[str] = Field(default=None, description="Category or 'all'")
    bias: Optional[str] = Field(default=None, description="left, center, right, or 'all'")
    sort_by: Optional[str] = Field(default=None, description="Sort field, e.g. publishedAt")
    sort_order: Optional[str] = Field(default=None, description="asc or desc")
    date_from: Optional[str] = Field(default=None, description="Earliest publication date")
    date_to: Optional[str] = Field(default=None, description="Latest publication date")
    search: Optional[str] = Field(default=None, description="Free-text search")


class ViewModel(BaseModel):
    view: ViewMode = Field(..., description="articles or stories")


class ThemeModel(BaseModel):
    theme: str = Field(..., description="light or dark")


# Serialization of published values
def article_to_dict(article: Article) -> Dict[str, Any]:
    return {
        "id": article.id,
        "title": article.title,
        "display_title": article.display_title,
        "description": article.description,
        "url": article.url,
        "published_at": article.published_at.isoformat() if article.published_at else None,
        "source": {
            "name": article.source.name,
            "url": article.source.url,
            "bias": article.source.bias.value,
        },
        "ai_heading": article.ai_heading,
        "summary": article.summary,
        "category": article.category,
        "bias": article.bias.value,
        "effective_bias": article.effective_bias.value,
        "bias_confidence": article.bias_confidence,
        "bias_reasoning": article.bias_reasoning,
        "keywords": list(article.keywords),
    }


def story_to_dict(group: StoryGroup) -> Dict[str, Any]:
    return {
        "id": group.id,
        "main_headline": group.main_headline,
        "summary": group.summary,
        "category": group.category,
        "article_count": len(group.articles),
        "articles": [article_to_dict(a) for a in group.articles],
        "bias_distribution": group.bias_distribution.as_dict(),
        "bias_shares": {
            bias.value: round(group.bias_distribution.share(bias), 3) for bias in COVERED_BIASES
        },
        "missing_biases": group.missing_biases.as_dict(),
        "last_updated": group.last_updated.isoformat() if group.last_updated else None,
    }


def story_detail_to_dict(detail: StoryDetail) -> Dict[str, Any]:
    return {
        "story_group": story_to_dict(detail.group),
        "articles_by_bias": {
            bias.value: [article_to_dict(a) for a in articles]
            for bias, articles in detail.articles_by_bias.items()
        },
        "missing_biases": detail.missing_biases.as_dict(),
        "missing_labels": list(detail.missing_biases.labels()),
    }


def stats_to_dict(stats: FeedStats) -> Dict[str, Any]:
    return {
        "total_articles": stats.total_articles,
        "last_update": stats.last_update.isoformat() if stats.last_update else None,
        "bias_stats": stats.bias_stats,
        "category_stats": stats.category_stats,
    }


def snapshot_to_dict(snapshot: FeedSnapshot) -> Dict[str, Any]:
    if snapshot.view == ViewMode.STORIES:
        items = [story_to_dict(item) for item in snapshot.items]
    else:
        items = [article_to_dict(item) for item in snapshot.items]

    error = None
    if snapshot.error:
        error = {
            "kind": snapshot.error.kind.value,
            "message": snapshot.error.message,
            "status_code": snapshot.error.status_code,
            "attempts_remaining": snapshot.error.attempts_remaining,
        }

    return {
        "state": snapshot.state.value,
        "view": snapshot.view.value,
        "items": items,
        "has_more": snapshot.has_more,
        "loading": snapshot.loading,
        "is_empty": snapshot.is_empty,
        "empty_message": snapshot.empty_message,
        "error": error,
        "status_message": snapshot.status_message,
        "progress": {
            "current": snapshot.progress.current,
            "total": snapshot.progress.total,
            "complete": snapshot.progress.complete,
        },
        "filters": {
            "category": snapshot.filters.category,
            "bias": snapshot.filters.bias,
            "sort_by": snapshot.filters.sort_by,
            "sort_order": snapshot.filters.sort_order,
            "date_from": snapshot.filters.date_from,
            "date_to": snapshot.filters.date_to,
            "search": snapshot.filters.search,
            "page": snapshot.filters.page,
        },
        "selected_story": (
            story_detail_to_dict(snapshot.selected_story) if snapshot.selected_story else None
        ),
        "selection_error": snapshot.selection_error,
    }


def build_feed() -> FeedStateMachine:
    """Create a feed engine talking to the configured news service."""
    transport = TransportClient()
    service = NewsServiceClient(transport, retry=RetryController())
    return FeedStateMachine(service)


# Application lifecycle
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting news feed API...")
    owns_feed = getattr(app.state, "feed", None) is None
    if owns_feed:
        app.state.feed = build_feed()
    await app.state.feed.start()

    yield

    # Shutdown
    logger.info("Shutting down news feed API...")
    feed = app.state.feed
    try:
        await feed.close()
        if owns_feed:
            await feed.service.close()
            app.state.feed = None
        logger.info("Feed engine closed")
    except Exception as e:
        logger.error(f"Feed cleanup failed: {e}")


# Create FastAPI application
app = FastAPI(
    title="TwoSides News Feed API",
    description="Multi-perspective news feed with summaries and bias comparison",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_feed(request: Request) -> FeedStateMachine:
    feed = getattr(request.app.state, "feed", None)
    if feed is None:
        raise HTTPException(status_code=503, detail="Feed engine not initialized")
    return feed


def get_theme() -> ThemePreference:
    return get_theme_preference()


@app.get("/", response_model=Dict[str, str])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "TwoSides News Feed API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health")
async def health_check(feed: FeedStateMachine = Depends(get_feed)) -> Dict[str, Any]:
    """Health check endpoint."""
    snapshot = feed.snapshot
    return {
        "status": "unhealthy" if snapshot.error else "healthy",
        "feed_state": snapshot.state.value,
        "timestamp": datetime.now().isoformat()
    }


@app.get("/feed")
async def get_feed_snapshot(
    settle: bool = Query(default=False, description="Wait for pending work before answering"),
    feed: FeedStateMachine = Depends(get_feed)
) -> Dict[str, Any]:
    """Current published feed snapshot."""
    if settle:
        await feed.settle()
    return snapshot_to_dict(feed.snapshot)


@app.get("/feed/progress")
async def get_progress(feed: FeedStateMachine = Depends(get_feed)) -> Dict[str, Any]:
    progress = feed.progress
    return {"current": progress.current, "total": progress.total, "complete": progress.complete}


@app.post("/feed/filters")
async def update_filters(
    update: FilterUpdateModel,
    wait: bool = Query(default=True, description="Wait for the fetch to complete"),
    feed: FeedStateMachine = Depends(get_feed)
) -> Dict[str, Any]:
    """
    Apply a partial filter update.
    Page resets to 1 and the result set is replaced.
    """
    changes = update.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No filter fields provided")

    try:
        call = await feed.set_filters(**changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if call and wait:
        await call.wait()
    return snapshot_to_dict(feed.snapshot)


@app.post("/feed/load-more")
async def load_more(
    wait: bool = Query(default=True, description="Wait for the page to arrive"),
    feed: FeedStateMachine = Depends(get_feed)
) -> Dict[str, Any]:
    """Append the next page to the current results."""
    call = await feed.load_more()
    if call and wait:
        await call.wait()

    response = snapshot_to_dict(feed.snapshot)
    response["accepted"] = call is not None
    return response


@app.post("/feed/view")
async def set_view(
    request: ViewModel,
    wait: bool = Query(default=True, description="Wait for the fetch to complete"),
    feed: FeedStateMachine = Depends(get_feed)
) -> Dict[str, Any]:
    """Switch between the articles and stories views."""
    call = await feed.set_view(request.view)
    if call and wait:
        await call.wait()
    return snapshot_to_dict(feed.snapshot)


@app.post("/feed/retry")
async def retry_feed(
    wait: bool = Query(default=True, description="Wait for the fetch to complete"),
    feed: FeedStateMachine = Depends(get_feed)
) -> Dict[str, Any]:
    """Manually retry after an error."""
    call = await feed.retry()
    if wait:
        await call.wait()
    return snapshot_to_dict(feed.snapshot)


@app.post("/stories/{story_id}/select")
async def select_story(story_id: str, feed: FeedStateMachine = Depends(get_feed)) -> Dict[str, Any]:
    """Load the side-by-side coverage comparison for a story."""
    if not story_id.strip():
        raise HTTPException(status_code=400, detail="Story id cannot be empty")

    task = await feed.select_story(story_id.strip())
    await task

    snapshot = feed.snapshot
    if snapshot.selection_error:
        raise HTTPException(status_code=502, detail=snapshot.selection_error)
    if snapshot.selected_story is None:
        raise HTTPException(status_code=409, detail="Selection changed while loading")
    return story_detail_to_dict(snapshot.selected_story)


@app.delete("/stories/selection")
async def clear_selection(feed: FeedStateMachine = Depends(get_feed)) -> Dict[str, Any]:
    await feed.clear_selection()
    return {"selected_story": None}


@app.get("/stats")
async def get_stats(feed: FeedStateMachine = Depends(get_feed)) -> Dict[str, Any]:
    """
    Advisory service statistics.
    Failures never affect the feed; the last known stats are returned.
    """
    stats = await feed.refresh_stats() or feed.stats
    if stats is None:
        return {"available": False}
    return {"available": True, **stats_to_dict(stats)}


@app.get("/preferences/theme")
async def get_theme_setting(theme: ThemePreference = Depends(get_theme)) -> Dict[str, str]:
    return {"theme": theme.theme}


@app.put("/preferences/theme")
async def put_theme_setting(
    request: ThemeModel,
    theme: ThemePreference = Depends(get_theme)
) -> Dict[str, str]:
    try:
        return {"theme": theme.set(request.theme)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/preferences/theme/toggle")
async def toggle_theme_setting(theme: ThemePreference = Depends(get_theme)) -> Dict[str, str]:
    return {"theme": theme.toggle()}


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
            "timestamp": datetime.now().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "status_code": 500,
            "timestamp": datetime.now().isoformat()
        }
    )


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
