"""
Filter and pagination state for the feed.
Decides when a change replaces the result set, when it appends, and how
long to wait before fetching.
"""

import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional

from app.utils.config import get_feed_config
from app.feed.models import FilterState, ViewMode

logger = logging.getLogger(__name__)

FILTER_FIELDS = frozenset(f.name for f in fields(FilterState)) - {"page"}

# Wire names used by the news service
_WIRE_NAMES = {
    "sort_by": "sortBy",
    "sort_order": "sortOrder",
    "date_from": "dateFrom",
    "date_to": "dateTo",
}


class LoadMode(str, Enum):
    REPLACE = "replace"
    APPEND = "append"


@dataclass(frozen=True)
class FilterChange:
    """Outcome of a filter update."""
    filters: FilterState
    changed: frozenset
    debounce: float
    mode: LoadMode = LoadMode.REPLACE


class FilterController:
    """
    Owns the current FilterState and the generation of the active request.

    Any change to a field other than page resets page to 1 and starts a
    new generation; responses stamped with an older generation are stale.
    """

    def __init__(
        self,
        filters: Optional[FilterState] = None,
        search_debounce: Optional[float] = None
    ):
        config = get_feed_config()
        self.filters = filters or FilterState()
        self.search_debounce = (
            search_debounce if search_debounce is not None else config["search_debounce"]
        )
        self.generation = 0

    def apply(self, changes: Dict[str, Any]) -> Optional[FilterChange]:
        """
        Merge a partial update into the current filters.

        Args:
            changes: Field name to new value; page may not be set here

        Returns:
            FilterChange, or None when nothing effectively changed

        Raises:
            ValueError: On unknown fields or invalid values
        """
        unknown = set(changes) - FILTER_FIELDS
        if unknown:
            raise ValueError(f"Unknown filter fields: {', '.join(sorted(unknown))}")

        normalized = {
            name: ("" if value is None else str(value))
            for name, value in changes.items()
        }
        changed = frozenset(
            name for name, value in normalized.items()
            if getattr(self.filters, name) != value
        )
        if not changed:
            return None

        self.filters = replace(self.filters, page=1, **{name: normalized[name] for name in changed})

        # Only free-text search waits for the user to stop typing
        debounce = self.search_debounce if "search" in changed else 0.0

        logger.debug(f"Filters changed: {sorted(changed)}, debounce={debounce}s")
        return FilterChange(filters=self.filters, changed=changed, debounce=debounce)

    def next_page(self) -> FilterChange:
        self.filters = replace(self.filters, page=self.filters.page + 1)
        return FilterChange(
            filters=self.filters,
            changed=frozenset({"page"}),
            debounce=0.0,
            mode=LoadMode.APPEND
        )

    def reset_page(self) -> FilterState:
        if self.filters.page != 1:
            self.filters = replace(self.filters, page=1)
        return self.filters

    def begin(self) -> int:
        """Start a new generation, superseding every earlier request."""
        self.generation += 1
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def query_params(self, view: ViewMode, limit: int, filters: Optional[FilterState] = None) -> Dict[str, Any]:
        """
        Build query parameters for the list endpoint of a view.

        Args:
            view: Articles or stories view
            limit: Page size
            filters: Filters to encode; defaults to the current ones

        Returns:
            Query parameter dict with unset filters omitted
        """
        filters = filters or self.filters
        params: Dict[str, Any] = {"page": filters.page, "limit": limit}

        if filters.category and filters.category != "all":
            params["category"] = filters.category

        if view == ViewMode.STORIES:
            return params

        params[_WIRE_NAMES["sort_by"]] = filters.sort_by
        params[_WIRE_NAMES["sort_order"]] = filters.sort_order

        if filters.bias and filters.bias != "all":
            params["bias"] = filters.bias

        search = filters.search.strip()
        if search:
            params["search"] = search

        for name in ("date_from", "date_to"):
            value = getattr(filters, name)
            if value:
                params[_WIRE_NAMES[name]] = value

        return params
