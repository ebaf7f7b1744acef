"""
TwoSides News Feed Engine

Retrieves articles from the news aggregation service, generates missing
summaries, paginates and filters the feed, and groups coverage into
stories with a left/center/right bias breakdown.
"""

__version__ = "1.0.0"
__author__ = "TwoSides News Team"
__description__ = "Multi-perspective news feed engine"
