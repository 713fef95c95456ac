"""Rendering sub-core — posts to Telegram HTML.

- spans: grapheme-aware span resolution
- renderer: header/body composition and nested posts
"""

from .spans import resolve_spans, split_clusters
from .renderer import PostRenderer, select_media_url, canonical_url

__all__ = [
    "resolve_spans",
    "split_clusters",
    "PostRenderer",
    "select_media_url",
    "canonical_url",
]
