"""Normalize raw Twitter v1.1 status JSON into Posts.

Twitter reports entity indices as [start, end) code-point offsets into the
unescaped text. They are converted here to inclusive grapheme-cluster
ranges, the unit the span resolver works in.

A nested repost/quote whose JSON cannot be parsed still yields a
REPOST/QUOTE Post, with ``shared=None``; the renderer decides what that
means (fatal for a repost, omitted for a quote).
"""

import html
import logging
from bisect import bisect_right
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..models import MediaItem, MediaKind, MediaVariant, Post, Relation, Span, SpanKind
from ..rendering.spans import split_clusters

logger = logging.getLogger("feedrelay.twitter.parse")

_CREATED_AT_FORMAT = "%a %b %d %H:%M:%S %z %Y"
_MAX_PARSE_DEPTH = 3

_MEDIA_KINDS = {
    "photo": MediaKind.PHOTO,
    "video": MediaKind.VIDEO,
    "animated_gif": MediaKind.GIF,
}


def parse_created_at(value) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.strptime(value, _CREATED_AT_FORMAT)


class _ClusterIndex:
    """Maps code-point offsets of a text to grapheme-cluster indices."""

    def __init__(self, text: str):
        self.clusters = split_clusters(text)
        self.length = len(text)
        self._starts = []
        offset = 0
        for cluster in self.clusters:
            self._starts.append(offset)
            offset += len(cluster)

    def cluster_at(self, offset: int) -> int:
        return bisect_right(self._starts, offset) - 1

    def span_range(self, indices) -> tuple[int, int]:
        """Convert a [start, end) code-point pair to an inclusive cluster range.

        Out-of-range pairs map to a range the resolver rejects.
        """
        start, end = int(indices[0]), int(indices[1])
        if start < 0 or end > self.length:
            n = len(self.clusters)
            return n, n
        if end <= start:
            first = self.cluster_at(start)
            return first, first - 1
        return self.cluster_at(start), self.cluster_at(end - 1)


def _media_item(entity: dict) -> Optional[MediaItem]:
    kind = _MEDIA_KINDS.get(entity.get("type"))
    if kind is None:
        return None
    if kind is MediaKind.PHOTO:
        url = entity.get("media_url_https") or entity["media_url"]
        return MediaItem(kind, (MediaVariant(url),))

    variants = tuple(
        MediaVariant(v["url"], v.get("bitrate"))
        for v in entity.get("video_info", {}).get("variants", [])
        if v.get("content_type") == "video/mp4"
    )
    return MediaItem(kind, variants)


def _spans(raw: dict, index: _ClusterIndex) -> list[Span]:
    entities = raw.get("entities") or {}
    spans = []

    for tag in entities.get("hashtags", []):
        start, end = index.span_range(tag["indices"])
        spans.append(Span(SpanKind.HASHTAG, start, end, {"tag": tag["text"]}))

    for mention in entities.get("user_mentions", []):
        start, end = index.span_range(mention["indices"])
        spans.append(Span(SpanKind.MENTION, start, end, {
            "handle": mention["screen_name"],
            "name": mention.get("name") or mention["screen_name"],
        }))

    media = (raw.get("extended_entities") or {}).get("media") or entities.get("media") or []
    seen = set()
    for entity in media:
        # every attachment of a tweet points at the same t.co link
        key = tuple(entity["indices"])
        if key in seen:
            continue
        seen.add(key)
        start, end = index.span_range(entity["indices"])
        spans.append(Span(SpanKind.MEDIA, start, end))

    for url in entities.get("urls", []):
        start, end = index.span_range(url["indices"])
        spans.append(Span(SpanKind.URL, start, end, {
            "expanded_url": url.get("expanded_url") or url["url"],
            "display_url": url.get("display_url") or url["url"],
        }))

    for poll in entities.get("polls", []):
        if "indices" in poll:
            start, end = index.span_range(poll["indices"])
            spans.append(Span(SpanKind.POLL, start, end))

    return spans


def _is_poll(raw: dict) -> bool:
    if (raw.get("entities") or {}).get("polls"):
        return True
    card = raw.get("card") or {}
    return str(card.get("name", "")).startswith("poll")


def _nested(raw: Optional[dict], depth: int, parent_id: int) -> Optional[Post]:
    if raw is None:
        return None
    if depth > _MAX_PARSE_DEPTH:
        logger.debug(f"Tweet {parent_id}: nesting deeper than {_MAX_PARSE_DEPTH}, not parsed")
        return None
    try:
        return parse_tweet(raw, _depth=depth)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Tweet {parent_id}: malformed nested tweet ({type(e).__name__}: {e})")
        return None


def parse_tweet(raw: dict, _depth: int = 0) -> Post:
    """Build a Post from one v1.1 status object (tweet_mode=extended)."""
    post_id = int(raw.get("id_str") or raw["id"])
    user = raw["user"]
    text = html.unescape(raw.get("full_text") or raw.get("text") or "")
    index = _ClusterIndex(text)

    replied_to = raw.get("in_reply_to_status_id_str") or raw.get("in_reply_to_status_id")
    replied_to_id = int(replied_to) if replied_to else None

    shared = None
    if "retweeted_status" in raw:
        relation = Relation.REPOST
        shared = _nested(raw["retweeted_status"], _depth + 1, post_id)
    elif raw.get("is_quote_status") and ("quoted_status" in raw or raw.get("quoted_status_id_str")):
        relation = Relation.QUOTE
        shared = _nested(raw.get("quoted_status"), _depth + 1, post_id)
    elif replied_to_id is not None:
        relation = Relation.REPLY
    else:
        relation = Relation.ORIGINAL

    media_entities = (raw.get("extended_entities") or {}).get("media") or []
    media = tuple(m for m in (_media_item(e) for e in media_entities) if m is not None)

    return Post(
        id=post_id,
        author_name=user.get("name") or user["screen_name"],
        author_handle=user["screen_name"],
        created_at=parse_created_at(raw["created_at"]),
        text=index.clusters,
        relation=relation,
        spans=tuple(_spans(raw, index)),
        media=media,
        replied_to_id=replied_to_id,
        shared=shared,
        is_poll=_is_poll(raw),
    )


def parse_timeline(raws: Iterable[dict]) -> list[Post]:
    """Parse a timeline page, skipping statuses that are not valid tweets."""
    posts = []
    for raw in raws:
        try:
            posts.append(parse_tweet(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed tweet {raw.get('id_str', '?')}: {type(e).__name__}: {e}")
    return posts
