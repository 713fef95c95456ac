"""Post renderer — turn a normalized Post into a Telegram HTML draft.

Telegram's HTML subset is enough for everything a post needs:
  <a href="url">link</a> for mentions, hashtags, links and headers,
  entity escaping (&lt; &gt; &amp;) for the body text.

Layout of a rendered post:

    <icon> <a href=profile>Name</a> <a href=permalink>🔗</a>: body
    <quoted post, rendered the same way>

A pure repost is a marker line followed by the reposted post. Nesting is
capped at ``max_depth``; posts at the cap are rendered as header and body only,
without recursing into their own repost/quote content.
"""

import html
import logging
import re
from typing import Optional
from urllib.parse import quote, urlparse

from ..errors import RenderError
from ..models import MediaItem, MediaKind, MessageDraft, Post, Relation, Span, SpanKind
from .spans import ESCAPABLE, resolve_spans

logger = logging.getLogger("feedrelay.render")

SHARE_ICON = "🔁"
REPLY_ICON = "💬"
ORIGINAL_ICON = "🐦"
PERMALINK_ICON = "🔗"

# Assembly order of span kinds; only matters for spans sharing an end index
_SPAN_ORDER = {
    SpanKind.HASHTAG: 0,
    SpanKind.MENTION: 1,
    SpanKind.MEDIA: 2,
    SpanKind.URL: 3,
    SpanKind.ESCAPABLE: 4,
    SpanKind.POLL: 5,
}

_LEADING_MENTIONS_RE = re.compile(r'^(?:<a [^>]*>@[^<]*</a>\s+)+')


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


def _attr(url: str) -> str:
    return html.escape(url, quote=True)


def canonical_url(url: str) -> str:
    """Reduce a post permalink to host + path for equality checks.

    twitter.com, www.twitter.com, mobile.twitter.com and x.com compare
    equal; scheme, query string, fragment and trailing slash are ignored.
    """
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    for prefix in ("www.", "mobile."):
        if host.startswith(prefix):
            host = host[len(prefix):]
    if host == "x.com":
        host = "twitter.com"
    return f"{host}{parsed.path.rstrip('/').lower()}"


def select_media_url(item: MediaItem) -> str:
    """Pick the URL to send for a media item.

    Photos have a single direct URL. For video and GIF the variants are
    sorted by descending bitrate and the middle one (index len // 2) is
    used, trading some quality for a smaller upload.
    """
    if not item.variants:
        raise RenderError(f"{item.kind.value} media without variants")
    if item.kind is MediaKind.PHOTO:
        return item.variants[0].url
    ranked = sorted(item.variants, key=lambda v: v.bitrate or 0, reverse=True)
    return ranked[len(ranked) // 2].url


def relation_icon(post: Post) -> str:
    if post.relation in (Relation.REPOST, Relation.QUOTE):
        return SHARE_ICON
    if post.relation is Relation.REPLY:
        return REPLY_ICON
    return ORIGINAL_ICON


def header(post: Post) -> str:
    return (
        f'{relation_icon(post)} <a href="{_attr(post.profile_url)}">{_escape(post.author_name)}</a> '
        f'<a href="{_attr(post.permalink)}">{PERMALINK_ICON}</a>'
    )


def repost_marker(post: Post) -> str:
    return f'{SHARE_ICON} <a href="{_attr(post.profile_url)}">{_escape(post.author_name)}</a> retweeted'


def escapable_spans(clusters) -> list[Span]:
    """One single-cluster span per cluster containing a character that must be HTML-escaped.

    A bracket followed by a combining mark is a single cluster, so the
    whole cluster is escaped rather than compared against the table.
    """
    return [
        Span(SpanKind.ESCAPABLE, i, i, {"replacement": _escape(c)})
        for i, c in enumerate(clusters)
        if any(ch in ESCAPABLE for ch in c)
    ]


class PostRenderer:
    """Builds MessageDrafts from Posts. Stateless; safe to share."""

    def __init__(self, max_depth: int = 2):
        self.max_depth = max_depth

    def render(self, post: Post) -> MessageDraft:
        """Render a post, raising RenderError if it cannot be rendered at all."""
        return self._render(post, 0)

    # ── Dispatch ─────────────────────────────────────────────

    def _render(self, post: Post, depth: int) -> MessageDraft:
        if post.relation is Relation.REPOST:
            return self._render_repost(post, depth)
        return self._render_post(post, depth)

    def _render_repost(self, post: Post, depth: int) -> MessageDraft:
        inner = post.repost_of
        if inner is None:
            raise RenderError(f"Repost {post.id} has no reposted content")

        if depth >= self.max_depth:
            return MessageDraft(body=f"{repost_marker(post)}\n{self._leaf(inner)}")

        # No fallback content here: an inner failure fails the whole repost
        draft = self._render(inner, depth + 1)
        return MessageDraft(
            body=f"{repost_marker(post)}\n{draft.body}",
            media_kind=draft.media_kind,
            media_urls=draft.media_urls,
        )

    def _render_post(self, post: Post, depth: int) -> MessageDraft:
        try:
            body = self._body(post)
            media_urls = tuple(select_media_url(m) for m in post.media)
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise RenderError(f"Post {post.id}: {type(e).__name__}: {e}") from e
        media_kind: Optional[MediaKind] = post.media[0].kind if post.media else None

        if media_kind and (not body or body.endswith(":")):
            body = f"{body} [{media_kind.value}]".lstrip()

        if post.is_poll:
            body = f"{body} [poll]".lstrip()

        if post.relation is Relation.QUOTE:
            quoted = self._quoted(post, depth)
            if quoted is not None:
                body = f"{body}\n{quoted.body}"
                if media_kind is None:
                    media_kind = quoted.media_kind
                    media_urls = quoted.media_urls

        return MessageDraft(
            body=f"{header(post)}: {body}",
            media_kind=media_kind,
            media_urls=media_urls,
        )

    def _quoted(self, post: Post, depth: int) -> Optional[MessageDraft]:
        inner = post.quote_of
        if inner is None:
            logger.warning(f"Quote {post.id}: quoted content missing, omitting it")
            return None
        try:
            if depth >= self.max_depth:
                return MessageDraft(body=self._leaf(inner))
            return self._render(inner, depth + 1)
        except RenderError as e:
            logger.warning(f"Quote {post.id}: omitting quoted post {inner.id}: {e}")
            return None

    def _leaf(self, post: Post) -> str:
        """Header and body only; any repost or quote content is not followed."""
        try:
            body = self._body(post)
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise RenderError(f"Post {post.id}: {type(e).__name__}: {e}") from e
        return f"{header(post)}: {body}"

    # ── Body text ────────────────────────────────────────────

    def _body(self, post: Post) -> str:
        quoted_link = None
        if post.relation is Relation.QUOTE and post.quote_of is not None:
            quoted_link = canonical_url(post.quote_of.permalink)

        spans = sorted(post.spans, key=lambda s: _SPAN_ORDER[s.kind])
        spans += escapable_spans(post.text)

        def replace(span: Span) -> str:
            p = span.payload
            if span.kind is SpanKind.MENTION:
                href = f"https://twitter.com/{quote(p['handle'])}"
                return f'<a href="{_attr(href)}">@{_escape(p["name"])}</a>'
            if span.kind is SpanKind.HASHTAG:
                href = f"https://twitter.com/hashtag/{quote(p['tag'])}"
                return f'<a href="{_attr(href)}">#{_escape(p["tag"])}</a>'
            if span.kind is SpanKind.URL:
                if quoted_link and canonical_url(p["expanded_url"]) == quoted_link:
                    return ""
                return f'<a href="{_attr(p["expanded_url"])}">{_escape(p["display_url"])}</a>'
            if span.kind is SpanKind.ESCAPABLE:
                return p["replacement"]
            # media and poll links are represented by attachments / tags
            return ""

        text = resolve_spans(post.text, spans, replace).strip()
        return _LEADING_MENTIONS_RE.sub("", text).strip()
