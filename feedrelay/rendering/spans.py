"""Span resolver — splice annotated ranges of a post body into markup.

Spans are indexed in grapheme clusters, so a compound emoji counts as a
single unit. Resolution walks spans from the end of the text towards the
start; every applied span moves the ``valid_before`` boundary to its own
start, and any span reaching into already-edited text is skipped.
Overlapping spans are therefore dropped silently rather than reported:
irregular source data is common and the remaining text stays intact.

Spans sharing an end index keep their original list order.
"""

import logging
from typing import Callable, Optional, Sequence

import regex

from ..errors import MalformedSpanError
from ..models import Span

logger = logging.getLogger("feedrelay.render.spans")

_CLUSTER_RE = regex.compile(r"\X")

ESCAPABLE = {"<": "&lt;", ">": "&gt;", "&": "&amp;"}


def split_clusters(text: str) -> tuple[str, ...]:
    """Split text into extended grapheme clusters."""
    return tuple(_CLUSTER_RE.findall(text))


def _literal(span: Span) -> str:
    return span.payload.get("replacement", "")


def check_span(span: Span, length: int) -> None:
    """Raise MalformedSpanError if the span does not fit a text of ``length`` clusters."""
    if span.start > span.end:
        raise MalformedSpanError(f"span {span.kind.value} starts after it ends ({span.start} > {span.end})")
    if span.start < 0 or span.end >= length:
        raise MalformedSpanError(
            f"span {span.kind.value} [{span.start}, {span.end}] outside text of {length} clusters"
        )


def resolve_spans(
    clusters: Sequence[str],
    spans: Sequence[Span],
    replace: Optional[Callable[[Span], str]] = None,
) -> str:
    """Apply non-overlapping spans to the clusters and join the result.

    Args:
        clusters: Body text as grapheme clusters.
        spans: Spans with inclusive cluster ranges.
        replace: Maps a span to its replacement text. Defaults to the
            literal ``payload["replacement"]``.

    Returns:
        The transformed text. Clusters outside applied spans are untouched.
    """
    replace = replace or _literal
    parts = list(clusters)
    valid_before = float("inf")

    # sorted() is stable, so equal ends keep document order
    for span in sorted(spans, key=lambda s: -s.end):
        try:
            check_span(span, len(clusters))
        except MalformedSpanError as e:
            logger.debug(f"Dropping span: {e}")
            continue

        if span.end < valid_before:
            parts[span.start:span.end + 1] = [replace(span)]
            valid_before = span.start
        else:
            logger.debug(
                f"Skipping overlapping {span.kind.value} span [{span.start}, {span.end}]"
            )

    return "".join(parts)
