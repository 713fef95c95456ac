"""Tests for grapheme-aware span resolution."""

from feedrelay.models import Span, SpanKind
from feedrelay.rendering.spans import check_span, resolve_spans, split_clusters
from feedrelay.errors import MalformedSpanError

import pytest


def _span(start, end, replacement, kind=SpanKind.URL):
    return Span(kind, start, end, {"replacement": replacement})


class TestSplitClusters:
    def test_ascii(self):
        assert split_clusters("abc") == ("a", "b", "c")

    def test_zwj_emoji_is_one_cluster(self):
        family = "👨‍👩‍👧"
        assert split_clusters(f"{family}!") == (family, "!")

    def test_flag_is_one_cluster(self):
        assert len(split_clusters("🇯🇵")) == 1

    def test_combining_mark_joins_base(self):
        assert split_clusters("éx") == ("é", "x")

    def test_empty(self):
        assert split_clusters("") == ()


class TestResolveSpans:
    def test_no_spans_is_identity(self):
        clusters = split_clusters("nothing to do")
        assert resolve_spans(clusters, []) == "nothing to do"

    def test_single_span(self):
        clusters = split_clusters("hello world")
        assert resolve_spans(clusters, [_span(0, 4, "HI")]) == "HI world"

    def test_disjoint_spans_keep_untouched_text(self):
        clusters = split_clusters("aa bb cc")
        spans = [_span(0, 1, "X"), _span(6, 7, "Z")]
        assert resolve_spans(clusters, spans) == "X bb Z"

    def test_overlap_keeps_the_span_ending_later(self):
        """[0,5] and [3,8]: only the span ending at 8 is applied."""
        clusters = split_clusters("0123456789")
        spans = [_span(0, 5, "A"), _span(3, 8, "B")]
        assert resolve_spans(clusters, spans) == "012B9"

    def test_overlap_independent_of_list_order(self):
        clusters = split_clusters("0123456789")
        spans = [_span(3, 8, "B"), _span(0, 5, "A")]
        assert resolve_spans(clusters, spans) == "012B9"

    def test_equal_end_first_in_list_wins(self):
        clusters = split_clusters("abcde")
        assert resolve_spans(clusters, [_span(2, 4, "X"), _span(4, 4, "Y")]) == "abX"
        assert resolve_spans(clusters, [_span(4, 4, "Y"), _span(2, 4, "X")]) == "abcdY"

    def test_adjacent_spans_both_applied(self):
        clusters = split_clusters("abcdef")
        assert resolve_spans(clusters, [_span(0, 2, "1"), _span(3, 5, "2")]) == "12"

    def test_start_after_end_is_dropped(self):
        clusters = split_clusters("abcdef")
        spans = [_span(4, 2, "BAD"), _span(0, 0, "A")]
        assert resolve_spans(clusters, spans) == "Abcdef"

    def test_out_of_range_is_dropped(self):
        clusters = split_clusters("abc")
        spans = [_span(1, 7, "BAD"), _span(-1, 0, "BAD"), _span(2, 2, "C")]
        assert resolve_spans(clusters, spans) == "abC"

    def test_indices_count_clusters_not_code_points(self):
        family = "👨‍👩‍👧"
        clusters = split_clusters(f"{family} hi #tag")
        spans = [_span(5, 8, "<tag>", SpanKind.HASHTAG)]
        assert resolve_spans(clusters, spans) == f"{family} hi <tag>"

    def test_escapable_spans_resolve_with_others(self):
        clusters = split_clusters("Hello <b> world")
        spans = [
            Span(SpanKind.ESCAPABLE, 6, 6, {"replacement": "&lt;"}),
            Span(SpanKind.ESCAPABLE, 8, 8, {"replacement": "&gt;"}),
        ]
        assert resolve_spans(clusters, spans) == "Hello &lt;b&gt; world"

    def test_computed_replacement(self):
        clusters = split_clusters("ab")
        spans = [Span(SpanKind.MENTION, 0, 0, {"name": "x"})]
        assert resolve_spans(clusters, spans, lambda s: s.payload["name"].upper()) == "Xb"

    def test_input_not_mutated(self):
        clusters = list(split_clusters("abc"))
        resolve_spans(clusters, [_span(0, 1, "Z")])
        assert clusters == ["a", "b", "c"]


class TestCheckSpan:
    def test_valid(self):
        check_span(_span(0, 2, ""), 3)

    def test_single_cluster_at_end(self):
        check_span(_span(2, 2, ""), 3)

    def test_reversed(self):
        with pytest.raises(MalformedSpanError):
            check_span(_span(2, 1, ""), 3)

    def test_past_end(self):
        with pytest.raises(MalformedSpanError):
            check_span(_span(0, 3, ""), 3)
