"""Tests for tweet JSON normalization."""

from datetime import datetime, timezone

from feedrelay.models import MediaKind, Relation, SpanKind
from feedrelay.rendering import PostRenderer
from feedrelay.twitter.parse import parse_created_at, parse_timeline, parse_tweet


def _tweet(id=100, text="hello", **extra):
    raw = {
        "id": id,
        "id_str": str(id),
        "created_at": "Wed Oct 10 20:19:24 +0000 2018",
        "full_text": text,
        "user": {"name": "Alice A", "screen_name": "alice"},
        "entities": {"hashtags": [], "user_mentions": [], "urls": []},
    }
    raw.update(extra)
    return raw


def _spans_of(post, kind):
    return [s for s in post.spans if s.kind is kind]


class TestParseCreatedAt:
    def test_twitter_format(self):
        assert parse_created_at("Wed Oct 10 20:19:24 +0000 2018") == datetime(
            2018, 10, 10, 20, 19, 24, tzinfo=timezone.utc
        )

    def test_naive_datetime_gets_utc(self):
        assert parse_created_at(datetime(2020, 1, 1)).tzinfo is timezone.utc


class TestParseTweet:
    def test_original(self):
        post = parse_tweet(_tweet())
        assert post.id == 100
        assert post.relation is Relation.ORIGINAL
        assert post.author_name == "Alice A"
        assert post.author_handle == "alice"
        assert "".join(post.text) == "hello"
        assert post.shared is None

    def test_html_entities_unescaped(self):
        post = parse_tweet(_tweet(text="a &lt;b&gt; &amp; c"))
        assert "".join(post.text) == "a <b> & c"

    def test_entities_become_cluster_spans(self):
        text = "Hello &amp; welcome @bob #py https://t.co/x"
        post = parse_tweet(_tweet(text=text, entities={
            "user_mentions": [{"screen_name": "bob", "name": "Bob", "indices": [16, 20]}],
            "hashtags": [{"text": "py", "indices": [21, 24]}],
            "urls": [{
                "url": "https://t.co/x",
                "expanded_url": "https://example.com",
                "display_url": "example.com",
                "indices": [25, 39],
            }],
        }))

        mention, = _spans_of(post, SpanKind.MENTION)
        assert (mention.start, mention.end) == (16, 19)
        assert mention.payload == {"handle": "bob", "name": "Bob"}

        hashtag, = _spans_of(post, SpanKind.HASHTAG)
        assert (hashtag.start, hashtag.end) == (21, 23)
        assert hashtag.payload["tag"] == "py"

        url, = _spans_of(post, SpanKind.URL)
        assert (url.start, url.end) == (25, 38)
        assert url.payload["expanded_url"] == "https://example.com"

    def test_emoji_offsets_map_to_clusters(self):
        family = "👨‍👩‍👧"
        post = parse_tweet(_tweet(text=f"{family} #tag", entities={
            "hashtags": [{"text": "tag", "indices": [6, 10]}],
        }))
        assert post.text[0] == family
        hashtag, = _spans_of(post, SpanKind.HASHTAG)
        assert (hashtag.start, hashtag.end) == (2, 5)

    def test_out_of_range_indices_are_harmless(self):
        post = parse_tweet(_tweet(text="short", entities={
            "hashtags": [{"text": "gone", "indices": [40, 45]}],
        }))
        assert PostRenderer().render(post).body.endswith(": short")

    def test_reply(self):
        post = parse_tweet(_tweet(in_reply_to_status_id_str="42"))
        assert post.relation is Relation.REPLY
        assert post.replied_to_id == 42

    def test_retweet(self):
        inner = _tweet(id=50, text="inner", user={"name": "Bob", "screen_name": "bob"})
        post = parse_tweet(_tweet(id=101, text="RT @bob: inner", retweeted_status=inner))
        assert post.relation is Relation.REPOST
        assert post.repost_of.id == 50
        assert post.repost_of.author_handle == "bob"
        assert post.quote_of is None

    def test_malformed_retweet_keeps_relation(self):
        post = parse_tweet(_tweet(retweeted_status={"id_str": "7"}))
        assert post.relation is Relation.REPOST
        assert post.shared is None

    def test_quote(self):
        inner = _tweet(id=60, text="quoted")
        post = parse_tweet(_tweet(id=102, text="look", is_quote_status=True, quoted_status=inner))
        assert post.relation is Relation.QUOTE
        assert post.quote_of.id == 60

    def test_quote_flag_without_quoted_content_is_original(self):
        post = parse_tweet(_tweet(is_quote_status=True))
        assert post.relation is Relation.ORIGINAL

    def test_photos(self):
        media = [
            {"type": "photo", "media_url_https": "https://pbs.twimg.com/a.jpg", "indices": [6, 29]},
            {"type": "photo", "media_url_https": "https://pbs.twimg.com/b.jpg", "indices": [6, 29]},
        ]
        post = parse_tweet(_tweet(
            text="pics: https://t.co/abcdefghij",
            entities={"media": media[:1]},
            extended_entities={"media": media},
        ))
        assert [m.kind for m in post.media] == [MediaKind.PHOTO, MediaKind.PHOTO]
        assert post.media[1].variants[0].url == "https://pbs.twimg.com/b.jpg"
        assert len(_spans_of(post, SpanKind.MEDIA)) == 1

    def test_video_keeps_mp4_variants(self):
        video = {
            "type": "video",
            "indices": [0, 5],
            "video_info": {"variants": [
                {"content_type": "application/x-mpegURL", "url": "https://v/pl.m3u8"},
                {"content_type": "video/mp4", "bitrate": 832000, "url": "https://v/832.mp4"},
                {"content_type": "video/mp4", "bitrate": 256000, "url": "https://v/256.mp4"},
            ]},
        }
        post = parse_tweet(_tweet(text="video", extended_entities={"media": [video]}))
        item, = post.media
        assert item.kind is MediaKind.VIDEO
        assert [v.bitrate for v in item.variants] == [832000, 256000]

    def test_animated_gif(self):
        gif = {
            "type": "animated_gif",
            "indices": [0, 3],
            "video_info": {"variants": [{"content_type": "video/mp4", "bitrate": 0, "url": "https://v/g.mp4"}]},
        }
        post = parse_tweet(_tweet(text="gif", extended_entities={"media": [gif]}))
        assert post.media[0].kind is MediaKind.GIF

    def test_poll_card(self):
        post = parse_tweet(_tweet(card={"name": "poll2choice_text_only"}))
        assert post.is_poll

    def test_not_poll(self):
        assert not parse_tweet(_tweet()).is_poll


class TestParseTimeline:
    def test_skips_malformed(self):
        good = _tweet(id=1)
        bad = {"id_str": "2", "full_text": "no user"}
        posts = parse_timeline([good, bad, _tweet(id=3)])
        assert [p.id for p in posts] == [1, 3]
