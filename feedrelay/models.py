"""Data model shared by the parser, renderer, scheduler and adapters.

Posts are immutable once fetched. Their relation to other posts
(plain original, reply, repost, quote) is fixed when the Post is built,
so downstream code switches on ``post.relation`` instead of probing for
optional fields.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional


class Relation(str, Enum):
    ORIGINAL = "original"
    REPLY = "reply"
    REPOST = "repost"
    QUOTE = "quote"


class SpanKind(str, Enum):
    MENTION = "mention"
    HASHTAG = "hashtag"
    URL = "url"
    MEDIA = "media"
    ESCAPABLE = "escapable"
    POLL = "poll"


class MediaKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    GIF = "gif"


@dataclass(frozen=True)
class Span:
    """Annotated range of a post body, in grapheme-cluster units.

    ``end`` is inclusive. ``payload`` carries what the renderer needs to
    build the replacement text (screen name, tag, expanded url, ...).
    """
    kind: SpanKind
    start: int
    end: int
    payload: Mapping = field(default_factory=dict)


@dataclass(frozen=True)
class MediaVariant:
    url: str
    bitrate: Optional[int] = None


@dataclass(frozen=True)
class MediaItem:
    kind: MediaKind
    variants: tuple[MediaVariant, ...]


@dataclass(frozen=True)
class Post:
    """A normalized source post.

    ``shared`` is the reposted post for REPOST and the quoted post for
    QUOTE. It may be None when the source delivered a repost/quote whose
    nested content could not be parsed; the renderer reports that as a
    RenderError.
    """
    id: int
    author_name: str
    author_handle: str
    created_at: datetime
    text: tuple[str, ...]
    relation: Relation = Relation.ORIGINAL
    spans: tuple[Span, ...] = ()
    media: tuple[MediaItem, ...] = ()
    replied_to_id: Optional[int] = None
    shared: Optional["Post"] = None
    is_poll: bool = False

    def __post_init__(self):
        if self.relation in (Relation.ORIGINAL, Relation.REPLY) and self.shared is not None:
            raise ValueError(f"{self.relation.value} post {self.id} cannot carry a shared post")

    @property
    def repost_of(self) -> Optional["Post"]:
        return self.shared if self.relation is Relation.REPOST else None

    @property
    def quote_of(self) -> Optional["Post"]:
        return self.shared if self.relation is Relation.QUOTE else None

    @property
    def permalink(self) -> str:
        return f"https://twitter.com/{self.author_handle}/status/{self.id}"

    @property
    def profile_url(self) -> str:
        return f"https://twitter.com/{self.author_handle}"


@dataclass(frozen=True)
class MessageDraft:
    """Rendered message, ready for the delivery adapter."""
    body: str
    media_kind: Optional[MediaKind] = None
    media_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class Credentials:
    access_token: str
    access_token_secret: str
    screen_name: str = ""


@dataclass
class PendingAuthorization:
    """Exists only between /start and the callback that consumes it."""
    challenge_secret: str
    origin_chat_id: int
    subscriber_name: str
