"""Per-subscriber sessions and the registry that owns them.

A Session is created when a subscriber completes sign-in, mutated only by
its own update cycle, and removed for good on unsubscribe or on a
permanent fetch/delivery failure. Removed sessions are never re-added
automatically; a new sign-in creates a new Session object.

Persistence works on plain dict records (``to_record``/``from_record``)
so the store never sees timers or locks.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from .models import Credentials

logger = logging.getLogger("feedrelay.sessions")

DEFAULT_RECENT_MAP_SIZE = 100


class SessionState(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"


class RecentMap:
    """Bounded post id → message id cache.

    When over capacity, the numerically smallest post ids are evicted
    first, so the cache always holds the newest delivered posts.
    """

    def __init__(self, capacity: int = DEFAULT_RECENT_MAP_SIZE, entries: Optional[dict] = None):
        self.capacity = capacity
        self._entries: dict[int, int] = {}
        for post_id, message_id in (entries or {}).items():
            self.put(int(post_id), int(message_id))

    def put(self, post_id: int, message_id: int) -> None:
        self._entries[post_id] = message_id
        while len(self._entries) > self.capacity:
            del self._entries[min(self._entries)]

    def get(self, post_id: Optional[int]) -> Optional[int]:
        if post_id is None:
            return None
        return self._entries.get(post_id)

    def post_for_message(self, message_id: int) -> Optional[int]:
        """Reverse lookup: which post was delivered as this message."""
        for post_id, mid in self._entries.items():
            if mid == message_id:
                return post_id
        return None

    def items(self) -> list[tuple[int, int]]:
        return sorted(self._entries.items())

    def to_dict(self) -> dict[str, int]:
        # JSON object keys must be strings
        return {str(post_id): message_id for post_id, message_id in self.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, post_id) -> bool:
        return post_id in self._entries


@dataclass(eq=False)
class Session:
    """Delivery state for one subscriber chat."""
    subscriber_id: int
    credentials: Credentials
    display_name: str = ""
    cursor_id: Optional[int] = None
    recent: RecentMap = field(default_factory=RecentMap)
    state: SessionState = SessionState.ACTIVE

    # Runtime only, never persisted
    poll_task: Optional[asyncio.Task] = field(default=None, repr=False)
    cycle_task: Optional[asyncio.Task] = field(default=None, repr=False)
    attempts: dict[int, int] = field(default_factory=dict, repr=False)
    dirty: bool = field(default=False, repr=False)

    @property
    def label(self) -> str:
        """Subscriber context for log lines."""
        return f"chat {self.subscriber_id} (@{self.credentials.screen_name})"

    @property
    def in_flight(self) -> bool:
        return self.cycle_task is not None and not self.cycle_task.done()

    def advance_cursor(self, post_id: int) -> None:
        """Move the cursor forward; it never moves backward."""
        if self.cursor_id is None or post_id > self.cursor_id:
            self.cursor_id = post_id
            self.dirty = True

    def remember(self, post_id: int, message_id: int) -> None:
        self.recent.put(post_id, message_id)
        self.dirty = True

    def to_record(self) -> dict:
        return {
            "chat_id": self.subscriber_id,
            "screen_name": self.credentials.screen_name,
            "display_name": self.display_name,
            "access_token": self.credentials.access_token,
            "access_token_secret": self.credentials.access_token_secret,
            "cursor_id": self.cursor_id,
            "recent_map": self.recent.to_dict(),
        }

    @classmethod
    def from_record(cls, record: dict, recent_map_size: int = DEFAULT_RECENT_MAP_SIZE) -> "Session":
        cursor = record.get("cursor_id")
        return cls(
            subscriber_id=int(record["chat_id"]),
            credentials=Credentials(
                access_token=record["access_token"],
                access_token_secret=record["access_token_secret"],
                screen_name=record.get("screen_name") or "",
            ),
            display_name=record.get("display_name") or "",
            cursor_id=int(cursor) if cursor is not None else None,
            recent=RecentMap(recent_map_size, record.get("recent_map") or {}),
        )


class SessionRegistry:
    """In-memory table of Active sessions, keyed by subscriber chat id."""

    def __init__(self):
        self._sessions: dict[int, Session] = {}

    def create(self, session: Session) -> Session:
        if session.subscriber_id in self._sessions:
            raise ValueError(f"Session for chat {session.subscriber_id} already exists")
        self._sessions[session.subscriber_id] = session
        logger.info(f"Session created: {session.label}")
        return session

    def get(self, subscriber_id: int) -> Optional[Session]:
        return self._sessions.get(subscriber_id)

    def remove(self, subscriber_id: int) -> Optional[Session]:
        session = self._sessions.pop(subscriber_id, None)
        if session is not None:
            session.state = SessionState.TERMINATED
            logger.info(f"Session removed: {session.label}")
        return session

    def is_current(self, session: Session) -> bool:
        """True if ``session`` is still the registered record for its chat."""
        return self._sessions.get(session.subscriber_id) is session

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, subscriber_id) -> bool:
        return subscriber_id in self._sessions
