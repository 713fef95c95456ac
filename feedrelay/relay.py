"""Relay — wires sessions, scheduler and adapters together.

Owns the SessionRegistry (no module-level session table) and the pending
sign-in requests. Entry points used by the outer surfaces:

- Telegram commands: begin_authorization, unsubscribe, post_status, session
- OAuth callback:    complete_authorization, cancel_authorization
- Operator console:  broadcast
- Process lifecycle: hydrate, shutdown
"""

import asyncio
import logging
from typing import Optional

from .errors import (
    AuthorizationError,
    DeliveryError,
    PermanentDeliveryError,
    PermanentFetchError,
    RelayError,
)
from .models import PendingAuthorization, Post
from .rendering import PostRenderer
from .scheduler import UpdateScheduler
from .sessions import DEFAULT_RECENT_MAP_SIZE, RecentMap, Session, SessionRegistry

logger = logging.getLogger("feedrelay.relay")


class NotSubscribedError(RelayError):
    """The chat has no Active session."""
    pass


class Relay:
    """The relay core: one instance per process."""

    def __init__(
        self,
        fetcher,
        authorizer,
        delivery,
        store=None,
        *,
        renderer: Optional[PostRenderer] = None,
        recent_map_size: int = DEFAULT_RECENT_MAP_SIZE,
        **scheduler_options,
    ):
        """Initialize relay.

        Args:
            fetcher: TwitterClient-like (fetch_since, post_status).
            authorizer: TwitterAuthorizer-like (request_authorization, exchange).
            delivery: TelegramDelivery-like (deliver, send_text).
            store: SessionStore-like, or None to run without persistence.
            renderer: Post renderer (default depth cap 2).
            recent_map_size: Capacity of each session's post → message cache.
            **scheduler_options: interval, bootstrap_count, fetch_limit,
                max_post_attempts. Passed to UpdateScheduler.
        """
        self.fetcher = fetcher
        self.authorizer = authorizer
        self.delivery = delivery
        self.store = store
        self.recent_map_size = recent_map_size
        self.registry = SessionRegistry()
        self.pending: dict[str, PendingAuthorization] = {}
        self.scheduler = UpdateScheduler(
            self.registry,
            fetcher,
            renderer or PostRenderer(),
            delivery,
            store,
            on_terminate=self._notify_terminated,
            **scheduler_options,
        )

    def session(self, chat_id: int) -> Optional[Session]:
        return self.registry.get(chat_id)

    # ═══════════════════════════════════════════════════════════
    # AUTHORIZATION
    # ═══════════════════════════════════════════════════════════

    async def begin_authorization(self, chat_id: int, subscriber_name: str) -> str:
        """Start a sign-in for a chat and return the URL to send the subscriber."""
        url, token, secret = await self.authorizer.request_authorization()
        self.pending[token] = PendingAuthorization(
            challenge_secret=secret,
            origin_chat_id=chat_id,
            subscriber_name=subscriber_name,
        )
        logger.info(f"Sign-in started for chat {chat_id} ({subscriber_name})")
        return url

    def cancel_authorization(self, request_token: str) -> bool:
        """Consume a pending sign-in the subscriber declined."""
        pending = self.pending.pop(request_token, None)
        if pending is not None:
            logger.info(f"Sign-in declined for chat {pending.origin_chat_id}")
        return pending is not None

    async def complete_authorization(self, request_token: str, verifier: str) -> Session:
        """Exchange the callback code and start relaying for the chat.

        The pending entry is consumed whether or not the exchange succeeds.

        Raises:
            AuthorizationError: Unknown request token or failed exchange.
        """
        pending = self.pending.pop(request_token, None)
        if pending is None:
            raise AuthorizationError("Unknown or expired sign-in request")

        credentials = await self.authorizer.exchange(request_token, pending.challenge_secret, verifier)
        chat_id = pending.origin_chat_id

        session = Session(
            subscriber_id=chat_id,
            credentials=credentials,
            display_name=pending.subscriber_name,
            recent=RecentMap(self.recent_map_size),
        )

        previous = self.registry.get(chat_id)
        while previous is not None:
            # copied progress includes whatever the old cycle delivered
            await self.scheduler.settle(previous)
            if previous.credentials.screen_name == credentials.screen_name:
                session.cursor_id = previous.cursor_id
                session.recent = RecentMap(self.recent_map_size, previous.recent.to_dict())
            await self.scheduler.terminate(previous, "re-authorized")
            previous = self.registry.get(chat_id)

        self.registry.create(session)
        await self.scheduler.save(session)
        self.scheduler.start(session)

        try:
            await self.delivery.send_text(
                chat_id, f"Signed in as @{credentials.screen_name}. New tweets will appear here."
            )
        except DeliveryError as e:
            logger.warning(f"Could not confirm sign-in to {session.label}: {e}")
        return session

    # ═══════════════════════════════════════════════════════════
    # SUBSCRIBER ACTIONS
    # ═══════════════════════════════════════════════════════════

    async def unsubscribe(self, chat_id: int) -> bool:
        session = self.registry.get(chat_id)
        if session is None:
            return False
        return await self.scheduler.terminate(session, "unsubscribed")

    async def post_status(self, chat_id: int, text: str, reply_to_message_id: Optional[int] = None) -> Post:
        """Post text to Twitter for a subscriber.

        If ``reply_to_message_id`` is a relayed message still in the
        session's cache, the post is sent as a reply to that tweet.

        Raises:
            NotSubscribedError: The chat has no Active session.
            PostingError: Twitter rejected the post.
        """
        session = self.registry.get(chat_id)
        if session is None:
            raise NotSubscribedError(f"Chat {chat_id} is not subscribed")

        in_reply_to = None
        if reply_to_message_id is not None:
            in_reply_to = session.recent.post_for_message(reply_to_message_id)
        return await self.fetcher.post_status(session.credentials, text, in_reply_to)

    # ═══════════════════════════════════════════════════════════
    # BROADCAST
    # ═══════════════════════════════════════════════════════════

    async def broadcast(self, text: str) -> tuple[int, int]:
        """Send text verbatim to every Active session, concurrently.

        Returns:
            Tuple of (delivered, failed).
        """
        sessions = list(self.registry)
        results = await asyncio.gather(
            *(self.delivery.send_text(s.subscriber_id, text) for s in sessions),
            return_exceptions=True,
        )

        delivered = failed = 0
        for session, result in zip(sessions, results):
            if not isinstance(result, BaseException):
                delivered += 1
                continue
            failed += 1
            if isinstance(result, PermanentDeliveryError):
                await self.scheduler.terminate(session, str(result))
            else:
                logger.warning(f"Broadcast to {session.label} failed: {result}")

        logger.info(f"Broadcast delivered to {delivered}/{len(sessions)} sessions")
        return delivered, failed

    # ═══════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════

    async def hydrate(self) -> int:
        """Rebuild Active sessions from the store and resume them.

        Each restored session gets its timer back plus an immediate
        catch-up cycle.

        Returns:
            Number of sessions restored.
        """
        if self.store is None:
            return 0

        restored = 0
        for record in await self.store.load_all():
            try:
                session = Session.from_record(record, self.recent_map_size)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping unreadable subscription {record.get('chat_id')}: {e}")
                continue
            if session.subscriber_id in self.registry:
                continue
            self.registry.create(session)
            self.scheduler.start(session)
            restored += 1

        logger.info(f"Restored {restored} sessions")
        return restored

    async def flush(self) -> int:
        """Write every Active session to the store."""
        if self.store is None:
            return 0
        sessions = list(self.registry)
        count = await self.store.save_all([s.to_record() for s in sessions])
        for session in sessions:
            session.dirty = False
        return count

    async def shutdown(self) -> None:
        """Stop timers, let in-flight cycles settle, then flush to the store."""
        logger.info("Shutting down relay...")
        await self.scheduler.shutdown()
        await self.flush()
        self.pending.clear()
        logger.info("Relay stopped")

    async def _notify_terminated(self, session: Session, error: Exception) -> None:
        if not isinstance(error, PermanentFetchError):
            return
        try:
            await self.delivery.send_text(
                session.subscriber_id,
                "Twitter access was revoked, so relaying has stopped. Send /start to sign in again.",
            )
        except DeliveryError as e:
            logger.warning(f"Could not notify {session.label} of termination: {e}")
