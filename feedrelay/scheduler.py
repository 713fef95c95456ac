"""Update scheduler — per-session fetch → render → deliver cycles.

Each Active session owns one timer task that ticks every ``interval``
seconds. A tick starts an update cycle unless the previous cycle for the
same session is still running, in which case the tick is dropped.
Cycles of different sessions run independently on the event loop; the
fetch call and each delivery call are the suspension points.

Update cycle:
  1. Fetch posts newer than the cursor (or the latest N on bootstrap)
  2. Sort them by creation time, then id
  3. For each post: render, deliver (threaded under the replied-to
     message if it is still cached), record post → message, advance cursor

Failure handling:
  - transient fetch error: nothing changes, next tick retries
  - transient delivery/render error: stop at the failed post; it and
    everything after it are retried next tick (at-least-once). A post
    failing ``max_post_attempts`` times in a row is skipped.
  - permanent fetch/delivery error: the session is terminated
A cycle that finds its session removed (or replaced) after a suspension
point discards its results instead of touching the stale record.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import (
    PermanentDeliveryError,
    PermanentFetchError,
    RenderError,
    TransientDeliveryError,
    TransientFetchError,
)
from .models import Post
from .sessions import Session, SessionRegistry

logger = logging.getLogger("feedrelay.scheduler")

DEFAULT_INTERVAL = 60
DEFAULT_BOOTSTRAP_COUNT = 20
DEFAULT_FETCH_LIMIT = 200
DEFAULT_MAX_POST_ATTEMPTS = 3


def chronological(posts: list[Post]) -> list[Post]:
    """Order posts for delivery: oldest first, ties broken by id."""
    return sorted(posts, key=lambda p: (p.created_at, p.id))


class UpdateScheduler:
    """Drives update cycles for every session in a registry.

    Usage:
        scheduler = UpdateScheduler(registry, fetcher, renderer, delivery, store)
        scheduler.start(session)      # timer + immediate catch-up cycle
        ...
        await scheduler.terminate(session, "unsubscribed")
        await scheduler.shutdown()
    """

    def __init__(
        self,
        registry: SessionRegistry,
        fetcher,
        renderer,
        delivery,
        store=None,
        *,
        interval: float = DEFAULT_INTERVAL,
        bootstrap_count: int = DEFAULT_BOOTSTRAP_COUNT,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
        max_post_attempts: int = DEFAULT_MAX_POST_ATTEMPTS,
        on_terminate: Optional[Callable[[Session, Exception], Awaitable[None]]] = None,
    ):
        """Initialize scheduler.

        Args:
            registry: Session table owned by the relay.
            fetcher: Object with ``async fetch_since(credentials, cursor, limit)``.
            renderer: Object with ``render(post) -> MessageDraft``.
            delivery: Object with ``async deliver(chat_id, draft, thread_of)``.
            store: Optional persistence with ``async save(record)`` / ``async delete(chat_id)``.
            on_terminate: Async callback after a session is terminated by
                a permanent error. Args: (session, error)
        """
        self.registry = registry
        self.fetcher = fetcher
        self.renderer = renderer
        self.delivery = delivery
        self.store = store
        self.interval = interval
        self.bootstrap_count = bootstrap_count
        self.fetch_limit = fetch_limit
        self.max_post_attempts = max_post_attempts
        self._on_terminate = on_terminate

    # ═══════════════════════════════════════════════════════════
    # TIMERS
    # ═══════════════════════════════════════════════════════════

    def start(self, session: Session, catch_up: bool = True) -> None:
        """Start the session's timer and, by default, an immediate cycle."""
        if session.poll_task is not None and not session.poll_task.done():
            logger.warning(f"Timer already running for {session.label}")
            return
        session.poll_task = asyncio.create_task(
            self._poll_loop(session), name=f"poll-{session.subscriber_id}"
        )
        if catch_up:
            self.trigger(session)

    def trigger(self, session: Session) -> Optional[asyncio.Task]:
        """Start an update cycle unless one is already running.

        Returns:
            The new cycle task, or None if the tick was coalesced.
        """
        if session.in_flight:
            logger.debug(f"Cycle still running for {session.label}, skipping tick")
            return None
        # Set synchronously: no other coroutine can run between the check and here
        session.cycle_task = asyncio.create_task(
            self._guarded_cycle(session), name=f"cycle-{session.subscriber_id}"
        )
        return session.cycle_task

    def stop(self, session: Session) -> None:
        """Cancel the session's timer. An in-flight cycle is left to finish."""
        task = session.poll_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        session.poll_task = None

    async def settle(self, session: Session, timeout: float = 10.0) -> None:
        """Cancel the session's timer and wait for its in-flight cycle, if any."""
        self.stop(session)
        task = session.cycle_task
        if task is None or task.done() or task is asyncio.current_task():
            return
        done, _ = await asyncio.wait([task], timeout=timeout)
        if not done:
            logger.warning(f"Cycle for {session.label} still running after {timeout}s")

    async def _poll_loop(self, session: Session):
        while self.registry.is_current(session):
            await asyncio.sleep(self.interval)
            if not self.registry.is_current(session):
                break
            self.trigger(session)

    async def _guarded_cycle(self, session: Session):
        try:
            await self.run_cycle(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Never let one cycle take the process down
            logger.error(f"Update cycle failed for {session.label}: {e}", exc_info=True)

    # ═══════════════════════════════════════════════════════════
    # UPDATE CYCLE
    # ═══════════════════════════════════════════════════════════

    async def run_cycle(self, session: Session) -> int:
        """Run one fetch → render → deliver pass.

        Returns:
            Number of posts delivered.
        """
        cursor = session.cursor_id
        limit = self.bootstrap_count if cursor is None else self.fetch_limit

        try:
            posts = await self.fetcher.fetch_since(session.credentials, cursor, limit)
        except TransientFetchError as e:
            logger.warning(f"Fetch failed for {session.label}, retrying next cycle: {e}")
            return 0
        except PermanentFetchError as e:
            logger.warning(f"Fetch access revoked for {session.label}: {e}")
            await self._terminate_on_error(session, e)
            return 0

        if not self.registry.is_current(session):
            logger.info(f"Session {session.label} gone during fetch, discarding {len(posts)} posts")
            return 0

        if cursor is not None:
            posts = [p for p in posts if p.id > cursor]

        delivered = 0
        for post in chronological(posts):
            try:
                draft = self.renderer.render(post)
            except RenderError as e:
                if self._give_up(session, post, e):
                    continue
                break

            thread_of = session.recent.get(post.replied_to_id)
            try:
                message_id = await self.delivery.deliver(session.subscriber_id, draft, thread_of)
            except PermanentDeliveryError as e:
                logger.warning(f"Delivery refused for {session.label}: {e}")
                await self._terminate_on_error(session, e)
                return delivered
            except TransientDeliveryError as e:
                if self._give_up(session, post, e):
                    continue
                break

            if not self.registry.is_current(session):
                logger.info(f"Session {session.label} gone during delivery, discarding cycle")
                return delivered

            session.remember(post.id, message_id)
            session.advance_cursor(post.id)
            session.attempts.pop(post.id, None)
            delivered += 1

        if delivered:
            logger.info(f"Delivered {delivered} posts to {session.label} (cursor {session.cursor_id})")
        if session.dirty:
            await self.save(session)
        return delivered

    def _give_up(self, session: Session, post: Post, error: Exception) -> bool:
        """Count a failed attempt; True if the post should be skipped for good."""
        count = session.attempts.get(post.id, 0) + 1
        if count >= self.max_post_attempts:
            logger.warning(
                f"Skipping post {post.id} for {session.label} after {count} failed attempts: {error}"
            )
            session.attempts.pop(post.id, None)
            session.advance_cursor(post.id)
            return True
        session.attempts[post.id] = count
        logger.warning(
            f"Post {post.id} failed for {session.label} (attempt {count}), retrying next cycle: {error}"
        )
        return False

    # ═══════════════════════════════════════════════════════════
    # PERSISTENCE & TERMINATION
    # ═══════════════════════════════════════════════════════════

    async def save(self, session: Session) -> None:
        """Persist a session record if it is still the registered one."""
        if self.store is None or not self.registry.is_current(session):
            return
        try:
            await self.store.save(session.to_record())
            session.dirty = False
        except Exception as e:
            logger.error(f"Failed to save session {session.label}: {e}")

    async def terminate(self, session: Session, reason: str) -> bool:
        """Remove a session for good: timer cancelled, record deleted.

        Returns:
            False if the session was already gone.
        """
        if not self.registry.is_current(session):
            return False
        self.registry.remove(session.subscriber_id)
        self.stop(session)
        logger.info(f"Session terminated: {session.label} ({reason})")
        if self.store is not None:
            try:
                await self.store.delete(session.subscriber_id)
            except Exception as e:
                logger.error(f"Failed to delete session {session.label}: {e}")
        return True

    async def _terminate_on_error(self, session: Session, error: Exception) -> None:
        if await self.terminate(session, str(error)) and self._on_terminate:
            try:
                await self._on_terminate(session, error)
            except Exception as e:
                logger.error(f"Termination callback failed for {session.label}: {e}")

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel all timers and wait briefly for in-flight cycles."""
        cycles = []
        for session in self.registry:
            self.stop(session)
            if session.in_flight:
                cycles.append(session.cycle_task)

        if cycles:
            logger.info(f"Waiting for {len(cycles)} in-flight cycles...")
            done, pending = await asyncio.wait(cycles, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
