"""Session store — the subscriptions table.

Records are the opaque dicts produced by ``Session.to_record()``:
chat_id, screen_name, display_name, access_token, access_token_secret,
cursor_id, recent_map.
"""

import logging
from typing import Iterable

from .connection import get_connection, get_transaction

logger = logging.getLogger("feedrelay.db.store")

_UPSERT = """
    INSERT INTO subscriptions
        (chat_id, screen_name, display_name, access_token, access_token_secret, cursor_id, recent_map)
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
    ON CONFLICT (chat_id) DO UPDATE SET
        screen_name = $2,
        display_name = $3,
        access_token = $4,
        access_token_secret = $5,
        cursor_id = $6,
        recent_map = $7::jsonb,
        updated_at = NOW()
"""


def _args(record: dict) -> tuple:
    return (
        record["chat_id"],
        record.get("screen_name") or "",
        record.get("display_name") or "",
        record["access_token"],
        record["access_token_secret"],
        record.get("cursor_id"),
        record.get("recent_map") or {},
    )


class SessionStore:
    """Persistence collaborator backed by PostgreSQL."""

    async def load_all(self) -> list[dict]:
        """Load every stored subscription."""
        async with get_connection() as conn:
            rows = await conn.fetch("""
                SELECT chat_id, screen_name, display_name, access_token,
                       access_token_secret, cursor_id, recent_map, updated_at
                FROM subscriptions
                ORDER BY chat_id
            """)
        return [dict(row) for row in rows]

    async def save(self, record: dict) -> None:
        """Insert or update one subscription."""
        async with get_connection() as conn:
            await conn.execute(_UPSERT, *_args(record))

    async def save_all(self, records: Iterable[dict]) -> int:
        """Upsert many subscriptions in one transaction."""
        args = [_args(r) for r in records]
        if not args:
            return 0
        async with get_transaction() as conn:
            await conn.executemany(_UPSERT, args)
        logger.info(f"Saved {len(args)} subscriptions")
        return len(args)

    async def delete(self, chat_id: int) -> bool:
        """Delete a subscription. Returns False if it did not exist."""
        async with get_connection() as conn:
            result = await conn.execute("DELETE FROM subscriptions WHERE chat_id = $1", chat_id)
        return result != "DELETE 0"
