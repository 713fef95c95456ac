"""Telegram delivery adapter.

Sends rendered drafts with python-telegram-bot in HTML parse mode, link
previews disabled. Every send returns the Telegram message id so the
scheduler can thread later replies under it.

Error translation:
- Forbidden (bot blocked, kicked) and "chat not found" → PermanentDeliveryError
- any other TelegramError → TransientDeliveryError
"""

import html
import logging
import re
from typing import Optional, Sequence

from telegram import Bot, InputMediaPhoto, LinkPreviewOptions, ReplyParameters
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, TelegramError

from ..errors import DeliveryError, PermanentDeliveryError, TransientDeliveryError
from ..models import MediaKind, MessageDraft

logger = logging.getLogger("feedrelay.channels.delivery")

MAX_MESSAGE_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024
MAX_MEDIA_GROUP = 10

_NO_PREVIEW = LinkPreviewOptions(is_disabled=True)


def translate_delivery_error(e: TelegramError) -> DeliveryError:
    """Map a python-telegram-bot error onto the delivery error taxonomy."""
    if isinstance(e, Forbidden):
        return PermanentDeliveryError(f"Forbidden: {e.message}")
    if isinstance(e, BadRequest) and "chat not found" in e.message.lower():
        return PermanentDeliveryError(f"Chat gone: {e.message}")
    return TransientDeliveryError(f"{type(e).__name__}: {e.message}")


_TAG_RE = re.compile(r"<(/?)[a-zA-Z][^>]*>")


def _break_points(text: str) -> tuple[list[int], list[int]]:
    """Offsets where HTML markup may be cut without breaking an element.

    Returns (separators, boundaries): newlines and spaces outside every tag
    and element, and the edges of top-level elements.
    """
    separators, boundaries = [], []
    depth = 0
    pos = 0
    for m in _TAG_RE.finditer(text):
        if depth == 0:
            separators.extend(i for i in range(pos, m.start()) if text[i] in "\n ")
            boundaries.append(m.start())
        depth = max(depth - 1, 0) if m.group(1) else depth + 1
        if depth == 0:
            boundaries.append(m.end())
        pos = m.end()
    if depth == 0:
        separators.extend(i for i in range(pos, len(text)) if text[i] in "\n ")
    return separators, boundaries


def _hard_cut(text: str, start: int, limit: int) -> int:
    # never inside a tag or an entity
    window = text[start:limit]
    for opener, closer in (("<", ">"), ("&", ";")):
        i = window.rfind(opener)
        if i > 0 and closer not in window[i:]:
            window = window[:i]
    return start + len(window)


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split long HTML markup into chunks Telegram accepts.

    Cuts prefer newlines, then spaces, then element edges, and only fall
    back to a hard cut (outside tags and entities) when nothing else fits.
    Separators inside an element such as ``<a href="…">some text</a>``
    are never used, so each chunk keeps its tags balanced.
    """
    if len(text) <= max_length:
        return [text]

    separators, boundaries = _break_points(text)
    chunks = []
    start = 0
    while len(text) - start > max_length:
        limit = start + max_length
        fits = [p for p in separators if start < p < limit]
        newlines = [p for p in fits if text[p] == "\n"]
        edges = [p for p in boundaries if start < p <= limit]
        if newlines:
            split_at = newlines[-1]
        elif fits:
            split_at = fits[-1]
        elif edges:
            split_at = edges[-1]
        else:
            split_at = _hard_cut(text, start, limit)

        chunks.append(text[start:split_at])
        start = split_at
        while start < len(text) and text[start].isspace():
            start += 1

    if start < len(text):
        chunks.append(text[start:])
    return chunks


def _reply_to(thread_of: Optional[int]) -> Optional[ReplyParameters]:
    if thread_of is None:
        return None
    return ReplyParameters(message_id=thread_of, allow_sending_without_reply=True)


class TelegramDelivery:
    """Delivery adapter over a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def _send(self, method, **kwargs):
        try:
            return await method(**kwargs)
        except TelegramError as e:
            raise translate_delivery_error(e) from e

    # ── Primitive sends ──────────────────────────────────────

    async def send_text(self, chat_id: int, markup: str, thread_of: Optional[int] = None) -> int:
        """Send HTML text, split into several messages if too long.

        Only the first chunk is threaded; its id is returned.
        """
        first_id = None
        for chunk in split_message(markup):
            msg = await self._send(
                self.bot.send_message,
                chat_id=chat_id,
                text=chunk,
                parse_mode=ParseMode.HTML,
                link_preview_options=_NO_PREVIEW,
                reply_parameters=_reply_to(thread_of) if first_id is None else None,
            )
            if first_id is None:
                first_id = msg.message_id
        return first_id

    async def send_photo(self, chat_id: int, url: str, caption: Optional[str] = None,
                         thread_of: Optional[int] = None) -> int:
        msg = await self._send(
            self.bot.send_photo,
            chat_id=chat_id,
            photo=url,
            caption=caption,
            parse_mode=ParseMode.HTML if caption else None,
            reply_parameters=_reply_to(thread_of),
        )
        return msg.message_id

    async def send_video(self, chat_id: int, url: str, caption: Optional[str] = None,
                         thread_of: Optional[int] = None) -> int:
        msg = await self._send(
            self.bot.send_video,
            chat_id=chat_id,
            video=url,
            caption=caption,
            parse_mode=ParseMode.HTML if caption else None,
            reply_parameters=_reply_to(thread_of),
        )
        return msg.message_id

    async def send_animation(self, chat_id: int, url: str, caption: Optional[str] = None,
                             thread_of: Optional[int] = None) -> int:
        msg = await self._send(
            self.bot.send_animation,
            chat_id=chat_id,
            animation=url,
            caption=caption,
            parse_mode=ParseMode.HTML if caption else None,
            reply_parameters=_reply_to(thread_of),
        )
        return msg.message_id

    async def send_media_group(self, chat_id: int, urls: Sequence[str],
                               thread_of: Optional[int] = None) -> list[int]:
        messages = await self._send(
            self.bot.send_media_group,
            chat_id=chat_id,
            media=[InputMediaPhoto(url) for url in urls[:MAX_MEDIA_GROUP]],
            reply_parameters=_reply_to(thread_of),
        )
        return [m.message_id for m in messages]

    # ── Draft dispatch ───────────────────────────────────────

    async def deliver(self, chat_id: int, draft: MessageDraft, thread_of: Optional[int] = None) -> int:
        """Send a rendered draft and return the id of its text-bearing message.

        Args:
            chat_id: Subscriber chat.
            draft: Rendered post.
            thread_of: Message id to reply to, if the post replies to a
                post that is still in the session's cache.
        """
        kind, urls = draft.media_kind, draft.media_urls
        if kind is None or not urls:
            return await self.send_text(chat_id, draft.body, thread_of)

        try:
            if kind is MediaKind.PHOTO and len(urls) > 1:
                ids = await self.send_media_group(chat_id, urls, thread_of)
                anchor = ids[0]
            elif len(draft.body) > MAX_CAPTION_LENGTH:
                anchor = await self._send_single(chat_id, kind, urls[0], None, thread_of)
            else:
                return await self._send_single(chat_id, kind, urls[0], draft.body, thread_of)
        except TransientDeliveryError as e:
            if not isinstance(e.__cause__, BadRequest):
                raise
            # Telegram could not fetch or accept the media: send the text with links instead
            logger.warning(f"Media rejected for chat {chat_id}, sending as text: {e}")
            links = " ".join(
                f'<a href="{html.escape(url, quote=True)}">[{kind.value}]</a>' for url in urls
            )
            return await self.send_text(chat_id, f"{draft.body}\n{links}", thread_of)

        return await self.send_text(chat_id, draft.body, thread_of=anchor)

    async def _send_single(self, chat_id: int, kind: MediaKind, url: str,
                           caption: Optional[str], thread_of: Optional[int]) -> int:
        if kind is MediaKind.VIDEO:
            return await self.send_video(chat_id, url, caption, thread_of)
        if kind is MediaKind.GIF:
            return await self.send_animation(chat_id, url, caption, thread_of)
        return await self.send_photo(chat_id, url, caption, thread_of)
