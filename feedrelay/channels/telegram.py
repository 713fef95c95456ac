"""Telegram channel — subscriber command surface."""

import html
import logging
from typing import Optional

from telegram import BotCommand, LinkPreviewOptions, Update
from telegram.constants import ChatType, ParseMode
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from ..errors import PostingError, RelayError, classify_error
from ..relay import NotSubscribedError, Relay

logger = logging.getLogger("feedrelay.channels.telegram")

NOT_SUBSCRIBED = "You are not subscribed. Send /start to connect your Twitter account."


class TelegramChannel:
    """Telegram bot commands for subscribers.

    /start  — sign in with Twitter and start relaying the home timeline
    /stop   — stop relaying and forget the account
    /status — show what is being relayed
    text    — post it as a tweet (a reply to a relayed message posts a reply)
    """

    def __init__(self, relay: Relay, app: Application):
        self.relay = relay
        self.app = app

    async def start(self):
        """Register handlers and start long polling."""
        self.app.add_handler(CommandHandler("start", self._cmd_start))
        self.app.add_handler(CommandHandler("stop", self._cmd_stop))
        self.app.add_handler(CommandHandler("status", self._cmd_status))
        self.app.add_handler(MessageHandler(
            filters.TEXT & ~filters.COMMAND,
            self._handle_message,
        ))
        self.app.add_error_handler(self._handle_error)

        logger.info("Starting Telegram bot...")
        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling(drop_pending_updates=True)

        await self.app.bot.set_my_commands([
            BotCommand("start", "Sign in with Twitter"),
            BotCommand("stop", "Stop relaying tweets"),
            BotCommand("status", "Show relay status"),
        ])
        logger.info("Telegram bot started.")

    async def stop(self):
        """Stop the Telegram bot."""
        if self.app.updater and self.app.updater.running:
            await self.app.updater.stop()
        if self.app.running:
            await self.app.stop()
        await self.app.shutdown()
        logger.info("Telegram bot stopped.")

    # ═══════════════════════════════════════════════════════════
    # COMMANDS
    # ═══════════════════════════════════════════════════════════

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /start — hand out a sign-in link."""
        chat = update.effective_chat
        if chat.type != ChatType.PRIVATE:
            await update.message.reply_text("Send /start to me in a private chat.")
            return

        name = self._get_display_name(update.effective_user)
        try:
            url = await self.relay.begin_authorization(chat.id, name)
        except RelayError as e:
            logger.warning(f"Sign-in for chat {chat.id} failed: {e}")
            await update.message.reply_text(f"Error fetching OAuth token. {classify_error(e)}")
            return

        await update.message.reply_text(
            f'Hi {html.escape(name)}! <a href="{html.escape(url)}">Sign in with Twitter</a> '
            "to start receiving your timeline here.",
            parse_mode=ParseMode.HTML,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
        )

    async def _cmd_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /stop — unsubscribe."""
        if await self.relay.unsubscribe(update.effective_chat.id):
            await update.message.reply_text("Stopped. Send /start to subscribe again.")
        else:
            await update.message.reply_text(NOT_SUBSCRIBED)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /status."""
        session = self.relay.session(update.effective_chat.id)
        if session is None:
            await update.message.reply_text(NOT_SUBSCRIBED)
            return

        cursor = session.cursor_id if session.cursor_id is not None else "none yet"
        await update.message.reply_text(
            f"Relaying the timeline of @{session.credentials.screen_name}.\n"
            f"Last tweet: {cursor}\n"
            f"Recent messages tracked: {len(session.recent)}"
        )

    # ═══════════════════════════════════════════════════════════
    # TEXT → TWEET
    # ═══════════════════════════════════════════════════════════

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Post a subscriber's text as a tweet."""
        message = update.message
        if message is None or not message.text:
            return

        chat_id = update.effective_chat.id
        reply_to = self._replied_message_id(update)
        try:
            post = await self.relay.post_status(chat_id, message.text, reply_to)
        except NotSubscribedError:
            await message.reply_text(NOT_SUBSCRIBED)
            return
        except PostingError as e:
            logger.warning(f"Post from chat {chat_id} rejected: {e}")
            await message.reply_text(f"Failed to post: {e}")
            return
        except RelayError as e:
            await message.reply_text(f"Failed to post: {classify_error(e)}")
            return

        logger.info(f"Chat {chat_id} posted tweet {post.id}")
        await message.reply_text(
            post.permalink,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
        )

    def _replied_message_id(self, update: Update) -> Optional[int]:
        """Message id the subscriber replied to, if it was one of ours."""
        replied = update.message.reply_to_message
        if replied is None or replied.from_user is None:
            return None
        if replied.from_user.id != self.app.bot.id:
            return None
        return replied.message_id

    def _get_display_name(self, user) -> str:
        """Get a display name for a Telegram user."""
        if user is None:
            return ""
        if user.first_name and user.last_name:
            return f"{user.first_name} {user.last_name}"
        return user.first_name or user.username or str(user.id)

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        """Handle errors."""
        logger.error(f"Telegram error: {context.error}", exc_info=context.error)
