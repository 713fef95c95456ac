"""Feedrelay — Main entry point."""

import asyncio
import logging
import os
import signal
from urllib.parse import urlparse

from telegram.ext import Application

from .callback import CallbackServer
from .channels.delivery import TelegramDelivery
from .channels.telegram import TelegramChannel
from .config import FeedRelaySettings, load_settings
from .console import run_console
from .db import SessionStore, close_db, ensure_schema, init_db
from .relay import Relay
from .rendering import PostRenderer
from .twitter import TwitterAuthorizer, TwitterClient

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_log_file = os.path.expanduser("~/feedrelay.log")

logger = logging.getLogger("feedrelay")


def setup_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=_log_format,
        handlers=[
            logging.StreamHandler(),                          # stderr (console)
            logging.FileHandler(_log_file, encoding="utf-8"), # ~/feedrelay.log
        ],
    )
    # PTB logs every getUpdates call at INFO through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_relay(settings: FeedRelaySettings, app: Application, store=None) -> Relay:
    """Wire the Twitter and Telegram adapters into a Relay."""
    return Relay(
        TwitterClient(settings.twitter_consumer_key, settings.twitter_consumer_secret),
        TwitterAuthorizer(
            settings.twitter_consumer_key,
            settings.twitter_consumer_secret,
            settings.callback_url,
        ),
        TelegramDelivery(app.bot),
        store,
        renderer=PostRenderer(max_depth=settings.max_nesting_depth),
        recent_map_size=settings.recent_map_size,
        interval=settings.poll_interval,
        bootstrap_count=settings.bootstrap_count,
        fetch_limit=settings.fetch_limit,
        max_post_attempts=settings.max_post_attempts,
    )


def _install_signal_handlers(stop: asyncio.Event):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows / non-main thread: KeyboardInterrupt still works
            pass


async def run(settings: FeedRelaySettings = None):
    """Main run loop."""
    settings = settings or load_settings()
    if not settings.telegram_bot_token:
        logger.critical("Cannot start: FEEDRELAY_TELEGRAM_BOT_TOKEN is not set.")
        return
    if not settings.twitter_consumer_key or not settings.twitter_consumer_secret:
        logger.critical("Cannot start: Twitter consumer key/secret are not set.")
        return

    stop = asyncio.Event()
    relay = None
    channel = None
    callback = None
    console_task = None
    db_ready = False

    try:
        await init_db(settings.database_url)
        db_ready = True
        await ensure_schema()

        app = Application.builder().token(settings.telegram_bot_token).build()
        relay = build_relay(settings, app, SessionStore())

        await relay.hydrate()

        channel = TelegramChannel(relay, app)
        await channel.start()
        logger.info("Telegram channel active.")

        callback = CallbackServer(
            relay,
            settings.bot_username,
            host=settings.callback_host,
            port=settings.callback_port,
            path=urlparse(settings.callback_url).path or "/",
        )
        callback.start()

        if settings.console:
            console_task = asyncio.create_task(run_console(relay, stop), name="console")

        _install_signal_handlers(stop)
        logger.info(f"Feedrelay is running with {len(relay.registry)} sessions. Press Ctrl+C to stop.")
        await stop.wait()

    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
    finally:
        if console_task and not console_task.done():
            console_task.cancel()
            await asyncio.gather(console_task, return_exceptions=True)
        if callback:
            await asyncio.to_thread(callback.stop)
        if relay:
            try:
                await relay.shutdown()
            except Exception as e:
                logger.error(f"Relay shutdown failed: {e}", exc_info=True)
        if channel:
            await channel.stop()
        if db_ready:
            await close_db()


def main():
    """Entry point."""
    settings = load_settings()
    setup_logging(settings.debug)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
