"""feedrelay — relays a Twitter home timeline into a private Telegram chat."""

__version__ = "0.1.0"
