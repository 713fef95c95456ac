"""Telegram side of the relay — outbound delivery and subscriber commands."""

from .delivery import TelegramDelivery, split_message, translate_delivery_error

__all__ = [
    "TelegramDelivery",
    "split_message",
    "translate_delivery_error",
]
