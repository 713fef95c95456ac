"""Relay exception hierarchy and user-facing error classification.

Adapters translate their library's exceptions into these types at the
boundary, so the scheduler only ever decides between "retry next cycle"
(transient) and "terminate the session" (permanent).
"""

import asyncio
from typing import Optional


# ════════════════════════════════════════════════════════
# Exception hierarchy
# ════════════════════════════════════════════════════════

class RelayError(Exception):
    """Base class for all relay errors."""
    pass


class FetchError(RelayError):
    """Fetching posts from the source platform failed."""
    pass

class TransientFetchError(FetchError):
    """Network trouble or rate limiting. Retried on the next cycle."""
    pass

class PermanentFetchError(FetchError):
    """The subscriber revoked source access. Terminates the session."""
    pass


class DeliveryError(RelayError):
    """Sending a message to the chat failed."""
    pass

class TransientDeliveryError(DeliveryError):
    """Network trouble, flood control or a rejected message."""
    pass

class PermanentDeliveryError(DeliveryError):
    """The subscriber blocked the bot or the chat is gone."""
    pass


class RenderError(RelayError):
    """A post (usually nested repost/quote content) could not be rendered."""
    pass


class MalformedSpanError(RelayError):
    """A span range is invalid for the text it annotates."""
    pass


class AuthorizationError(RelayError):
    """The OAuth request-token or exchange step failed."""
    pass


class PostingError(RelayError):
    """A subscriber-initiated post was rejected by the source platform."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        if self.code is not None:
            return f"[{self.code}] {self.message}"
        return self.message


# ════════════════════════════════════════════════════════
# User-facing classification
# ════════════════════════════════════════════════════════

def classify_error(e: Exception) -> str:
    """Classify any exception into a short message for the subscriber."""
    if isinstance(e, PostingError):
        return str(e)
    if isinstance(e, (PermanentFetchError, PermanentDeliveryError)):
        return "Access was revoked. Send /start to connect again."
    if isinstance(e, (TransientFetchError, TransientDeliveryError)):
        msg = str(e)
        if "429" in msg or "rate" in msg.lower():
            return "Rate limited. Please wait a moment and try again."
        return "Temporary network problem. Please try again later."
    if isinstance(e, AuthorizationError):
        return f"Authorization failed: {e}" if str(e) else "Authorization failed."
    if isinstance(e, RenderError):
        return "This post could not be formatted."
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return "Request timed out. Please try again."
    if isinstance(e, (ConnectionError, OSError)):
        return "Cannot reach the server. Please try again later."

    type_name = type(e).__name__
    return f"Something went wrong ({type_name}). Check logs for details."
