"""Twitter fetch adapter.

Wraps tweepy's v1.1 API client. tweepy is synchronous, so every request
runs in a worker thread to keep the event loop responsive. Errors are
translated at this boundary:

- 401/403 → PermanentFetchError (the subscriber revoked access)
- everything else (429, 5xx, network) → TransientFetchError
"""

import asyncio
import logging
from typing import Optional

import requests
import tweepy

from ..errors import FetchError, PermanentFetchError, PostingError, TransientFetchError
from ..models import Credentials, Post
from .parse import parse_timeline, parse_tweet

logger = logging.getLogger("feedrelay.twitter")

# v1.1 home_timeline hard limit per request
MAX_COUNT = 200


def translate_fetch_error(e: Exception) -> FetchError:
    """Map a tweepy/requests exception onto the fetch error taxonomy."""
    if isinstance(e, (tweepy.errors.Unauthorized, tweepy.errors.Forbidden)):
        return PermanentFetchError(f"Access revoked: {e}")
    if isinstance(e, tweepy.errors.TooManyRequests):
        return TransientFetchError(f"Rate limited (429): {e}")
    if isinstance(e, tweepy.errors.TwitterServerError):
        return TransientFetchError(f"Twitter server error: {e}")
    return TransientFetchError(f"{type(e).__name__}: {e}")


def _posting_error(e: Exception) -> PostingError:
    codes = getattr(e, "api_codes", None) or []
    messages = getattr(e, "api_messages", None) or []
    if codes or messages:
        return PostingError(messages[0] if messages else str(e), codes[0] if codes else None)
    status = getattr(getattr(e, "response", None), "status_code", None)
    return PostingError(str(e) or type(e).__name__, status)


class TwitterClient:
    """Per-subscriber access to the home timeline and status posting."""

    def __init__(self, consumer_key: str, consumer_secret: str):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret

    def _api(self, credentials: Credentials) -> tweepy.API:
        auth = tweepy.OAuth1UserHandler(
            self.consumer_key,
            self.consumer_secret,
            credentials.access_token,
            credentials.access_token_secret,
        )
        return tweepy.API(auth)

    async def fetch_since(
        self,
        credentials: Credentials,
        cursor: Optional[int],
        limit: int,
    ) -> list[Post]:
        """Fetch home timeline posts strictly newer than ``cursor``.

        Args:
            credentials: The subscriber's access token pair.
            cursor: Last delivered post id, or None for a bootstrap fetch.
            limit: Maximum number of posts to request.

        Returns:
            Parsed posts, in whatever order the API returned them.

        Raises:
            TransientFetchError: Network trouble or rate limiting.
            PermanentFetchError: The subscriber revoked access.
        """
        params = {
            "count": min(limit, MAX_COUNT),
            "tweet_mode": "extended",
            "include_entities": True,
        }
        if cursor is not None:
            params["since_id"] = cursor

        api = self._api(credentials)
        try:
            statuses = await asyncio.to_thread(api.home_timeline, **params)
        except (tweepy.TweepyException, requests.RequestException) as e:
            raise translate_fetch_error(e) from e

        posts = parse_timeline(status._json for status in statuses)
        logger.debug(f"Fetched {len(posts)} posts for @{credentials.screen_name} (since {cursor})")
        return posts

    async def post_status(
        self,
        credentials: Credentials,
        text: str,
        in_reply_to: Optional[int] = None,
    ) -> Post:
        """Publish a status on behalf of the subscriber.

        Raises:
            PostingError: Carrying the code/message Twitter reported.
        """
        params = {"status": text}
        if in_reply_to is not None:
            params["in_reply_to_status_id"] = in_reply_to
            params["auto_populate_reply_metadata"] = True

        api = self._api(credentials)
        try:
            status = await asyncio.to_thread(api.update_status, **params)
        except (tweepy.TweepyException, requests.RequestException) as e:
            raise _posting_error(e) from e

        logger.info(f"Posted status {status.id} for @{credentials.screen_name}")
        return parse_tweet(status._json)
