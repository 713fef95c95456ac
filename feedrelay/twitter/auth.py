"""Twitter OAuth 1.0a sign-in.

Flow:
  1. request_authorization() obtains a request token and the sign-in URL
  2. The subscriber signs in; Twitter redirects to the callback server
     with ?oauth_token=...&oauth_verifier=...
  3. exchange() trades the request token + verifier for access tokens
"""

import asyncio
import logging

import requests
import tweepy

from ..errors import AuthorizationError
from ..models import Credentials

logger = logging.getLogger("feedrelay.twitter.auth")


class TwitterAuthorizer:
    """Issues sign-in challenges and exchanges callback codes for credentials."""

    def __init__(self, consumer_key: str, consumer_secret: str, callback_url: str):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.callback_url = callback_url

    def _handler(self) -> tweepy.OAuth1UserHandler:
        return tweepy.OAuth1UserHandler(
            self.consumer_key,
            self.consumer_secret,
            callback=self.callback_url,
        )

    async def request_authorization(self) -> tuple[str, str, str]:
        """Start a sign-in.

        Returns:
            Tuple of (authorize_url, request_token, request_token_secret).
        """
        handler = self._handler()
        try:
            url = await asyncio.to_thread(handler.get_authorization_url, signin_with_twitter=True)
        except (tweepy.TweepyException, requests.RequestException) as e:
            raise AuthorizationError(f"request token: {e}") from e

        token = handler.request_token["oauth_token"]
        secret = handler.request_token["oauth_token_secret"]
        return url, token, secret

    async def exchange(self, request_token: str, request_secret: str, verifier: str) -> Credentials:
        """Trade a verified request token for the subscriber's access tokens."""
        handler = self._handler()
        handler.request_token = {
            "oauth_token": request_token,
            "oauth_token_secret": request_secret,
        }

        def _exchange() -> Credentials:
            access_token, access_secret = handler.get_access_token(verifier)
            user = tweepy.API(handler).verify_credentials()
            return Credentials(access_token, access_secret, user.screen_name)

        try:
            credentials = await asyncio.to_thread(_exchange)
        except (tweepy.TweepyException, requests.RequestException) as e:
            raise AuthorizationError(f"access token: {e}") from e

        logger.info(f"Exchanged access token for @{credentials.screen_name}")
        return credentials
