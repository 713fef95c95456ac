"""Twitter source adapters — timeline fetch, parsing, sign-in."""

from .auth import TwitterAuthorizer
from .client import TwitterClient
from .parse import parse_timeline, parse_tweet

__all__ = [
    "TwitterAuthorizer",
    "TwitterClient",
    "parse_timeline",
    "parse_tweet",
]
