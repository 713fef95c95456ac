"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from feedrelay.models import Credentials, MediaItem, MediaKind, MediaVariant, Post, Relation
from feedrelay.rendering import split_clusters

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_post(
    id=1,
    text="hello",
    relation=Relation.ORIGINAL,
    author_name="Alice",
    author_handle="alice",
    spans=(),
    media=(),
    replied_to_id=None,
    shared=None,
    is_poll=False,
    created_at=None,
):
    return Post(
        id=id,
        author_name=author_name,
        author_handle=author_handle,
        created_at=created_at or BASE_TIME + timedelta(minutes=id),
        text=split_clusters(text),
        relation=relation,
        spans=tuple(spans),
        media=tuple(media),
        replied_to_id=replied_to_id,
        shared=shared,
        is_poll=is_poll,
    )


@pytest.fixture
def make_post():
    """Factory for Posts; created_at defaults to BASE_TIME + id minutes."""
    return _make_post


@pytest.fixture
def photo():
    return MediaItem(MediaKind.PHOTO, (MediaVariant("https://pbs.twimg.com/media/a.jpg"),))


@pytest.fixture
def credentials():
    return Credentials("access-token", "access-secret", "alice")
