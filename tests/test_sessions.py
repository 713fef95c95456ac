"""Tests for sessions, the recent-message cache and the registry."""

import pytest

from feedrelay.models import Credentials
from feedrelay.sessions import RecentMap, Session, SessionRegistry, SessionState


def _session(chat_id=10, screen_name="alice", **kwargs):
    return Session(
        subscriber_id=chat_id,
        credentials=Credentials("tok", "sec", screen_name),
        **kwargs,
    )


class TestRecentMap:
    def test_put_and_get(self):
        recent = RecentMap()
        recent.put(5, 500)
        assert recent.get(5) == 500
        assert recent.get(6) is None
        assert recent.get(None) is None

    def test_bound_never_exceeded(self):
        recent = RecentMap(capacity=100)
        for post_id in range(1, 251):
            recent.put(post_id, post_id * 10)
            assert len(recent) <= 100
        assert len(recent) == 100

    def test_evicts_smallest_ids_first(self):
        recent = RecentMap(capacity=3)
        for post_id in (30, 10, 20, 40):
            recent.put(post_id, post_id)
        assert [p for p, _ in recent.items()] == [20, 30, 40]
        assert 10 not in recent

    def test_inserting_an_old_id_into_full_cache_drops_it(self):
        recent = RecentMap(capacity=2)
        recent.put(100, 1)
        recent.put(200, 2)
        recent.put(50, 3)
        assert 50 not in recent
        assert len(recent) == 2

    def test_reverse_lookup(self):
        recent = RecentMap()
        recent.put(7, 700)
        assert recent.post_for_message(700) == 7
        assert recent.post_for_message(701) is None

    def test_dict_round_trip_through_json_keys(self):
        recent = RecentMap(entries={"3": 30, "1": 10})
        assert recent.to_dict() == {"1": 10, "3": 30}
        assert recent.get(3) == 30

    def test_loading_more_than_capacity_trims(self):
        recent = RecentMap(capacity=2, entries={"1": 1, "2": 2, "3": 3})
        assert [p for p, _ in recent.items()] == [2, 3]


class TestSession:
    def test_cursor_is_monotonic(self):
        session = _session()
        session.advance_cursor(10)
        session.advance_cursor(5)
        assert session.cursor_id == 10
        session.advance_cursor(11)
        assert session.cursor_id == 11

    def test_changes_mark_dirty(self):
        session = _session()
        assert not session.dirty
        session.remember(1, 2)
        assert session.dirty

    def test_record_round_trip(self):
        session = _session(display_name="Alice", cursor_id=42)
        session.remember(41, 4100)
        restored = Session.from_record(session.to_record())
        assert restored.subscriber_id == 10
        assert restored.credentials == session.credentials
        assert restored.display_name == "Alice"
        assert restored.cursor_id == 42
        assert restored.recent.get(41) == 4100
        assert restored.poll_task is None
        assert restored.state is SessionState.ACTIVE

    def test_record_without_cursor(self):
        record = _session().to_record()
        assert record["cursor_id"] is None
        assert Session.from_record(record).cursor_id is None

    def test_label(self):
        assert _session().label == "chat 10 (@alice)"


class TestSessionRegistry:
    def test_create_get_remove(self):
        registry = SessionRegistry()
        session = registry.create(_session())
        assert registry.get(10) is session
        assert 10 in registry
        assert len(registry) == 1

        assert registry.remove(10) is session
        assert registry.get(10) is None
        assert session.state is SessionState.TERMINATED

    def test_duplicate_rejected(self):
        registry = SessionRegistry()
        registry.create(_session())
        with pytest.raises(ValueError):
            registry.create(_session())

    def test_is_current_detects_replacement(self):
        registry = SessionRegistry()
        old = registry.create(_session())
        registry.remove(10)
        new = registry.create(_session())
        assert registry.is_current(new)
        assert not registry.is_current(old)

    def test_remove_missing(self):
        assert SessionRegistry().remove(99) is None

    def test_iteration_is_a_snapshot(self):
        registry = SessionRegistry()
        registry.create(_session(1))
        registry.create(_session(2))
        for session in registry:
            registry.remove(session.subscriber_id)
        assert len(registry) == 0
