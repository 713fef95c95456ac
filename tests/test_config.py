"""Tests for settings loading."""

import os

import pytest
from pydantic import ValidationError

from feedrelay.config import FeedRelaySettings, load_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    # no stray .env or FEEDRELAY_* variables from the developer's shell
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("FEEDRELAY_"):
            monkeypatch.delenv(key)


class TestSettings:
    def test_defaults(self):
        settings = FeedRelaySettings()
        assert settings.poll_interval == 60
        assert settings.bootstrap_count == 20
        assert settings.fetch_limit == 200
        assert settings.recent_map_size == 100
        assert settings.max_nesting_depth == 2
        assert settings.max_post_attempts == 3
        assert settings.callback_port == 8080
        assert settings.console is True

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("FEEDRELAY_TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.setenv("FEEDRELAY_POLL_INTERVAL", "30")
        monkeypatch.setenv("FEEDRELAY_CONSOLE", "false")
        settings = load_settings()
        assert settings.telegram_bot_token == "123:abc"
        assert settings.poll_interval == 30
        assert settings.console is False

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("FEEDRELAY_BOT_USERNAME=feed_bot\n")
        assert FeedRelaySettings().bot_username == "feed_bot"

    def test_rejects_non_positive_interval(self, monkeypatch):
        monkeypatch.setenv("FEEDRELAY_POLL_INTERVAL", "0")
        with pytest.raises(ValidationError):
            FeedRelaySettings()

    def test_rejects_zero_cache(self, monkeypatch):
        monkeypatch.setenv("FEEDRELAY_RECENT_MAP_SIZE", "0")
        with pytest.raises(ValidationError):
            FeedRelaySettings()
