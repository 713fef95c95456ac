"""Tests for classify_error()."""

import asyncio

from feedrelay.errors import (
    AuthorizationError,
    PermanentDeliveryError,
    PermanentFetchError,
    PostingError,
    RenderError,
    TransientDeliveryError,
    TransientFetchError,
    classify_error,
)


class TestRelayErrors:
    def test_posting_error_with_code(self):
        assert classify_error(PostingError("Status is a duplicate.", 187)) == "[187] Status is a duplicate."

    def test_posting_error_without_code(self):
        assert classify_error(PostingError("nope")) == "nope"

    def test_revoked(self):
        assert "/start" in classify_error(PermanentFetchError("401"))
        assert "/start" in classify_error(PermanentDeliveryError("blocked"))

    def test_rate_limit(self):
        assert "Rate limited" in classify_error(TransientFetchError("Rate limited (429): 429 Too Many Requests"))

    def test_transient_network(self):
        assert "Temporary" in classify_error(TransientDeliveryError("NetworkError: reset"))

    def test_authorization(self):
        assert classify_error(AuthorizationError("request token: 401")).startswith("Authorization failed")

    def test_render(self):
        assert "formatted" in classify_error(RenderError("bad"))


class TestStdlibErrors:
    def test_timeout(self):
        assert "timed out" in classify_error(asyncio.TimeoutError())
        assert "timed out" in classify_error(TimeoutError())

    def test_connection(self):
        assert "Cannot reach" in classify_error(ConnectionRefusedError())

    def test_fallback_names_type(self):
        msg = classify_error(ZeroDivisionError("x"))
        assert "ZeroDivisionError" in msg
