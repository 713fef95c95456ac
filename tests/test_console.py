"""Tests for the operator broadcast console."""

import asyncio
import contextlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from feedrelay.console import run_console


def _prompt(*inputs):
    """PromptSession stand-in yielding ``inputs``; exceptions are raised."""
    prompt = MagicMock()
    prompt.prompt_async = AsyncMock(side_effect=list(inputs))
    return prompt


@pytest.fixture(autouse=True)
def no_stdout_patch():
    with patch("feedrelay.console.patch_stdout", contextlib.nullcontext):
        yield


class TestRunConsole:
    @pytest.mark.asyncio
    async def test_broadcasts_lines_until_eof(self):
        relay = MagicMock()
        relay.broadcast = AsyncMock(return_value=(2, 0))
        stop = asyncio.Event()

        await run_console(relay, stop, _prompt("hello all", "   ", "<b>bye</b>", EOFError()))

        assert [c.args[0] for c in relay.broadcast.await_args_list] == ["hello all", "<b>bye</b>"]
        assert not stop.is_set()

    @pytest.mark.asyncio
    async def test_ctrl_c_requests_stop(self):
        relay = MagicMock()
        relay.broadcast = AsyncMock()
        stop = asyncio.Event()

        await run_console(relay, stop, _prompt(KeyboardInterrupt()))

        assert stop.is_set()
        relay.broadcast.assert_not_awaited()
