"""Operator console — broadcast lines typed on stdin to every subscriber.

Each non-empty line is sent verbatim (HTML parse mode, so the operator is
responsible for escaping). Ctrl+D closes the console and leaves the relay
running; Ctrl+C closes it and asks the process to stop.
"""

import asyncio
import logging
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console

logger = logging.getLogger("feedrelay.console")

console = Console()


async def _get_input(session: PromptSession) -> Optional[str]:
    try:
        return await session.prompt_async("broadcast> ")
    except EOFError:
        return None


async def run_console(relay, stop_event: Optional[asyncio.Event] = None, prompt: Optional[PromptSession] = None):
    """Read broadcast lines until EOF.

    Args:
        relay: Relay whose ``broadcast`` receives each line.
        stop_event: Set on Ctrl+C so the process shuts down.
        prompt: PromptSession to read from (a fresh one by default).
    """
    prompt = prompt or PromptSession()
    console.print("[dim]Type a message to broadcast to all subscribers. Ctrl+D closes the console.[/dim]")

    with patch_stdout():
        while True:
            try:
                line = await _get_input(prompt)
            except KeyboardInterrupt:
                if stop_event is not None:
                    stop_event.set()
                break

            if line is None:
                console.print("[dim]Console closed; relay keeps running.[/dim]")
                break

            if not line.strip():
                continue

            delivered, failed = await relay.broadcast(line)
            style = "green" if not failed else "yellow"
            console.print(f"[{style}]Broadcast sent to {delivered} chats, {failed} failed.[/{style}]")
