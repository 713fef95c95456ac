"""OAuth callback server.

Twitter redirects the subscriber's browser here after sign-in with
``?oauth_token=...&oauth_verifier=...`` (or ``?denied=...``). The server runs
``http.server`` in a daemon thread; each request is handed to the relay on
the event loop with ``run_coroutine_threadsafe`` and the thread blocks until
the exchange is done.

Responses:
  - missing parameters      → 400
  - success                 → 302 to https://t.me/<bot_username>
  - denied / failed / stale → 200 "Error fetching OAuth token."
"""

import asyncio
import logging
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from threading import Thread
from typing import Optional
from urllib.parse import parse_qs, urlparse

from .errors import RelayError

logger = logging.getLogger("feedrelay.callback")

FAILURE_BODY = "Error fetching OAuth token."
EXCHANGE_TIMEOUT = 60.0


@dataclass
class CallbackResponse:
    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


def _first(params: dict, name: str) -> Optional[str]:
    values = params.get(name)
    return values[0] if values else None


async def process_callback(relay, params: dict, bot_username: str) -> CallbackResponse:
    """Complete (or cancel) a pending sign-in from callback query parameters.

    Args:
        relay: Relay owning the pending authorizations.
        params: Parsed query string (``parse_qs`` shape: name → list of values).
        bot_username: Bot to redirect the browser back to on success.
    """
    denied = _first(params, "denied")
    if denied:
        relay.cancel_authorization(denied)
        return CallbackResponse(200, FAILURE_BODY)

    token = _first(params, "oauth_token")
    verifier = _first(params, "oauth_verifier")
    if not token or not verifier:
        return CallbackResponse(400, "Missing oauth_token or oauth_verifier.")

    try:
        session = await relay.complete_authorization(token, verifier)
    except RelayError as e:
        logger.warning(f"OAuth callback failed: {e}")
        return CallbackResponse(200, FAILURE_BODY)

    logger.info(f"Sign-in completed for {session.label}")
    return CallbackResponse(302, headers={"Location": f"https://t.me/{bot_username}"})


def _make_handler(relay, loop: asyncio.AbstractEventLoop, bot_username: str, path: str):
    class _CallbackHandler(BaseHTTPRequestHandler):
        """HTTP handler for the Twitter OAuth callback."""

        def do_GET(self):
            parsed = urlparse(self.path)
            if parsed.path.rstrip("/") != path.rstrip("/"):
                self.send_response(404)
                self.end_headers()
                return

            params = parse_qs(parsed.query)
            future = asyncio.run_coroutine_threadsafe(
                process_callback(relay, params, bot_username), loop
            )
            try:
                response = future.result(timeout=EXCHANGE_TIMEOUT)
            except Exception as e:
                logger.error(f"OAuth callback crashed: {e}", exc_info=True)
                future.cancel()
                response = CallbackResponse(200, FAILURE_BODY)
            self._write(response)

        def _write(self, response: CallbackResponse):
            self.send_response(response.status)
            for name, value in response.headers.items():
                self.send_header(name, value)
            body = response.body.encode()
            if body:
                self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            logger.debug(f"{self.address_string()} {format % args}")

    return _CallbackHandler


class CallbackServer:
    """Background HTTP server for OAuth redirects."""

    def __init__(self, relay, bot_username: str, host: str = "0.0.0.0", port: int = 8080, path: str = "/"):
        self.relay = relay
        self.bot_username = bot_username
        self.host = host
        self.port = port
        self.path = path or "/"
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[Thread] = None

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Bind and serve in a daemon thread. Must be given (or run on) the relay's loop."""
        loop = loop or asyncio.get_running_loop()
        handler = _make_handler(self.relay, loop, self.bot_username, self.path)
        self._server = ThreadingHTTPServer((self.host, self.port), handler)
        # port 0 binds an ephemeral port
        self.port = self._server.server_address[1]
        self._thread = Thread(target=self._server.serve_forever, daemon=True, name="oauth-callback")
        self._thread.start()
        logger.info(f"OAuth callback server listening on {self.host}:{self.port}{self.path}")

    def stop(self):
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        logger.info("OAuth callback server stopped.")
