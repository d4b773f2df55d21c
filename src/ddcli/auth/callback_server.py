"""Loopback HTTP server that receives the OAuth authorization redirect.

The server binds ``127.0.0.1`` on the first free port of the set registered
through Dynamic Client Registration; binding any other port would make the
authorization server reject the redirect URI. It runs
:class:`http.server.HTTPServer` on a daemon thread and keeps the first
request to the callback path in a single-slot buffer. The async
:meth:`CallbackServer.wait_for_callback` waits on a :class:`threading.Event`
set by the handler, so the HTTP response is written independently of
result delivery. :meth:`CallbackServer.stop` also sets the event, which
releases a waiter that was cancelled.

Lifecycle::

    UNSTARTED -> LISTENING -> (CALLBACK_RECEIVED | TIMED_OUT) -> STOPPED
"""

from __future__ import annotations

import asyncio
import html
import logging
import threading
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Iterable, Optional
from urllib.parse import parse_qs, urlparse

from ddcli.auth.dcr import CALLBACK_HOST, CALLBACK_PATH, DCR_REDIRECT_PORTS
from ddcli.auth.oauth_client import DEFAULT_OAUTH_TIMEOUT
from ddcli.exceptions import (
    CallbackError,
    CallbackPortUnavailableError,
    CallbackStateMismatchError,
    CallbackTimeoutError,
)
from ddcli.models import CallbackResult

logger = logging.getLogger(__name__)

_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title>
<style>
  body {{ font-family: -apple-system, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
         display: flex; justify-content: center; align-items: center;
         height: 100vh; margin: 0; background: {background}; }}
  .box {{ text-align: center; padding: 40px; background: white; border-radius: 12px;
          box-shadow: 0 4px 20px rgba(0, 0, 0, 0.2); max-width: 420px; }}
  h1 {{ color: #333; font-size: 24px; margin: 0 0 10px; }}
  p {{ color: #666; margin: 0 0 10px; }}
  code {{ font-family: Monaco, Consolas, monospace; font-size: 12px; color: #d32f2f; }}
</style></head>
<body><div class="box"><h1>{title}</h1>{body}</div></body>
</html>
"""


def _success_page() -> bytes:
    return _PAGE.format(
        title="Authorization Successful",
        background="#632ca6",
        body="<p>You can close this window and return to the terminal.</p>",
    ).encode("utf-8")


def _error_page(error: str, description: Optional[str]) -> bytes:
    details = html.escape(error)
    if description:
        details += "<br>" + html.escape(description)
    return _PAGE.format(
        title="Authorization Failed",
        background="#e0474c",
        body=(
            "<p>Please try again or check the terminal for details.</p>"
            f"<p><code>Error: {details}</code></p>"
        ),
    ).encode("utf-8")


class CallbackServerState(str, Enum):
    UNSTARTED = "unstarted"
    LISTENING = "listening"
    CALLBACK_RECEIVED = "callback_received"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"


class _CallbackHTTPServer(HTTPServer):
    owner: "CallbackServer"


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackHTTPServer

    def do_GET(self) -> None:
        owner = self.server.owner
        parsed = urlparse(self.path)
        if parsed.path != owner.callback_path:
            self._respond(404, b"Not Found", "text/plain; charset=utf-8")
            return

        params = parse_qs(parsed.query)
        result = CallbackResult(
            code=_first(params, "code"),
            state=_first(params, "state"),
            error=_first(params, "error"),
            error_description=_first(params, "error_description"),
        )
        owner._deliver(result)

        if result.error:
            body = _error_page(result.error, result.error_description)
        else:
            body = _success_page()
        self._respond(200, body, "text/html; charset=utf-8")

    def _respond(self, status: int, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("callback server: " + format, *args)


def _first(params: dict[str, list[str]], name: str) -> Optional[str]:
    values = params.get(name)
    return values[0] if values else None


class CallbackServer:
    """Receives exactly one authorization redirect.

    Args:
        ports: Candidate ports, tried in order. Defaults to the ports
            registered through Dynamic Client Registration.
        callback_path: The only path that is answered with a page.
        timeout: Seconds :meth:`wait_for_callback` waits by default.

    Example::

        server = CallbackServer()
        server.start(expected_state=state)
        redirect_uri = server.get_redirect_uri()
        ...  # send the user to the authorization URL
        result = await server.wait_for_callback()
    """

    def __init__(
        self,
        ports: Iterable[int] = DCR_REDIRECT_PORTS,
        callback_path: str = CALLBACK_PATH,
        timeout: float = DEFAULT_OAUTH_TIMEOUT,
        host: str = CALLBACK_HOST,
    ) -> None:
        self.ports = tuple(ports)
        self.callback_path = callback_path
        self.timeout = timeout
        self.host = host

        self._state = CallbackServerState.UNSTARTED
        self._expected_state = ""
        self._port: Optional[int] = None
        self._httpd: Optional[_CallbackHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._received = threading.Event()
        self._result: Optional[CallbackResult] = None

    @property
    def state(self) -> CallbackServerState:
        return self._state

    @property
    def port(self) -> Optional[int]:
        return self._port

    def start(self, expected_state: str) -> int:
        """Bind the first free registered port and start serving.

        Returns:
            The bound port.

        Raises:
            CallbackError: If the server was already started.
            CallbackPortUnavailableError: If every candidate port is taken.
        """
        if self._state is not CallbackServerState.UNSTARTED:
            raise CallbackError(f"Callback server cannot be started from state {self._state.value}.")

        self._expected_state = expected_state
        self._httpd = self._bind()
        self._httpd.owner = self
        self._port = self._httpd.server_address[1]

        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            kwargs={"poll_interval": 0.1},
            name="oauth-callback-server",
            daemon=True,
        )
        self._thread.start()
        self._state = CallbackServerState.LISTENING
        logger.debug("Callback server listening on %s", self.get_redirect_uri())
        return self._port

    def get_redirect_uri(self) -> str:
        if self._port is None:
            raise CallbackError("Callback server has not been started.")
        return f"http://{self.host}:{self._port}{self.callback_path}"

    async def wait_for_callback(self, timeout: Optional[float] = None) -> CallbackResult:
        """Wait for the redirect and validate its ``state``.

        The server is stopped before this returns or raises.

        Raises:
            CallbackTimeoutError: No redirect arrived within *timeout*
                seconds (default: the constructor's ``timeout``).
            CallbackStateMismatchError: The redirect's ``state`` differs
                from the expected one.
        """
        if self._state is CallbackServerState.UNSTARTED:
            raise CallbackError("Callback server has not been started.")

        wait_seconds = self.timeout if timeout is None else timeout
        try:
            arrived = await asyncio.to_thread(self._received.wait, wait_seconds)
            if not arrived:
                self._state = CallbackServerState.TIMED_OUT
                raise CallbackTimeoutError(
                    f"Timed out after {wait_seconds:g}s waiting for the browser "
                    'authorization. Run "ddcli auth login" to try again.'
                )
            with self._lock:
                result = self._result
            if result is None:
                raise CallbackError("Callback server stopped before the browser redirect arrived.")
            if result.state != self._expected_state:
                raise CallbackStateMismatchError(
                    "Invalid state parameter in the OAuth callback. This may be a "
                    'CSRF attempt. Run "ddcli auth login" to try again.'
                )
            return result
        finally:
            self.stop()

    def stop(self) -> None:
        """Shut the server down. Safe to call more than once."""
        httpd, self._httpd = self._httpd, None
        if httpd is not None:
            httpd.shutdown()
            httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        self._received.set()
        if self._state is not CallbackServerState.STOPPED:
            logger.debug("Callback server stopped (was %s)", self._state.value)
        self._state = CallbackServerState.STOPPED

    def _deliver(self, result: CallbackResult) -> bool:
        """Buffer *result* unless one is already held. Called on the server thread."""
        with self._lock:
            if self._result is not None:
                return False
            self._result = result
            if self._state is CallbackServerState.LISTENING:
                self._state = CallbackServerState.CALLBACK_RECEIVED
        self._received.set()
        return True

    def _bind(self) -> _CallbackHTTPServer:
        for port in self.ports:
            try:
                return _CallbackHTTPServer((self.host, port), _CallbackHandler)
            except OSError as exc:
                logger.debug("Port %d unavailable: %s", port, exc)
        raise CallbackPortUnavailableError(list(self.ports))
