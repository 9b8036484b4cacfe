"""Ephemeral loopback HTTP server that captures the OAuth redirect.

One CallbackServer lives for exactly one login attempt:

    Idle -> start() -> Listening -> Completed | Failed | Cancelled

Each request is handled on its own daemon thread and writes its outcome into a
one-shot slot; ``wait_for_code()`` on the caller's thread is the only
reader. Whatever the outcome, the listening socket is closed before
``wait_for_code()`` returns.

Security considerations:
- Binds to 127.0.0.1 only
- Optional state parameter check for CSRF protection
- Authorization codes are never logged
"""

from __future__ import annotations

import errno
import html
import logging
import os
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer, ThreadingHTTPServer
from types import TracebackType
from urllib.parse import parse_qs, urlparse

from nylas_cli.domain.models import DEFAULT_CALLBACK_PORT
from nylas_cli.utils.errors import (
    AuthenticationError,
    AuthTimeoutError,
    PortInUseError,
)

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"
LOOPBACK_HOST = "127.0.0.1"

# serve_forever() poll interval; bounds how long stop() takes
_POLL_INTERVAL = 0.02
# Granularity of the cancellation check in wait_for_code()
_WAIT_SLICE = 0.05
# Idle connections (browser pre-connects) are dropped after this many seconds
_REQUEST_TIMEOUT = 5.0

_SUCCESS_PAGE = (
    b"<html><body><h1>Authentication Successful!</h1>"
    b"<p>You can close this window and return to the terminal.</p>"
    b"</body></html>"
)


def _failure_page(message: str) -> bytes:
    return (
        "<html><body><h1>Authentication Failed</h1>"
        f"<p>{html.escape(message)}</p>"
        "<p>You can close this window and return to the terminal.</p>"
        "</body></html>"
    ).encode("utf-8")


class _LoopbackHTTPServer(ThreadingHTTPServer):
    # Each connection gets its own thread so a silent socket cannot block
    # the accept loop or shutdown()
    daemon_threads = True
    block_on_close = False
    # SO_REUSEADDR on Windows would let a second listener share the port
    allow_reuse_address = os.name != "nt"


class CallbackServer:
    """Single-use OAuth redirect listener.

    Example:
        >>> with CallbackServer(port=8080) as server:
        ...     print(server.redirect_uri)
        ...     code = server.wait_for_code(timeout=300)
        http://127.0.0.1:8080/callback
    """

    def __init__(
        self,
        port: int = DEFAULT_CALLBACK_PORT,
        host: str = LOOPBACK_HOST,
        path: str = CALLBACK_PATH,
        expected_state: str | None = None,
    ) -> None:
        """Initialize an idle callback server.

        Args:
            port: Port to bind. 0 binds an ephemeral port.
            host: Interface to bind; loopback by default.
            path: Request path the provider redirects to.
            expected_state: If set, callbacks must carry this ``state``.
        """
        self._host = host
        self._port = port
        self._path = path
        self._expected_state = expected_state

        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._started = False

        self._done = threading.Event()
        self._result_lock = threading.Lock()
        self._code: str | None = None
        self._error: AuthenticationError | None = None

    @property
    def port(self) -> int:
        """The bound port once started, else the requested one."""
        return self._port

    @property
    def redirect_uri(self) -> str:
        """Redirect URI to register with the OAuth provider."""
        return f"http://{self._host}:{self._port}{self._path}"

    def start(self) -> None:
        """Bind the socket and start serving on a background thread.

        Raises:
            PortInUseError: If the port is already bound.
            AuthenticationError: If the server was already used, or the
                socket cannot be bound for another reason.
        """
        if self._started:
            raise AuthenticationError(
                "Callback server instances are single use",
                details={"hint": "Create a new CallbackServer per login attempt"},
            )
        self._started = True

        try:
            server = _LoopbackHTTPServer((self._host, self._port), self._make_handler())
        except OSError as e:
            if e.errno == errno.EADDRINUSE or "Address already in use" in str(e):
                logger.debug("OAuth callback port %d is in use", self._port)
                raise PortInUseError(
                    f"Port {self._port} is already in use", port=self._port
                ) from e
            raise AuthenticationError(
                f"Could not start OAuth callback server: {e}",
                details={"port": self._port, "error_type": type(e).__name__},
            ) from e

        self._server = server
        self._port = server.server_address[1]
        self._thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": _POLL_INTERVAL},
            name="oauth-callback",
            daemon=True,
        )
        self._thread.start()
        logger.debug("OAuth callback server listening on %s", self.redirect_uri)

    def stop(self) -> None:
        """Shut the listener down and close the socket. Safe to call twice."""
        server, self._server = self._server, None
        if server is None:
            return

        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=1)
        logger.debug("OAuth callback server on port %d stopped", self._port)

    def wait_for_code(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Block until the provider redirects back, then stop the server.

        Args:
            timeout: Seconds to wait. None waits until cancelled.
            cancel_event: Set from another thread to abandon the wait.

        Returns:
            The authorization code.

        Raises:
            AuthenticationError: If the provider reported an error or the
                callback was malformed.
            AuthTimeoutError: If the timeout elapsed or the wait was cancelled.
        """
        if not self._started:
            raise AuthenticationError("Callback server was not started")

        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            while not self._done.wait(self._wait_slice(deadline)):
                if cancel_event is not None and cancel_event.is_set():
                    raise AuthTimeoutError(
                        "Login cancelled while waiting for the OAuth callback"
                    )
                if deadline is not None and time.monotonic() >= deadline:
                    raise AuthTimeoutError(
                        f"Timed out after {timeout:g}s waiting for the OAuth callback",
                        details={"timeout_seconds": timeout},
                    )
        finally:
            self.stop()

        if self._error is not None:
            raise self._error
        if self._code is None:
            raise AuthenticationError(
                "OAuth callback completed without an authorization code"
            )
        return self._code

    @staticmethod
    def _wait_slice(deadline: float | None) -> float:
        if deadline is None:
            return _WAIT_SLICE
        return max(0.0, min(_WAIT_SLICE, deadline - time.monotonic()))

    def _deliver(self, code: str | None, error: AuthenticationError | None) -> None:
        # Only the first callback counts; later hits (refreshes, retries) are ignored
        with self._result_lock:
            if self._done.is_set():
                logger.debug("Ignoring repeated OAuth callback")
                return
            self._code = code
            self._error = error
            self._done.set()

    def _interpret(self, params: dict[str, list[str]]) -> tuple[str | None, AuthenticationError | None]:
        if "error" in params:
            oauth_error = params["error"][0]
            description = params.get("error_description", [""])[0]
            message = f"OAuth error: {oauth_error}"
            if description:
                message += f" - {description}"
            return None, AuthenticationError(
                message,
                details={"oauth_error": oauth_error, "error_description": description},
            )

        if self._expected_state is not None:
            returned_state = params.get("state", [None])[0]
            if returned_state != self._expected_state:
                return None, AuthenticationError(
                    "State mismatch - possible CSRF attack",
                    details={"hint": "Request may have been tampered with"},
                )

        code = params.get("code", [None])[0]
        if not code:
            return None, AuthenticationError(
                "No authorization code received",
                details={"params": sorted(params.keys())},
            )
        return code, None

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        callback = self

        class CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for the OAuth redirect."""

            timeout = _REQUEST_TIMEOUT

            def do_GET(handler_self) -> None:  # noqa: N802, N805
                parsed = urlparse(handler_self.path)
                if parsed.path != callback._path:
                    handler_self.send_response(404)
                    handler_self.send_header("Content-Length", "0")
                    handler_self.end_headers()
                    return

                code, error = callback._interpret(parse_qs(parsed.query))
                body = _SUCCESS_PAGE if error is None else _failure_page(error.message)

                # Respond before signalling so shutdown never races the write
                handler_self.send_response(200)
                handler_self.send_header("Content-Type", "text/html; charset=utf-8")
                handler_self.send_header("Content-Length", str(len(body)))
                handler_self.send_header("Connection", "close")
                handler_self.end_headers()
                handler_self.wfile.write(body)
                handler_self.wfile.flush()

                callback._deliver(code, error)

            def log_message(handler_self, format: str, *args: object) -> None:  # noqa: N805
                # Request lines carry the authorization code; log the path only
                path = urlparse(getattr(handler_self, "path", "") or "").path
                logger.debug(
                    "OAuth callback server: %s %s",
                    getattr(handler_self, "command", None),
                    path,
                )

        return CallbackHandler

    def __enter__(self) -> CallbackServer:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()


__all__ = [
    "CALLBACK_PATH",
    "LOOPBACK_HOST",
    "CallbackServer",
]
