"""Loopback OAuth2 authorization-code exchange.

Used once to bootstrap the service identity (obtain the first refresh token)
and whenever that refresh token has to be replaced.

Flow:
    1. Bind a short-lived HTTP listener on the port of the redirect URI
       (retried a few times with a fixed backoff).
    2. Open the authorization URL in the default browser. There is no
       feedback channel: success is only ever observed through the callback.
    3. Serve the listener in one-second slices until a ``code`` arrives,
       an ``error`` arrives, or the timeout elapses. Every request receives a
       small HTML page before its connection is closed; a connection that
       sends nothing within one slice is dropped.
    4. Exchange the code at the token endpoint and hand the raw JSON back.

The listener is released on every exit path. Only one authorization may be
in flight per port within this process; a second one fails immediately.
"""

import html
import logging
import threading
import time
import webbrowser
from contextlib import contextmanager
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Iterator, Optional, Set
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from ..config_manager import AuthConfig, PollingConfig
from ..exceptions import (
    AuthorizationDeniedError,
    AuthorizationTimeoutError,
    ListenerBindError,
    RemoteRequestError,
)
from ..retry_policy import RetryPolicy
from ..services.directory_client import parse_remote_error
from ..timeout_config import Timeouts, http_timeout, log_timeout_event

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8400
MIN_CODE_LENGTH = 10
POLL_SLICE_SECONDS = 1.0

_PAGE = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>{title}</title></head>
<body><h3>{title}</h3><p>{message}</p></body></html>
"""

_ports_in_use: Set[int] = set()
_ports_lock = threading.Lock()


@dataclass
class CallbackResult:
    """What the browser delivered to the callback listener."""

    code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def received(self) -> bool:
        return bool(self.code or self.error)


def build_authorization_url(
    authorize_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: Optional[str] = None,
) -> str:
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "response_mode": "query",
        "scope": scope,
        "prompt": "consent",
    }
    if state:
        params["state"] = state
    return f"{authorize_endpoint}?{urlencode(params)}"


def classify_callback(query: Dict[str, list]) -> CallbackResult:
    """Interpret callback query parameters.

    A ``code`` shorter than ``MIN_CODE_LENGTH`` is not plausible and is ignored.
    """
    error = (query.get("error") or [None])[0]
    if error:
        return CallbackResult(
            error=error, error_description=(query.get("error_description") or [None])[0]
        )
    code = (query.get("code") or [None])[0]
    if code and len(code) >= MIN_CODE_LENGTH:
        return CallbackResult(code=code)
    return CallbackResult()


class _CallbackHandler(BaseHTTPRequestHandler):
    """Answers every request with a small HTML page and records the outcome."""

    server: "_CallbackServer"
    # bounds reads on an accepted connection; an idle socket is dropped after one slice
    timeout = POLL_SLICE_SECONDS

    def do_GET(self) -> None:  # noqa: N802
        query = parse_qs(urlparse(self.path).query)
        result = classify_callback(query)

        if result.code:
            title, message = "Authorization complete", "You can close this window."
        elif result.error:
            title = "Authorization failed"
            message = html.escape(result.error_description or result.error)
        else:
            title, message = "Waiting for authorization", "No authorization code in this request."

        body = _PAGE.format(title=title, message=message).encode("utf-8")
        self.send_response(200 if not result.error else 400)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)
        self.close_connection = True

        if result.received and not self.server.result.received:
            self.server.result = result

    def log_message(self, format: str, *args: Any) -> None:
        # query strings carry the authorization code; keep them out of the log
        logger.debug(f"Callback request from {self.client_address[0]}")


class _CallbackServer(HTTPServer):
    allow_reuse_address = True

    def __init__(self, address: tuple) -> None:
        super().__init__(address, _CallbackHandler)
        self.result = CallbackResult()
        self.timeout = POLL_SLICE_SECONDS

    def handle_error(self, request: Any, client_address: tuple) -> None:
        logger.debug(f"Dropped callback connection from {client_address[0]}", exc_info=True)


class LoopbackAuthExchanger:
    """Drives the browser-based authorization-code flow through a local listener."""

    def __init__(
        self,
        auth_config: Optional[AuthConfig] = None,
        polling: Optional[PollingConfig] = None,
        session: Optional[requests.Session] = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
        bind_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.auth_config = auth_config or AuthConfig()
        polling = polling or PollingConfig()
        self.session = session or requests.Session()
        self.open_browser = open_browser
        self.bind_policy = bind_policy or RetryPolicy.fixed(
            polling.listener_bind_delay, max_attempts=polling.listener_bind_attempts
        )
        self.clock = clock

    def authorize(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        redirect_uri: Optional[str] = None,
        scope: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Run the full loopback exchange and return the raw token response.

        Raises:
            ListenerBindError: Port unavailable after retries, or already in use here
            AuthorizationDeniedError: Callback carried ``error``
            AuthorizationTimeoutError: No callback before ``timeout``
            RemoteRequestError: Token endpoint rejected the code
        """
        redirect_uri = redirect_uri or self.auth_config.redirect_uri
        scope = scope or self.auth_config.auth_scope
        timeout = Timeouts.AUTHORIZATION if timeout is None else timeout
        host, port = self._listener_address(redirect_uri)

        url = build_authorization_url(
            self.auth_config.authorize_endpoint(tenant_id),
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
        )

        with self._listener(host, port) as server:
            logger.info(f"Listening for the authorization callback on {redirect_uri}")
            logger.info(f"If no browser opens, visit: {url}")
            self.open_browser(url)
            result = self._wait_for_callback(server, timeout)

        if result.error:
            raise AuthorizationDeniedError(result.error, result.error_description)

        logger.info("Authorization code received, exchanging for tokens")
        return self.exchange_code(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
            code=result.code,
            redirect_uri=redirect_uri,
            scope=scope,
        )

    def exchange_code(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str,
        scope: str,
    ) -> Dict[str, Any]:
        """POST ``grant_type=authorization_code``; the response is returned untouched."""
        url = self.auth_config.token_endpoint(tenant_id)
        try:
            response = self.session.post(
                url,
                data={
                    "grant_type": "authorization_code",
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "scope": scope,
                },
                timeout=http_timeout(),
            )
        except requests.RequestException as e:
            raise RemoteRequestError(
                "Token endpoint unreachable", method="POST", url=url, cause=e
            ) from e

        if not response.ok:
            remote_code, remote_message = parse_remote_error(response)
            raise RemoteRequestError(
                f"Authorization code exchange failed with {response.status_code}",
                status_code=response.status_code,
                remote_code=remote_code,
                remote_message=remote_message,
                method="POST",
                url=url,
            )
        return response.json()

    @staticmethod
    def _listener_address(redirect_uri: str) -> tuple:
        parsed = urlparse(redirect_uri)
        host = parsed.hostname or "localhost"
        port = parsed.port or DEFAULT_PORT
        return host, port

    @contextmanager
    def _listener(self, host: str, port: int) -> Iterator[_CallbackServer]:
        with _ports_lock:
            if port in _ports_in_use:
                raise ListenerBindError(
                    f"An authorization is already waiting on port {port}", port=port
                )
            _ports_in_use.add(port)

        server: Optional[_CallbackServer] = None
        try:
            try:
                server = self.bind_policy.call(
                    lambda: _CallbackServer((host, port)),
                    retry_on=(OSError,),
                    description=f"Binding callback listener on port {port}",
                )
            except OSError as e:
                raise ListenerBindError(
                    f"Could not bind callback listener on {host}:{port}",
                    port=port,
                    cause=e,
                ) from e
            yield server
        finally:
            if server is not None:
                server.server_close()
                logger.debug(f"Callback listener on port {port} released")
            with _ports_lock:
                _ports_in_use.discard(port)

    def _wait_for_callback(self, server: _CallbackServer, timeout: float) -> CallbackResult:
        deadline = self.clock() + timeout
        while not server.result.received:
            remaining = deadline - self.clock()
            if remaining <= 0:
                log_timeout_event("loopback authorization", timeout)
                raise AuthorizationTimeoutError(timeout)
            server.timeout = min(POLL_SLICE_SECONDS, remaining)
            server.handle_request()
        return server.result
