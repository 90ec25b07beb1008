"""
Tests for the loopback authorization-code exchange.

These open real listeners on free local ports; the "browser" is a thread that
calls the callback URL the way the identity platform redirect would.
"""

import socket
import threading
import time
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from delegated_admin.auth.loopback import (
    LoopbackAuthExchanger,
    build_authorization_url,
    classify_callback,
)
from delegated_admin.exceptions import (
    AuthorizationDeniedError,
    AuthorizationTimeoutError,
    ListenerBindError,
    RemoteRequestError,
)
from delegated_admin.retry_policy import RetryPolicy
from tests.conftest import make_response

pytestmark = pytest.mark.integration

TENANT = "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"
CODE = "0.AUTHCODE-abcdefghijklmnop"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def hit_callback(port: int, query: str) -> None:
    session = requests.Session()
    session.trust_env = False
    session.get(f"http://127.0.0.1:{port}/?{query}", timeout=5)


class FakeBrowser:
    """Records the authorization URL and answers with a callback request."""

    def __init__(self, port: int, query: str = f"code={CODE}") -> None:
        self.port = port
        self.query = query
        self.opened = []

    def __call__(self, url: str) -> bool:
        self.opened.append(url)
        if self.query is not None:
            threading.Thread(
                target=hit_callback, args=(self.port, self.query), daemon=True
            ).start()
        return True


class IdleBrowser(FakeBrowser):
    """Opens a connection that never sends a request before the real callback."""

    def __init__(self, port: int, query=None) -> None:
        super().__init__(port, query)
        self.idle = []

    def __call__(self, url: str) -> bool:
        self.idle.append(socket.create_connection(("127.0.0.1", self.port)))
        return super().__call__(url)

    def close(self) -> None:
        for sock in self.idle:
            sock.close()


@pytest.fixture
def port():
    return free_port()


@pytest.fixture
def exchanger_factory(auth_config, polling, session):
    session.add(
        "POST",
        f"/{TENANT}/oauth2/v2.0/token",
        make_response(200, {"access_token": "at", "refresh_token": "rt", "expires_in": 3600}),
    )

    def _build(browser, bind_policy=None):
        return LoopbackAuthExchanger(
            auth_config,
            polling,
            session=session,
            open_browser=browser,
            bind_policy=bind_policy,
        )

    return _build


def authorize(exchanger, port, timeout=5.0):
    return exchanger.authorize(
        tenant_id=TENANT,
        client_id="app-client-id",
        client_secret="app-client-secret",
        redirect_uri=f"http://127.0.0.1:{port}",
        scope="https://api.partner.test/user_impersonation offline_access",
        timeout=timeout,
    )


# ============================================================================
# Pure helpers
# ============================================================================


class TestHelpers:
    def test_authorization_url(self):
        url = build_authorization_url(
            "https://login.test/t/oauth2/v2.0/authorize",
            client_id="cid",
            redirect_uri="http://localhost:8400",
            scope="a b",
        )
        query = parse_qs(urlparse(url).query)
        assert query["response_type"] == ["code"]
        assert query["redirect_uri"] == ["http://localhost:8400"]
        assert query["scope"] == ["a b"]

    def test_short_code_is_ignored(self):
        assert not classify_callback({"code": ["short"]}).received
        assert classify_callback({"code": [CODE]}).code == CODE

    def test_error_wins_over_code(self):
        result = classify_callback({"error": ["access_denied"], "code": [CODE]})
        assert result.error == "access_denied"
        assert result.code is None


# ============================================================================
# Full exchange
# ============================================================================


class TestAuthorize:
    def test_code_is_exchanged(self, exchanger_factory, session, port):
        browser = FakeBrowser(port)

        tokens = authorize(exchanger_factory(browser), port)

        assert tokens["refresh_token"] == "rt"
        assert "oauth2/v2.0/authorize" in browser.opened[0]
        exchange = session.calls[0].kwargs["data"]
        assert exchange["grant_type"] == "authorization_code"
        assert exchange["code"] == CODE
        assert exchange["redirect_uri"] == f"http://127.0.0.1:{port}"

    def test_denial(self, exchanger_factory, session, port):
        browser = FakeBrowser(port, "error=access_denied&error_description=User+cancelled")

        with pytest.raises(AuthorizationDeniedError) as exc_info:
            authorize(exchanger_factory(browser), port)

        assert exc_info.value.error == "access_denied"
        assert exc_info.value.error_description == "User cancelled"
        assert session.calls == []

    def test_timeout_releases_the_port(self, exchanger_factory, port):
        silent = FakeBrowser(port, query=None)

        with pytest.raises(AuthorizationTimeoutError):
            authorize(exchanger_factory(silent), port, timeout=0.5)

        tokens = authorize(exchanger_factory(FakeBrowser(port)), port)
        assert tokens["access_token"] == "at"

    def test_idle_connection_does_not_block_timeout(self, exchanger_factory, port):
        browser = IdleBrowser(port)
        started = time.monotonic()
        try:
            with pytest.raises(AuthorizationTimeoutError):
                authorize(exchanger_factory(browser), port, timeout=2.0)
        finally:
            browser.close()

        assert time.monotonic() - started < 4.0

    def test_callback_after_idle_connection_is_served(self, exchanger_factory, port):
        browser = IdleBrowser(port, query=f"code={CODE}")
        try:
            tokens = authorize(exchanger_factory(browser), port)
        finally:
            browser.close()

        assert tokens["refresh_token"] == "rt"

    def test_second_authorization_on_same_port_fails_fast(self, exchanger_factory, port):
        errors = []
        first_browser = FakeBrowser(port)

        def browser(url):
            try:
                authorize(exchanger_factory(FakeBrowser(port, query=None)), port)
            except ListenerBindError as e:
                errors.append(e)
            return first_browser(url)

        tokens = authorize(exchanger_factory(browser), port)

        assert tokens["refresh_token"] == "rt"
        assert len(errors) == 1
        assert "already waiting" in errors[0].message

    def test_bind_failure_is_retried(self, exchanger_factory, port, fake_clock):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", port))
        blocker.listen(1)
        policy = RetryPolicy.fixed(2, max_attempts=3, sleep=fake_clock.sleep, clock=fake_clock)
        browser = FakeBrowser(port)
        try:
            with pytest.raises(ListenerBindError) as exc_info:
                authorize(exchanger_factory(browser, bind_policy=policy), port)
        finally:
            blocker.close()

        assert exc_info.value.port == port
        assert fake_clock.sleeps == [2, 2]
        assert browser.opened == []
        # the in-process reservation is released too
        assert authorize(exchanger_factory(FakeBrowser(port)), port)["access_token"] == "at"


def test_exchange_rejection(auth_config, session):
    session.add(
        "POST",
        f"/{TENANT}/oauth2/v2.0/token",
        make_response(400, {"error": "invalid_grant", "error_description": "Code expired"}),
    )
    exchanger = LoopbackAuthExchanger(auth_config, session=session, open_browser=lambda url: True)

    with pytest.raises(RemoteRequestError) as exc_info:
        exchanger.exchange_code(TENANT, "cid", "secret", CODE, "http://localhost:8400", "scope")

    assert exc_info.value.remote_code == "invalid_grant"
    assert exc_info.value.status_code == 400
