"""Pytest configuration and shared fixtures.

Philosophy:
- No test talks to a real directory or identity endpoint
- Polling runs on a fake clock so no test ever sleeps
- Responses are real ``requests.Response`` objects so error parsing is exercised
"""

import http.client
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import requests

from delegated_admin.config_manager import AuthConfig, PollingConfig
from delegated_admin.models import CredentialBundle
from delegated_admin.services.directory_client import DirectoryClient

GRAPH = "https://graph.test/v1.0"
PARTNER_CENTER = "https://partner.test/v1"


# ============================================================================
# Helpers
# ============================================================================


class FakeClock:
    """Monotonic clock whose ``sleep`` only advances time."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(
    status_code: int = 200,
    json_body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    text: Optional[str] = None,
    url: str = f"{GRAPH}/test",
) -> requests.Response:
    """Build a real ``requests.Response``."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = http.client.responses.get(status_code, "")
    response.url = url
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    elif text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = b""
    response.headers.update(headers or {})
    return response


def graph_error(status_code: int, code: str, message: str) -> requests.Response:
    return make_response(status_code, {"error": {"code": code, "message": message}})


@dataclass
class RecordedCall:
    method: str
    url: str
    kwargs: Dict[str, Any] = field(default_factory=dict)

    @property
    def headers(self) -> Dict[str, str]:
        return self.kwargs.get("headers") or {}

    @property
    def json(self) -> Any:
        return self.kwargs.get("json")


class FakeSession:
    """``requests.Session`` stand-in answering from per-route response queues.

    A route is (method, path suffix). Each call pops the next queued response;
    the last one keeps being returned. Queued exceptions are raised.
    """

    def __init__(self) -> None:
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[RecordedCall] = []

    def add(self, method: str, path: str, *responses: Any) -> "FakeSession":
        self.routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append(RecordedCall(method.upper(), url, kwargs))
        path = url.split("?")[0]
        matches = [
            key for key in self.routes if key[0] == method.upper() and path.endswith(key[1])
        ]
        if not matches:
            raise AssertionError(f"Unexpected request: {method} {url}")
        queue = self.routes[max(matches, key=lambda key: len(key[1]))]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("POST", url, **kwargs)

    def calls_to(self, method: str, path: str) -> List[RecordedCall]:
        return [
            c for c in self.calls if c.method == method and c.url.split("?")[0].endswith(path)
        ]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(session) -> DirectoryClient:
    return DirectoryClient(GRAPH, PARTNER_CENTER, session=session)


@pytest.fixture
def token_provider():
    return lambda: "Bearer test-token"


@pytest.fixture
def partner_tenant_id() -> str:
    """Partner (service provider) tenant ID."""
    return "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"


@pytest.fixture
def customer_tenant_id() -> str:
    """Customer tenant ID."""
    return "11111111-1111-1111-1111-111111111111"


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        authority_host="https://login.test",
        redirect_uri="http://localhost:8400",
        auth_scope="https://api.partner.test/user_impersonation offline_access",
        graph_scope="https://graph.test/.default",
        partner_center_scope="https://api.partner.test/.default",
    )


@pytest.fixture
def polling() -> PollingConfig:
    return PollingConfig(
        listener_bind_attempts=3,
        listener_bind_delay=2.0,
        termination_interval=5.0,
        termination_timeout=300.0,
        group_propagation_attempts=30,
        group_propagation_interval=2.0,
        deletion_initial_delay=10.0,
        deletion_attempts=6,
    )


@pytest.fixture
def credential(partner_tenant_id) -> CredentialBundle:
    return CredentialBundle(
        client_id="app-client-id",
        client_secret="app-client-secret",
        tenant_id=partner_tenant_id,
        refresh_token="refresh-token-1",
    )


@pytest.fixture
def fixed_now():
    now = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    return lambda: now
