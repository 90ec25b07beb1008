"""Tests for the refresh-token grant."""

from datetime import timedelta

import pytest
import requests

from delegated_admin.auth.token_refresher import CredentialRefresher
from delegated_admin.exceptions import CredentialRefreshError
from tests.conftest import make_response

pytestmark = pytest.mark.unit

CUSTOMER = "11111111-1111-1111-1111-111111111111"
TOKEN_PATH = f"/{CUSTOMER}/oauth2/v2.0/token"


@pytest.fixture
def refresher(auth_config, session, fixed_now):
    return CredentialRefresher(auth_config, session=session, clock=fixed_now)


def test_refresh_posts_grant_for_requested_tenant(refresher, session, fixed_now):
    session.add(
        "POST",
        TOKEN_PATH,
        make_response(200, {"access_token": "at-1", "expires_in": 3599, "token_type": "Bearer"}),
    )

    token = refresher.refresh(CUSTOMER, "cid", "secret", "rt-1", "https://graph.test/.default")

    call = session.calls[0]
    assert call.url == f"https://login.test{TOKEN_PATH}"
    assert call.kwargs["data"] == {
        "grant_type": "refresh_token",
        "client_id": "cid",
        "client_secret": "secret",
        "refresh_token": "rt-1",
        "scope": "https://graph.test/.default",
    }
    assert token.authorization_header == "Bearer at-1"
    assert token.tenant_id == CUSTOMER
    assert token.expires_on == fixed_now() + timedelta(seconds=3599)


def test_rejection_keeps_remote_error(refresher, session):
    session.add(
        "POST",
        TOKEN_PATH,
        make_response(
            400,
            {
                "error": "invalid_grant",
                "error_description": "AADSTS700082: The refresh token has expired",
            },
        ),
    )

    with pytest.raises(CredentialRefreshError) as exc_info:
        refresher.refresh(CUSTOMER, "cid", "secret", "rt-1", "scope")

    error = exc_info.value
    assert error.status_code == 400
    assert error.remote_code == "invalid_grant"
    assert "AADSTS700082" in error.remote_message
    assert error.tenant_id == CUSTOMER


def test_is_not_retried(refresher, session):
    session.add("POST", TOKEN_PATH, make_response(500, {"error": "server_error"}))

    with pytest.raises(CredentialRefreshError):
        refresher.refresh(CUSTOMER, "cid", "secret", "rt-1", "scope")
    assert len(session.calls) == 1


def test_transport_failure(refresher, session):
    session.add("POST", TOKEN_PATH, requests.Timeout("read timed out"))

    with pytest.raises(CredentialRefreshError) as exc_info:
        refresher.refresh(CUSTOMER, "cid", "secret", "rt-1", "scope")
    assert isinstance(exc_info.value.cause, requests.Timeout)


def test_missing_access_token(refresher, session):
    session.add("POST", TOKEN_PATH, make_response(200, {"token_type": "Bearer"}))

    with pytest.raises(CredentialRefreshError, match="no access_token"):
        refresher.refresh(CUSTOMER, "cid", "secret", "rt-1", "scope")


def test_requires_refresh_token(refresher, session):
    with pytest.raises(CredentialRefreshError):
        refresher.refresh(CUSTOMER, "cid", "secret", "", "scope")
    assert session.calls == []


def test_refresh_bundle_updates_token_fields(refresher, session, credential, fixed_now):
    session.add(
        "POST",
        TOKEN_PATH,
        make_response(200, {"access_token": "at-2", "expires_in": 3600, "refresh_token": "rt-2"}),
    )

    token = refresher.refresh_bundle(credential, CUSTOMER, "scope")

    assert credential.access_token == "at-2"
    assert credential.issued_at == fixed_now()
    assert credential.expires_in == 3600
    # rotation is reported, not applied
    assert token.refresh_token == "rt-2"
    assert credential.refresh_token == "refresh-token-1"


def test_refresh_bundle_defaults_to_own_tenant(refresher, session, credential):
    session.add(
        "POST",
        f"/{credential.tenant_id}/oauth2/v2.0/token",
        make_response(200, {"access_token": "at-3"}),
    )

    token = refresher.refresh_bundle(credential, None, "scope")

    assert token.tenant_id == credential.tenant_id
    assert token.expires_in == 3600
