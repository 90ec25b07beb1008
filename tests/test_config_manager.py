"""Tests for configuration loading."""

import json

import pytest

from delegated_admin.config_manager import (
    AuthConfig,
    ConsentConfig,
    DelegatedAdminConfig,
    LoggingConfig,
    PollingConfig,
    create_config_from_env,
)
from delegated_admin.exceptions import ConsentConfigurationError
from delegated_admin.timeout_config import Timeouts

pytestmark = pytest.mark.unit


def _write_consent(tmp_path, data):
    path = tmp_path / "permissions.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


VALID_CONSENT = {
    "applicationId": "app-1",
    "displayName": "Contoso Automation",
    "applicationGrants": [
        {
            "enterpriseApplicationId": "00000003-0000-0000-c000-000000000000",
            "scope": "Directory.Read.All",
        }
    ],
}


# ============================================================================
# Sections
# ============================================================================


class TestAuthConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DAM_REDIRECT_URI", raising=False)
        monkeypatch.delenv("DAM_AUTHORITY_HOST", raising=False)
        config = AuthConfig()
        assert config.redirect_uri == "http://localhost:8400"
        assert config.token_endpoint("t-1") == (
            "https://login.microsoftonline.com/t-1/oauth2/v2.0/token"
        )

    def test_rejects_non_loopback_redirect(self):
        with pytest.raises(ValueError, match="loopback"):
            AuthConfig(redirect_uri="https://example.com/callback")

    def test_rejects_plain_http_authority(self):
        with pytest.raises(ValueError, match="HTTPS"):
            AuthConfig(authority_host="http://login.test")


class TestPollingConfig:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DAM_DELETION_ATTEMPTS", "3")
        config = PollingConfig()
        assert config.deletion_attempts == 3
        assert config.termination_timeout == float(Timeouts.TERMINATION)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="deletion_attempts"):
            PollingConfig(deletion_attempts=0)


class TestLoggingConfig:
    def test_rejects_unknown_level(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")


# ============================================================================
# Consent request
# ============================================================================


class TestConsentConfig:
    def test_loads_valid_file(self, tmp_path):
        config = ConsentConfig.from_file(_write_consent(tmp_path, VALID_CONSENT))

        assert config.application_id == "app-1"
        assert config.to_payload() == VALID_CONSENT

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConsentConfigurationError, match="not found"):
            ConsentConfig.from_file(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "permissions.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConsentConfigurationError, match="could not be parsed"):
            ConsentConfig.from_file(str(path))

    def test_requires_grants(self, tmp_path):
        data = dict(VALID_CONSENT, applicationGrants=[])
        with pytest.raises(ConsentConfigurationError, match="no applicationGrants"):
            ConsentConfig.from_file(_write_consent(tmp_path, data))

    def test_load_consent_without_source(self, monkeypatch):
        monkeypatch.delenv("DAM_CONSENT_FILE", raising=False)
        with pytest.raises(ConsentConfigurationError, match="No permissions file"):
            DelegatedAdminConfig().load_consent()

    def test_load_consent_uses_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DAM_CONSENT_FILE", _write_consent(tmp_path, VALID_CONSENT))
        assert DelegatedAdminConfig().load_consent().display_name == "Contoso Automation"


# ============================================================================
# Whole configuration
# ============================================================================


class TestDelegatedAdminConfig:
    def test_log_level_override(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        config = create_config_from_env("debug")
        assert config.logging.level == "DEBUG"

    def test_invalid_store_uri(self, monkeypatch):
        monkeypatch.setenv("DAM_CREDENTIAL_STORE", "no-scheme")
        with pytest.raises(ValueError, match="Credential store"):
            create_config_from_env()

    def test_to_dict_has_no_secrets(self):
        data = DelegatedAdminConfig().to_dict()
        assert "client_secret" not in json.dumps(data)
        assert data["polling"]["deletion_attempts"] >= 1
