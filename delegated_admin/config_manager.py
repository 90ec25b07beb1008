import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import colorlog
from dotenv import load_dotenv

from .exceptions import ConsentConfigurationError
from .timeout_config import Timeouts

# Load environment variables
load_dotenv()

"""
Configuration Management for Delegated Admin Manager

This module provides centralized configuration management with validation,
environment variable handling, and logging setup.
"""


def _set_http_log_level(log_level: str) -> None:
    """Set log levels for HTTP-related loggers to reduce noise."""
    http_loggers = [
        "azure.core.pipeline.policies.http_logging_policy",
        "azure.identity",
        "azure",
        "msal",
        "urllib3",
        "urllib3.connectionpool",
        "http.client",
        "requests.packages.urllib3",
    ]
    # HTTP logging should only appear at DEBUG level
    target_level = logging.DEBUG if log_level == "DEBUG" else logging.WARNING
    for name in http_loggers:
        logging.getLogger(name).setLevel(target_level)


logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class AuthConfig:
    """Configuration for the identity platform endpoints and scopes."""

    authority_host: str = field(
        default_factory=lambda: os.getenv(
            "DAM_AUTHORITY_HOST", "https://login.microsoftonline.com"
        )
    )
    redirect_uri: str = field(
        default_factory=lambda: os.getenv("DAM_REDIRECT_URI", "http://localhost:8400")
    )
    # scope requested during the interactive bootstrap
    auth_scope: str = field(
        default_factory=lambda: os.getenv(
            "DAM_AUTH_SCOPE",
            "https://api.partnercenter.microsoft.com/user_impersonation offline_access openid profile",
        )
    )
    graph_scope: str = field(
        default_factory=lambda: os.getenv(
            "DAM_GRAPH_SCOPE", "https://graph.microsoft.com/.default"
        )
    )
    partner_center_scope: str = field(
        default_factory=lambda: os.getenv(
            "DAM_PARTNER_CENTER_SCOPE",
            "https://api.partnercenter.microsoft.com/.default",
        )
    )

    def __post_init__(self) -> None:
        if not self.authority_host.startswith("https://"):
            raise ValueError("Authority host must use HTTPS")
        if not self.redirect_uri.startswith("http://localhost") and not self.redirect_uri.startswith(
            "http://127.0.0.1"
        ):
            raise ValueError("Redirect URI must be a loopback address (http://localhost:<port>)")
        self.authority_host = self.authority_host.rstrip("/")

    def token_endpoint(self, tenant_id: str) -> str:
        return f"{self.authority_host}/{tenant_id}/oauth2/v2.0/token"

    def authorize_endpoint(self, tenant_id: str) -> str:
        return f"{self.authority_host}/{tenant_id}/oauth2/v2.0/authorize"


@dataclass
class DirectoryConfig:
    """Base URLs of the REST surfaces the client talks to."""

    graph_base_url: str = field(
        default_factory=lambda: os.getenv(
            "DAM_GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0"
        )
    )
    partner_center_base_url: str = field(
        default_factory=lambda: os.getenv(
            "DAM_PARTNER_CENTER_BASE_URL", "https://api.partnercenter.microsoft.com/v1"
        )
    )

    def __post_init__(self) -> None:
        self.graph_base_url = self.graph_base_url.rstrip("/")
        self.partner_center_base_url = self.partner_center_base_url.rstrip("/")


@dataclass
class PollingConfig:
    """Cadence and ceilings for every wait loop."""

    listener_bind_attempts: int = field(
        default_factory=lambda: _env_int("DAM_LISTENER_BIND_ATTEMPTS", 3)
    )
    listener_bind_delay: float = field(
        default_factory=lambda: _env_float("DAM_LISTENER_BIND_DELAY", 2.0)
    )
    termination_interval: float = field(
        default_factory=lambda: _env_float("DAM_TERMINATION_INTERVAL", 5.0)
    )
    termination_timeout: float = field(default_factory=lambda: float(Timeouts.TERMINATION))
    group_propagation_attempts: int = field(
        default_factory=lambda: _env_int("DAM_GROUP_PROPAGATION_ATTEMPTS", 30)
    )
    group_propagation_interval: float = field(
        default_factory=lambda: _env_float("DAM_GROUP_PROPAGATION_INTERVAL", 2.0)
    )
    deletion_initial_delay: float = field(
        default_factory=lambda: _env_float("DAM_DELETION_INITIAL_DELAY", 10.0)
    )
    deletion_attempts: int = field(
        default_factory=lambda: _env_int("DAM_DELETION_ATTEMPTS", 6)
    )

    def __post_init__(self) -> None:
        for name in (
            "listener_bind_attempts",
            "group_propagation_attempts",
            "deletion_attempts",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        for name in (
            "listener_bind_delay",
            "termination_interval",
            "termination_timeout",
            "group_propagation_interval",
            "deletion_initial_delay",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")


@dataclass
class LoggingConfig:
    """Configuration for logging behavior."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(
        default_factory=lambda: os.getenv(
            "LOG_FORMAT", "%(log_color)s%(levelname)s:%(name)s:%(message)s"
        )
    )
    file_output: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))
    json_output: bool = field(
        default_factory=lambda: os.getenv("DAM_LOG_JSON", "false").lower() == "true"
    )

    def __post_init__(self) -> None:
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")

    def get_log_level(self) -> int:
        """Get logging level as integer."""
        return getattr(logging, self.level.upper())


@dataclass
class ApplicationGrant:
    """One API permission requested for the service application."""

    enterprise_application_id: str
    scope: str

    def to_payload(self) -> Dict[str, str]:
        return {
            "enterpriseApplicationId": self.enterprise_application_id,
            "scope": self.scope,
        }


@dataclass
class ConsentConfig:
    """Consent request submitted to each customer tenant.

    Loaded from a JSON permissions file:

        {
          "applicationId": "<app id>",
          "displayName": "Contoso Automation",
          "applicationGrants": [
            {"enterpriseApplicationId": "00000003-0000-0000-c000-000000000000",
             "scope": "Directory.Read.All,User.Read.All"}
          ]
        }
    """

    application_id: str
    display_name: str
    grants: List[ApplicationGrant] = field(default_factory=list)

    def validate(self) -> None:
        if not self.application_id:
            raise ConsentConfigurationError("Consent request has no applicationId")
        if not self.display_name:
            raise ConsentConfigurationError("Consent request has no displayName")
        if not self.grants:
            raise ConsentConfigurationError(
                "Consent request lists no applicationGrants",
                recovery_suggestion="Add at least one enterpriseApplicationId/scope pair",
            )
        for grant in self.grants:
            if not grant.enterprise_application_id or not grant.scope:
                raise ConsentConfigurationError(
                    "Each application grant needs enterpriseApplicationId and scope"
                )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "applicationId": self.application_id,
            "displayName": self.display_name,
            "applicationGrants": [grant.to_payload() for grant in self.grants],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsentConfig":
        return cls(
            application_id=data.get("applicationId", ""),
            display_name=data.get("displayName", ""),
            grants=[
                ApplicationGrant(
                    enterprise_application_id=grant.get("enterpriseApplicationId", ""),
                    scope=grant.get("scope", ""),
                )
                for grant in data.get("applicationGrants") or []
            ],
        )

    @classmethod
    def from_file(cls, path: str) -> "ConsentConfig":
        """Load and validate a permissions file.

        Raises:
            ConsentConfigurationError: If the file is missing, unreadable or incomplete
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise ConsentConfigurationError(
                f"Permissions file not found: {path}",
                context={"path": path},
            )
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConsentConfigurationError(
                f"Permissions file could not be parsed: {path}", cause=e
            ) from e
        config = cls.from_dict(data)
        config.validate()
        return config


@dataclass
class DelegatedAdminConfig:
    """Main configuration class that combines all configuration sections."""

    auth: AuthConfig = field(default_factory=AuthConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    credential_store: str = field(
        default_factory=lambda: os.getenv("DAM_CREDENTIAL_STORE", "file:.delegated-admin.json")
    )
    credential_name: str = field(
        default_factory=lambda: os.getenv("DAM_CREDENTIAL_NAME", "default")
    )
    consent_file: Optional[str] = field(default_factory=lambda: os.getenv("DAM_CONSENT_FILE"))
    templates_file: Optional[str] = field(
        default_factory=lambda: os.getenv("DAM_TEMPLATES_FILE")
    )

    @classmethod
    def from_environment(cls, log_level: Optional[str] = None) -> "DelegatedAdminConfig":
        """
        Create configuration from environment variables.

        Args:
            log_level: Optional override of LOG_LEVEL

        Returns:
            DelegatedAdminConfig: Configured instance
        """
        config = cls()
        if log_level:
            config.logging.level = log_level.upper()
        return config

    def load_consent(self, path: Optional[str] = None) -> ConsentConfig:
        """Load the consent request from ``path`` or ``DAM_CONSENT_FILE``."""
        source = path or self.consent_file
        if not source:
            raise ConsentConfigurationError(
                "No permissions file configured",
                recovery_suggestion="Pass --permissions-file or set DAM_CONSENT_FILE",
            )
        return ConsentConfig.from_file(source)

    def validate_all(self) -> None:
        """Validate all configuration sections."""
        if not self.credential_name:
            raise ValueError("Credential name is required")
        if ":" not in self.credential_store:
            raise ValueError(
                "Credential store must be a URI such as file:<path>, env:<prefix> or keyvault:<url>"
            )

    def log_configuration_summary(self) -> None:
        """Log a summary of the current configuration (without secrets)."""
        logger.info("=" * 60)
        logger.info("Delegated Admin Manager Configuration")
        logger.info("=" * 60)
        logger.info(f"Authority: {self.auth.authority_host}")
        logger.info(f"Redirect URI: {self.auth.redirect_uri}")
        logger.info(f"Graph: {self.directory.graph_base_url}")
        logger.info(f"Partner Center: {self.directory.partner_center_base_url}")
        logger.info(f"Credential store: {self.credential_store} ({self.credential_name})")
        logger.info(f"Log level: {self.logging.level}")
        logger.info("=" * 60)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (excluding sensitive data)."""
        return {
            "auth": {
                "authority_host": self.auth.authority_host,
                "redirect_uri": self.auth.redirect_uri,
                "auth_scope": self.auth.auth_scope,
                "graph_scope": self.auth.graph_scope,
                "partner_center_scope": self.auth.partner_center_scope,
            },
            "directory": {
                "graph_base_url": self.directory.graph_base_url,
                "partner_center_base_url": self.directory.partner_center_base_url,
            },
            "polling": {
                "listener_bind_attempts": self.polling.listener_bind_attempts,
                "listener_bind_delay": self.polling.listener_bind_delay,
                "termination_interval": self.polling.termination_interval,
                "termination_timeout": self.polling.termination_timeout,
                "group_propagation_attempts": self.polling.group_propagation_attempts,
                "group_propagation_interval": self.polling.group_propagation_interval,
                "deletion_initial_delay": self.polling.deletion_initial_delay,
                "deletion_attempts": self.polling.deletion_attempts,
            },
            "logging": {
                "level": self.logging.level,
                "file_output": self.logging.file_output,
                "json_output": self.logging.json_output,
            },
            "credential_store": self.credential_store,
            "credential_name": self.credential_name,
            "consent_file": self.consent_file,
            "templates_file": self.templates_file,
        }


def setup_logging(config: LoggingConfig) -> None:
    """
    Setup logging configuration based on config.
    """
    _set_http_log_level(config.level.upper())

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()  # Remove any existing handlers
    root_logger.setLevel(config.get_log_level())

    console_handler = colorlog.StreamHandler()
    if config.json_output:
        # structlog renders the whole line
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        console_handler.setFormatter(colorlog.ColoredFormatter(config.format))
    root_logger.addHandler(console_handler)

    # Add file handler if file output is configured
    if config.file_output:
        file_handler = logging.FileHandler(config.file_output)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s:%(name)s:%(message)s"
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    logger.debug(f"Logging configured at level {config.level.upper()}")


def create_config_from_env(log_level: Optional[str] = None) -> DelegatedAdminConfig:
    """
    Create and validate configuration from environment variables.

    Returns:
        DelegatedAdminConfig: Validated configuration instance

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        config = DelegatedAdminConfig.from_environment(log_level)
        config.validate_all()
        return config
    except Exception as e:
        logger.error(f"Configuration error: {e}")
        raise
