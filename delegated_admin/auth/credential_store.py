"""Credential Store backends for named credential bundles.

Philosophy:
- Security first: secrets never logged, files written owner-only
- Simple interface: load / save / delete by name
- Backend selected from a URI: ``file:<path>``, ``env:<prefix>``, ``keyvault:<url>``

Public API:
    CredentialStore: Abstract base
    FileCredentialStore: JSON file holding several named bundles
    EnvCredentialStore: Environment variables (optionally persisted to .env)
    KeyVaultCredentialStore: Azure Key Vault secrets
    open_credential_store: Backend factory
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient
from dotenv import set_key, unset_key

from ..exceptions import CredentialStoreError
from ..models import CredentialBundle

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")

BUNDLE_FIELDS = ("client_id", "client_secret", "tenant_id", "refresh_token")


def validate_bundle_name(name: str) -> str:
    """Validate a credential bundle name.

    Raises:
        CredentialStoreError: If name is empty or contains invalid characters
    """
    if not name or not _NAME_RE.match(name):
        raise CredentialStoreError(
            f"Invalid credential name: {name!r}. "
            "Use letters, digits, hyphens and underscores (max 64).",
            name=name,
        )
    return name


class CredentialStore(ABC):
    """Read/write access to named credential bundles."""

    @abstractmethod
    def load(self, name: str) -> CredentialBundle:
        """Load bundle ``name``; raises CredentialStoreError if absent."""

    @abstractmethod
    def save(self, name: str, bundle: CredentialBundle) -> None:
        """Create or replace bundle ``name``."""

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove bundle ``name`` if present."""

    def _build(self, name: str, data: Dict[str, Any]) -> CredentialBundle:
        try:
            return CredentialBundle.from_dict(data)
        except ValueError as e:
            raise CredentialStoreError(
                f"Credential bundle '{name}' is incomplete: {e}", name=name
            ) from e


class FileCredentialStore(CredentialStore):
    """JSON file with one entry per bundle name, written with mode 0600."""

    def __init__(self, path: str) -> None:
        self.path = Path(path).expanduser()

    def _read_all(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise CredentialStoreError(
                f"Credential file {self.path} is unreadable", cause=e
            ) from e
        if not isinstance(data, dict):
            raise CredentialStoreError(f"Credential file {self.path} is malformed")
        return data

    def _write_all(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    def names(self) -> List[str]:
        return sorted(self._read_all())

    def load(self, name: str) -> CredentialBundle:
        validate_bundle_name(name)
        data = self._read_all()
        if name not in data:
            raise CredentialStoreError(
                f"No credential bundle named '{name}' in {self.path}",
                name=name,
                recovery_suggestion="Run 'delegated-admin auth init' first",
            )
        return self._build(name, data[name])

    def save(self, name: str, bundle: CredentialBundle) -> None:
        validate_bundle_name(name)
        data = self._read_all()
        data[name] = bundle.to_dict()
        self._write_all(data)
        logger.info(f"Saved credential bundle '{name}' to {self.path}")

    def delete(self, name: str) -> None:
        validate_bundle_name(name)
        data = self._read_all()
        if data.pop(name, None) is not None:
            self._write_all(data)
            logger.info(f"Deleted credential bundle '{name}' from {self.path}")


class EnvCredentialStore(CredentialStore):
    """Bundle fields in environment variables ``<PREFIX>_<NAME>_<FIELD>``.

    With ``dotenv_path`` set, ``save``/``delete`` also persist to that .env file.
    The bundle named ``default`` maps to ``<PREFIX>_<FIELD>``.
    """

    def __init__(self, prefix: str = "DAM", dotenv_path: Optional[str] = None) -> None:
        self.prefix = prefix.upper().rstrip("_")
        self.dotenv_path = dotenv_path

    def _var(self, name: str, field_name: str) -> str:
        if name == "default":
            return f"{self.prefix}_{field_name.upper()}"
        return f"{self.prefix}_{name.upper().replace('-', '_')}_{field_name.upper()}"

    def load(self, name: str) -> CredentialBundle:
        validate_bundle_name(name)
        data = {f: os.environ.get(self._var(name, f), "") for f in BUNDLE_FIELDS}
        missing = [self._var(name, f) for f in BUNDLE_FIELDS if not data[f]]
        if missing:
            raise CredentialStoreError(
                f"Credential bundle '{name}' missing environment variables: {', '.join(missing)}",
                name=name,
            )
        return self._build(name, data)

    def save(self, name: str, bundle: CredentialBundle) -> None:
        validate_bundle_name(name)
        for field_name, value in bundle.to_dict().items():
            var = self._var(name, field_name)
            os.environ[var] = value
            if self.dotenv_path:
                set_key(self.dotenv_path, var, value)
        logger.info(
            f"Saved credential bundle '{name}' to environment"
            + (f" and {self.dotenv_path}" if self.dotenv_path else "")
        )

    def delete(self, name: str) -> None:
        validate_bundle_name(name)
        for field_name in BUNDLE_FIELDS:
            var = self._var(name, field_name)
            os.environ.pop(var, None)
            if self.dotenv_path and Path(self.dotenv_path).exists():
                unset_key(self.dotenv_path, var)


class KeyVaultCredentialStore(CredentialStore):
    """One Key Vault secret per bundle, holding the bundle as JSON."""

    def __init__(
        self,
        vault_url: str,
        secret_prefix: str = "delegated-admin",
        client: Optional[SecretClient] = None,
    ) -> None:
        if not vault_url.startswith("https://"):
            raise CredentialStoreError(f"Key Vault URL must use HTTPS: {vault_url}")
        self.vault_url = vault_url
        self.secret_prefix = secret_prefix
        self.client = client or SecretClient(
            vault_url=vault_url, credential=DefaultAzureCredential()
        )

    def _secret_name(self, name: str) -> str:
        # Key Vault secret names allow only alphanumerics and hyphens
        return f"{self.secret_prefix}-{name.replace('_', '-')}"

    def load(self, name: str) -> CredentialBundle:
        validate_bundle_name(name)
        secret_name = self._secret_name(name)
        try:
            secret = self.client.get_secret(secret_name)
        except ResourceNotFoundError as e:
            raise CredentialStoreError(
                f"Secret {secret_name} not found in {self.vault_url}", name=name, cause=e
            ) from e
        except AzureError as e:
            raise CredentialStoreError(
                f"Key Vault read failed for {secret_name}", name=name, cause=e
            ) from e
        try:
            data = json.loads(secret.value or "{}")
        except json.JSONDecodeError as e:
            raise CredentialStoreError(
                f"Secret {secret_name} does not hold a credential bundle", name=name
            ) from e
        return self._build(name, data)

    def save(self, name: str, bundle: CredentialBundle) -> None:
        validate_bundle_name(name)
        secret_name = self._secret_name(name)
        try:
            self.client.set_secret(
                secret_name,
                json.dumps(bundle.to_dict()),
                content_type="application/json",
            )
        except AzureError as e:
            raise CredentialStoreError(
                f"Key Vault write failed for {secret_name}", name=name, cause=e
            ) from e
        logger.info(f"Saved credential bundle '{name}' to {self.vault_url}")

    def delete(self, name: str) -> None:
        validate_bundle_name(name)
        secret_name = self._secret_name(name)
        try:
            self.client.begin_delete_secret(secret_name)
        except ResourceNotFoundError:
            return
        except AzureError as e:
            raise CredentialStoreError(
                f"Key Vault delete failed for {secret_name}", name=name, cause=e
            ) from e


def open_credential_store(uri: str) -> CredentialStore:
    """Build a store from ``file:<path>``, ``env:<prefix>[@<dotenv>]`` or ``keyvault:<url>``."""
    scheme, _, target = uri.partition(":")
    scheme = scheme.lower()
    if scheme == "file" and target:
        return FileCredentialStore(target)
    if scheme == "env":
        prefix, _, dotenv_path = target.partition("@")
        return EnvCredentialStore(prefix or "DAM", dotenv_path or None)
    if scheme == "keyvault" and target:
        return KeyVaultCredentialStore(target)
    raise CredentialStoreError(
        f"Unsupported credential store: {uri}",
        recovery_suggestion="Use file:<path>, env:<prefix>[@<.env path>] or keyvault:<https url>",
    )
