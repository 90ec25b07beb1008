"""Service identity bootstrap, refresh and storage.

Public API:
    LoopbackAuthExchanger: Interactive authorization-code exchange
    CredentialRefresher: Refresh-token grant per tenant
    TokenCache: Session-lifetime token reuse
    open_credential_store: Credential Store backend factory
"""

from .credential_store import (
    CredentialStore,
    EnvCredentialStore,
    FileCredentialStore,
    KeyVaultCredentialStore,
    open_credential_store,
)
from .loopback import LoopbackAuthExchanger
from .token_cache import TokenCache
from .token_refresher import CredentialRefresher

__all__ = [
    "CredentialRefresher",
    "CredentialStore",
    "EnvCredentialStore",
    "FileCredentialStore",
    "KeyVaultCredentialStore",
    "LoopbackAuthExchanger",
    "TokenCache",
    "open_credential_store",
]
