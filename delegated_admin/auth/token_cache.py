"""In-process token cache for the lifetime of one CLI session."""

import logging
import threading
from datetime import timedelta
from typing import Dict, Optional, Tuple

from ..models import AccessToken, CredentialBundle
from .token_refresher import CredentialRefresher

logger = logging.getLogger(__name__)


class TokenCache:
    """Caches access tokens per (tenant, scope) until shortly before expiry.

    Nothing is written to disk. A new process starts with an empty cache.
    """

    def __init__(
        self,
        refresher: CredentialRefresher,
        expiry_margin: timedelta = timedelta(minutes=5),
    ) -> None:
        self.refresher = refresher
        self.expiry_margin = expiry_margin
        self._tokens: Dict[Tuple[str, str], AccessToken] = {}
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()

    def get(self, tenant_id: str, scope: str) -> Optional[AccessToken]:
        with self._lock:
            token = self._tokens.get((tenant_id, scope))
        if token is None or token.is_expired(self.expiry_margin, now=self.refresher.clock()):
            return None
        return token

    def get_token(
        self, bundle: CredentialBundle, scope: str, tenant_id: Optional[str] = None
    ) -> AccessToken:
        """Return a cached token or refresh ``bundle`` against ``tenant_id``."""
        tenant = tenant_id or bundle.tenant_id
        # concurrent callers wait for one refresh instead of each issuing their own
        with self._refresh_lock:
            cached = self.get(tenant, scope)
            if cached is not None:
                logger.debug(f"Using cached token for tenant {tenant}")
                return cached

            token = self.refresher.refresh(
                tenant_id=tenant,
                client_id=bundle.client_id,
                client_secret=bundle.client_secret,
                refresh_token=bundle.refresh_token,
                scope=scope,
            )
            with self._lock:
                self._tokens[(tenant, scope)] = token
        return token

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
