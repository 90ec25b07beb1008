"""Refresh-token grant against the identity platform, one tenant at a time.

A single credential bundle can be refreshed against any tenant id: the
service tenant, the partner's own tenant or any customer tenant. That is what
lets one refresh token drive cross-tenant operations.

The refresher never caches and never retries. Retrying an ``invalid_grant``
blindly is unsafe, so the decision stays with the caller; callers that need
reuse wrap it with ``TokenCache``.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

import requests

from ..config_manager import AuthConfig
from ..exceptions import CredentialRefreshError
from ..models import AccessToken, CredentialBundle, utcnow
from ..services.directory_client import parse_remote_error
from ..timeout_config import http_timeout

logger = logging.getLogger(__name__)


class CredentialRefresher:
    """Exchanges a refresh token for a tenant-scoped access token."""

    def __init__(
        self,
        auth_config: Optional[AuthConfig] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.auth_config = auth_config or AuthConfig()
        self.session = session or requests.Session()
        self.clock = clock

    def refresh(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        scope: str,
    ) -> AccessToken:
        """Perform a ``refresh_token`` grant for ``tenant_id``.

        Returns:
            AccessToken: token plus ``authorization_header`` and expiry data

        Raises:
            CredentialRefreshError: On any non-2xx response or transport failure
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not refresh_token:
            raise CredentialRefreshError(
                "No refresh token available", tenant_id=tenant_id
            )

        url = self.auth_config.token_endpoint(tenant_id)
        issued_at = self.clock()
        logger.debug(f"Refreshing access token for tenant {tenant_id} (scope: {scope})")

        try:
            response = self.session.post(
                url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "scope": scope,
                },
                timeout=http_timeout(),
            )
        except requests.RequestException as e:
            raise CredentialRefreshError(
                "Token endpoint unreachable", tenant_id=tenant_id, cause=e
            ) from e

        if not response.ok:
            remote_code, remote_message = parse_remote_error(response)
            logger.warning(
                f"Token refresh for tenant {tenant_id} rejected: "
                f"{response.status_code} {remote_code}"
            )
            raise CredentialRefreshError(
                f"Token refresh for tenant {tenant_id} failed with {response.status_code}",
                tenant_id=tenant_id,
                status_code=response.status_code,
                remote_code=remote_code,
                remote_message=remote_message,
            )

        try:
            body = response.json()
            access_token = body["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            raise CredentialRefreshError(
                "Token endpoint returned no access_token",
                tenant_id=tenant_id,
                status_code=response.status_code,
                cause=e,
            ) from e

        token = AccessToken(
            token=access_token,
            expires_in=int(body.get("expires_in", 3600)),
            issued_at=issued_at,
            tenant_id=tenant_id,
            scope=body.get("scope") or scope,
            token_type=body.get("token_type") or "Bearer",
            refresh_token=body.get("refresh_token"),
        )
        logger.info(
            f"Obtained access token for tenant {tenant_id} "
            f"(expires {token.expires_on.isoformat()})"
        )
        return token

    def refresh_bundle(
        self, bundle: CredentialBundle, tenant_id: Optional[str], scope: str
    ) -> AccessToken:
        """Refresh using ``bundle`` and store the new access token on it.

        ``tenant_id`` defaults to the bundle's own tenant.
        """
        token = self.refresh(
            tenant_id=tenant_id or bundle.tenant_id,
            client_id=bundle.client_id,
            client_secret=bundle.client_secret,
            refresh_token=bundle.refresh_token,
            scope=scope,
        )
        bundle.apply_token(token)
        return token
