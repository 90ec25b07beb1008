"""
Bulk Consent Orchestrator.

Applies the service application's consent request to many customer tenants
and returns exactly one ``BatchOutcome`` per input tenant, in input order.

Two failure tiers:

* setup (raised, nothing is attempted): incomplete consent request,
  first Partner Center token refresh failure;
* per tenant (recorded, the batch continues): everything that happens inside
  one tenant's pipeline.

Per-tenant pipeline:

    refresh Graph token for the tenant
      -> probe service principal by appId
      -> exists? skip, or delete and wait until it disappears
      -> re-obtain the Partner Center token if it is about to expire
      -> POST applicationconsents to Partner Center
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..auth.token_cache import TokenCache
from ..auth.token_refresher import CredentialRefresher
from ..config_manager import AuthConfig, ConsentConfig, PollingConfig
from ..exceptions import (
    DelegatedAdminError,
    DeletionTimeoutError,
    DirectoryTransportError,
    RemoteRequestError,
)
from ..models import (
    AccessToken,
    BatchOutcome,
    CredentialBundle,
    Failure,
    Skipped,
    Success,
    TenantReference,
    TenantResult,
)
from ..retry_policy import RetryPolicy
from .directory_client import DirectoryClient, odata_filter_eq

logger = structlog.get_logger(__name__)


class ConsentOrchestrator:
    """Runs the consent pipeline over a list of customer tenants."""

    def __init__(
        self,
        refresher: CredentialRefresher,
        client: DirectoryClient,
        consent: ConsentConfig,
        auth_config: Optional[AuthConfig] = None,
        polling: Optional[PollingConfig] = None,
        deletion_policy: Optional[RetryPolicy] = None,
        max_workers: int = 1,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.refresher = refresher
        self.client = client
        self.consent = consent
        self.auth_config = auth_config or refresher.auth_config
        polling = polling or PollingConfig()
        self.deletion_policy = deletion_policy or RetryPolicy.exponential(
            polling.deletion_initial_delay, max_attempts=polling.deletion_attempts
        )
        self.max_workers = max_workers

    @property
    def application_id(self) -> str:
        return self.consent.application_id

    def apply_consent(
        self,
        tenants: Iterable[TenantReference],
        credential: CredentialBundle,
        update_existing: bool = False,
    ) -> List[BatchOutcome]:
        """Apply the consent request to every tenant.

        Args:
            tenants: Customer tenants, processed in order
            credential: Service identity; each tenant works on its own copy
            update_existing: Replace an existing service principal instead of skipping

        Returns:
            One BatchOutcome per tenant, in input order

        Raises:
            ConsentConfigurationError: Consent request is incomplete
            CredentialRefreshError: Partner Center token could not be obtained
        """
        tenant_list = list(tenants)
        self.consent.validate()

        # re-obtained before a consent POST once it nears expiry
        partner_tokens = TokenCache(self.refresher)
        partner_tokens.get_token(credential, self.auth_config.partner_center_scope)
        logger.info(
            "Applying consent",
            application_id=self.application_id,
            tenants=len(tenant_list),
            update_existing=update_existing,
            workers=self.max_workers,
        )

        def _run(tenant: TenantReference) -> BatchOutcome:
            return self._process_tenant(tenant, credential.copy(), partner_tokens, update_existing)

        if self.max_workers == 1 or len(tenant_list) <= 1:
            outcomes = [_run(tenant) for tenant in tenant_list]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                # map() yields in submission order
                outcomes = list(executor.map(_run, tenant_list))

        succeeded = sum(1 for o in outcomes if o.succeeded)
        failed = sum(1 for o in outcomes if o.failed)
        logger.info(
            "Consent batch finished",
            succeeded=succeeded,
            skipped=len(outcomes) - succeeded - failed,
            failed=failed,
        )
        return outcomes

    def _process_tenant(
        self,
        tenant: TenantReference,
        credential: CredentialBundle,
        partner_tokens: TokenCache,
        update_existing: bool,
    ) -> BatchOutcome:
        log = logger.bind(tenant_id=tenant.tenant_id)
        try:
            result = self._run_pipeline(tenant, credential, partner_tokens, update_existing)
        except DelegatedAdminError as e:
            log.warning("Tenant failed", error_type=type(e).__name__, error=str(e))
            result = Failure.from_exception(e)
        except Exception as e:
            log.exception("Unexpected error while processing tenant")
            result = Failure.from_exception(e)
        return BatchOutcome(tenant=tenant, result=result)

    def _run_pipeline(
        self,
        tenant: TenantReference,
        credential: CredentialBundle,
        partner_tokens: TokenCache,
        update_existing: bool,
    ) -> TenantResult:
        log = logger.bind(tenant_id=tenant.tenant_id)
        graph_token = self.refresher.refresh_bundle(
            credential, tenant.tenant_id, self.auth_config.graph_scope
        )

        existing = self.find_service_principal(graph_token)
        if existing:
            if not update_existing:
                log.info("Application already present, skipping", service_principal=existing["id"])
                return Skipped(
                    f"Application {self.application_id} already present "
                    f"(service principal {existing['id']})"
                )
            self.remove_service_principal(tenant, graph_token, existing)

        partner_token = partner_tokens.get_token(credential, self.auth_config.partner_center_scope)
        payload = self.submit_consent(tenant, partner_token)
        log.info("Consent applied")
        return Success(payload)

    def find_service_principal(self, token: AccessToken) -> Optional[Dict[str, Any]]:
        """Best-effort probe for the application's service principal.

        Any HTTP error answer counts as "not found": an un-consented tenant
        answers 401/403. A request that got no answer at all still raises.
        """
        try:
            response = self.client.get(
                self.client.graph_url("servicePrincipals"),
                token,
                params={
                    "$filter": odata_filter_eq("appId", self.application_id),
                    "$select": "id,appId,displayName",
                },
            )
        except DirectoryTransportError:
            raise
        except RemoteRequestError as e:
            logger.debug(
                "Service principal probe answered with an error, treating as absent",
                tenant_id=token.tenant_id,
                status_code=e.status_code,
                remote_code=e.remote_code,
            )
            return None
        principals = response.data.get("value") or []
        return principals[0] if principals else None

    def remove_service_principal(
        self, tenant: TenantReference, token: AccessToken, service_principal: Dict[str, Any]
    ) -> None:
        """Delete the service principal and wait until the probe no longer sees it.

        Raises:
            DeletionTimeoutError: Still present when the deletion policy runs out
        """
        log = logger.bind(tenant_id=tenant.tenant_id, service_principal=service_principal["id"])
        try:
            self.client.delete(
                self.client.graph_url(f"servicePrincipals/{service_principal['id']}"), token
            )
        except RemoteRequestError as e:
            if e.status_code != 404:
                raise
        log.info("Service principal deleted, waiting for it to disappear")

        result = self.deletion_policy.poll(
            lambda: self.find_service_principal(token),
            until=lambda principal: principal is None,
            delay_first=True,
            description=f"service principal removal in {tenant.tenant_id}",
        )
        if not result.satisfied:
            raise DeletionTimeoutError(tenant.tenant_id, self.application_id, result.attempts)
        log.info("Service principal gone", attempts=result.attempts)

    def submit_consent(self, tenant: TenantReference, partner_token: AccessToken) -> Dict[str, Any]:
        response = self.client.post(
            self.client.partner_center_url(f"customers/{tenant.tenant_id}/applicationconsents"),
            partner_token,
            json=self.consent.to_payload(),
        )
        return response.data
