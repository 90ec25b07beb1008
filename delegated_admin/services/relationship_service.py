"""Delegated-admin relationship lifecycle.

The service is a client-side state machine over the remote relationship:

    create + lockForApproval -> approvalPending -> (customer approves) -> active
    active -> terminate -> terminating -> terminated -> delete -> deleted
    approvalPending -> reject(reason) -> terminated

Illegal transitions are refused locally with ``InvalidStateError`` before any
request is sent. Every mutating request carries the relationship's etag as an
``If-Match`` precondition; a stale etag surfaces as ``RemoteConflictError``
unless the caller explicitly asks for one refresh-and-retry.
"""

import re
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Union

import structlog

from ..config_manager import PollingConfig
from ..exceptions import InvalidStateError, RemoteConflictError, TerminationTimeoutError
from ..models import (
    Operation,
    Relationship,
    RelationshipStatus,
    TenantReference,
    unified_roles_payload,
)
from ..retry_policy import RetryPolicy
from .directory_client import DirectoryClient, Token, join_filters, odata_filter_eq

logger = structlog.get_logger(__name__)

RELATIONSHIPS_PATH = "tenantRelationships/delegatedAdminRelationships"

MAX_DISPLAY_NAME_LENGTH = 50
MAX_DURATION_DAYS = 730
ALLOWED_AUTO_EXTEND = ("PT0S", "P180D")
_DURATION_RE = re.compile(r"^P(\d+)D$")

RelationshipRef = Union[str, Relationship]


class RelationshipAction(Enum):
    LOCK_FOR_APPROVAL = "lockForApproval"
    TERMINATE = "terminate"
    REJECT = "reject"
    DELETE = "delete"


# status a relationship must be in for each action
ALLOWED_TRANSITIONS: Dict[RelationshipAction, FrozenSet[RelationshipStatus]] = {
    RelationshipAction.LOCK_FOR_APPROVAL: frozenset({RelationshipStatus.CREATED}),
    RelationshipAction.TERMINATE: frozenset({RelationshipStatus.ACTIVE}),
    RelationshipAction.REJECT: frozenset({RelationshipStatus.APPROVAL_PENDING}),
    RelationshipAction.DELETE: frozenset({RelationshipStatus.TERMINATED}),
}

_REFUSAL_REASONS = {
    (RelationshipAction.DELETE, RelationshipStatus.APPROVAL_PENDING): (
        "approval-pending relationships cannot be deleted; they expire automatically"
    ),
    (RelationshipAction.DELETE, RelationshipStatus.ACTIVE): "terminate the relationship first",
    (RelationshipAction.DELETE, RelationshipStatus.DELETED): "relationship is already deleted",
    (RelationshipAction.TERMINATE, RelationshipStatus.APPROVAL_PENDING): (
        "reject the pending relationship instead"
    ),
}


def check_transition(relationship: Relationship, action: RelationshipAction) -> None:
    """Raise ``InvalidStateError`` if ``action`` is illegal in the current status."""
    if relationship.status not in ALLOWED_TRANSITIONS[action]:
        raise InvalidStateError(
            relationship.id,
            relationship.status.value,
            action.value,
            reason=_REFUSAL_REASONS.get((action, relationship.status)),
        )


def validate_duration(duration: str) -> str:
    match = _DURATION_RE.match(duration or "")
    if not match:
        raise ValueError(f"Duration must look like 'P<days>D', got: {duration!r}")
    days = int(match.group(1))
    if not 1 <= days <= MAX_DURATION_DAYS:
        raise ValueError(f"Duration must be between 1 and {MAX_DURATION_DAYS} days, got {days}")
    return duration


def validate_display_name(display_name: str) -> str:
    name = (display_name or "").strip()
    if not name:
        raise ValueError("Display name cannot be empty")
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise ValueError(
            f"Display name must be at most {MAX_DISPLAY_NAME_LENGTH} characters, got {len(name)}"
        )
    return name


class RelationshipService:
    """Creates, observes and tears down delegated-admin relationships."""

    def __init__(
        self,
        client: DirectoryClient,
        token_provider: Callable[[], Token],
        polling: Optional[PollingConfig] = None,
        termination_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.client = client
        self.token_provider = token_provider
        polling = polling or PollingConfig()
        self.termination_policy = termination_policy or RetryPolicy.fixed(
            polling.termination_interval, timeout=polling.termination_timeout
        )

    def _url(self, *parts: str) -> str:
        return self.client.graph_url("/".join((RELATIONSHIPS_PATH,) + parts))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, relationship_id: str) -> Relationship:
        response = self.client.get(self._url(relationship_id), self.token_provider())
        return Relationship.from_graph(response.data, response.headers)

    def list_relationships(
        self,
        status: Optional[RelationshipStatus] = None,
        customer_tenant_id: Optional[str] = None,
    ) -> List[Relationship]:
        filters = []
        if status is not None:
            filters.append(odata_filter_eq("status", status.value))
        if customer_tenant_id:
            filters.append(odata_filter_eq("customer/tenantId", customer_tenant_id))
        params = {"$filter": join_filters(filters)} if filters else None
        items = self.client.get_all(self._url(), self.token_provider(), params=params)
        return [Relationship.from_graph(item) for item in items]

    def list_operations(self, relationship: RelationshipRef) -> List[Operation]:
        relationship_id = _relationship_id(relationship)
        items = self.client.get_all(self._url(relationship_id, "operations"), self.token_provider())
        return [Operation.from_graph(relationship_id, item) for item in items]

    def resolve(self, relationship: RelationshipRef) -> Relationship:
        """Use the caller's snapshot when it has an etag, otherwise fetch {etag, status}."""
        if isinstance(relationship, Relationship) and relationship.etag:
            return relationship
        return self.get(_relationship_id(relationship))

    def wait_for_status(
        self,
        relationship: RelationshipRef,
        statuses: Iterable[RelationshipStatus],
        policy: RetryPolicy,
    ) -> Relationship:
        """Poll until the relationship reaches one of ``statuses``; returns the last read.

        The returned relationship may still be outside ``statuses`` if the
        policy ran out; the caller inspects ``status``.
        """
        relationship_id = _relationship_id(relationship)
        wanted = frozenset(statuses)
        result = policy.poll(
            lambda: self.get(relationship_id),
            until=lambda r: r.status in wanted,
            description=f"relationship {relationship_id} status",
        )
        return result.value

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(
        self,
        display_name: str,
        customer: TenantReference,
        role_ids: Iterable[str],
        duration: str = "P730D",
        auto_extend_duration: str = "PT0S",
    ) -> Relationship:
        """Create a relationship and immediately lock it for customer approval."""
        roles = set(role_ids)
        if not roles:
            raise ValueError("At least one role is required")
        if auto_extend_duration not in ALLOWED_AUTO_EXTEND:
            raise ValueError(
                f"autoExtendDuration must be one of {', '.join(ALLOWED_AUTO_EXTEND)}"
            )
        body = {
            "displayName": validate_display_name(display_name),
            "duration": validate_duration(duration),
            "autoExtendDuration": auto_extend_duration,
            "customer": {"tenantId": customer.tenant_id},
            "accessDetails": {"unifiedRoles": unified_roles_payload(roles)},
        }
        if customer.display_name:
            body["customer"]["displayName"] = customer.display_name

        response = self.client.post(self._url(), self.token_provider(), json=body)
        created = Relationship.from_graph(response.data, response.headers)
        log = logger.bind(relationship_id=created.id, customer=customer.tenant_id)
        log.info("Relationship created", status=created.status.value)

        if created.status is RelationshipStatus.CREATED:
            self._send_request(created, RelationshipAction.LOCK_FOR_APPROVAL)
            log.info("Relationship locked for approval")
        return self.get(created.id)

    def reject(
        self,
        relationship: RelationshipRef,
        reason: str,
        refresh_on_conflict: bool = False,
    ) -> Relationship:
        """Reject a pending relationship; it ends up ``terminated``."""
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")
        current = self.resolve(relationship)
        self._mutate(
            current,
            RelationshipAction.REJECT,
            lambda r: self._send_request(r, RelationshipAction.REJECT, reason=reason.strip()),
            refresh_on_conflict,
        )
        logger.info("Relationship rejected", relationship_id=current.id)
        return self.get(current.id)

    def terminate(
        self,
        relationship: RelationshipRef,
        refresh_on_conflict: bool = False,
    ) -> Relationship:
        """Terminate an active relationship and wait for ``terminated``.

        Re-invoking on a relationship that is already settling only re-polls.

        Raises:
            InvalidStateError: Status is neither active nor settling termination
            TerminationTimeoutError: Did not settle within the policy timeout
        """
        current = self.resolve(relationship)
        log = logger.bind(relationship_id=current.id)

        if current.status.is_settling_termination:
            log.info("Termination already in progress, polling", status=current.status.value)
        else:
            self._mutate(
                current,
                RelationshipAction.TERMINATE,
                lambda r: self._send_request(r, RelationshipAction.TERMINATE),
                refresh_on_conflict,
            )
            log.info("Termination requested")

        result = self.termination_policy.poll(
            lambda: self.get(current.id),
            until=lambda r: r.status is RelationshipStatus.TERMINATED,
            description=f"relationship {current.id} termination",
        )
        if not result.satisfied:
            last_status = result.value.status.value if result.value else None
            log.warning("Termination did not settle", attempts=result.attempts)
            raise TerminationTimeoutError(
                current.id,
                self.termination_policy.timeout or result.elapsed,
                last_status=last_status,
            )
        log.info("Relationship terminated", attempts=result.attempts)
        return result.value

    def delete(
        self,
        relationship: RelationshipRef,
        refresh_on_conflict: bool = False,
    ) -> Relationship:
        """Conditionally delete a terminated relationship."""
        current = self.resolve(relationship)

        def _send(r: Relationship) -> Relationship:
            self.client.delete(self._url(r.id), self.token_provider(), etag=r.etag)
            return r

        deleted = self._mutate(current, RelationshipAction.DELETE, _send, refresh_on_conflict)
        logger.info("Relationship deleted", relationship_id=current.id)
        return deleted.with_status(RelationshipStatus.DELETED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _send_request(
        self,
        relationship: Relationship,
        action: RelationshipAction,
        reason: Optional[str] = None,
    ) -> Dict:
        body = {"action": action.value}
        if reason:
            body["reason"] = reason
        response = self.client.post(
            self._url(relationship.id, "requests"),
            self.token_provider(),
            json=body,
            etag=relationship.etag,
        )
        return response.data

    def _mutate(
        self,
        relationship: Relationship,
        action: RelationshipAction,
        send: Callable[[Relationship], object],
        refresh_on_conflict: bool,
    ):
        check_transition(relationship, action)
        try:
            return send(relationship)
        except RemoteConflictError:
            if not refresh_on_conflict:
                raise
            logger.info(
                "Stale etag, re-reading relationship before one retry",
                relationship_id=relationship.id,
                action=action.value,
            )
            fresh = self.get(relationship.id)
            check_transition(fresh, action)
            return send(fresh)


def _relationship_id(relationship: RelationshipRef) -> str:
    return relationship.id if isinstance(relationship, Relationship) else relationship
