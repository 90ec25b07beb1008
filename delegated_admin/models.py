"""Data models for delegated-admin relationships, consent and credentials.

Philosophy:
- Simple dataclasses (no complex inheritance)
- Immutable where possible
- Explicit tagged records instead of open-ended dictionaries
- Built from directory (Microsoft Graph) JSON via ``from_graph`` constructors

Models:
    CredentialBundle: Service identity credentials (mutated only by the refresher)
    AccessToken: Short-lived token returned by a refresh
    TenantReference: Customer tenant identity
    RelationshipStatus / Relationship: Delegated-admin relationship
    Operation: Remote asynchronous work on a relationship
    AccessAssignment: Security group bound to approved roles
    Success / Skipped / Failure / BatchOutcome: Bulk consent results
    AssignmentOutcome: Result of creating one assignment
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a directory ISO-8601 timestamp (``Z`` suffix, up to 7 fraction digits)."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Graph emits 100ns precision; datetime accepts at most microseconds
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_etag(data: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Return the concurrency token of a directory object (body first, then header)."""
    etag = data.get("@odata.etag")
    if not etag and headers:
        etag = headers.get("ETag") or headers.get("etag")
    return etag


# ============================================================================
# Credentials
# ============================================================================


@dataclass
class CredentialBundle:
    """Service identity credentials.

    Owned by the caller. Only ``CredentialRefresher.refresh_bundle`` replaces
    ``access_token``/``issued_at``/``expires_in``, and always all three at once.
    """

    client_id: str
    client_secret: str
    tenant_id: str
    refresh_token: str
    access_token: Optional[str] = None
    issued_at: Optional[datetime] = None
    expires_in: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ValueError("Client ID is required")
        if not self.client_secret:
            raise ValueError("Client secret is required")
        if not self.tenant_id:
            raise ValueError("Tenant ID is required")
        if not self.refresh_token:
            raise ValueError("Refresh token is required")
        if isinstance(self.issued_at, str):
            self.issued_at = parse_timestamp(self.issued_at)

    def copy(self) -> "CredentialBundle":
        """Private copy for a concurrent worker."""
        return replace(self)

    def apply_token(self, token: "AccessToken") -> None:
        # single assignment keeps the three fields consistent
        self.__dict__.update(
            access_token=token.token,
            issued_at=token.issued_at,
            expires_in=token.expires_in,
        )

    @property
    def expires_on(self) -> Optional[datetime]:
        if self.issued_at is None or self.expires_in is None:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for a credential store (includes secrets)."""
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "tenant_id": self.tenant_id,
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialBundle":
        return cls(
            client_id=data.get("client_id", ""),
            client_secret=data.get("client_secret", ""),
            tenant_id=data.get("tenant_id", ""),
            refresh_token=data.get("refresh_token", ""),
        )

    def __repr__(self) -> str:
        """Return string representation with redacted secrets."""
        return (
            f"CredentialBundle(client_id='{self.client_id}', tenant_id='{self.tenant_id}', "
            "client_secret='***REDACTED***', refresh_token='***REDACTED***')"
        )

    __str__ = __repr__


@dataclass(frozen=True)
class AccessToken:
    """Access token obtained for one tenant and scope."""

    token: str
    expires_in: int
    issued_at: datetime
    tenant_id: str
    scope: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.token}"

    @property
    def expires_on(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    def is_expired(self, skew: timedelta = timedelta(0), now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) + skew >= self.expires_on

    def __repr__(self) -> str:
        return (
            f"AccessToken(tenant_id='{self.tenant_id}', scope='{self.scope}', "
            f"expires_on='{self.expires_on.isoformat()}', token='***REDACTED***')"
        )


# ============================================================================
# Tenants and relationships
# ============================================================================


@dataclass(frozen=True)
class TenantReference:
    """A customer tenant identity."""

    tenant_id: str
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("Tenant ID is required")

    @property
    def label(self) -> str:
        return f"{self.display_name} ({self.tenant_id})" if self.display_name else self.tenant_id

    @classmethod
    def from_graph(cls, data: Optional[Dict[str, Any]]) -> Optional["TenantReference"]:
        if not data or not data.get("tenantId"):
            return None
        return cls(tenant_id=data["tenantId"], display_name=data.get("displayName") or "")


class RelationshipStatus(Enum):
    """Status of a delegated-admin relationship.

    ``TERMINATING`` doubles as the client-observed substate while a terminate
    request settles from ``active`` to ``terminated``.
    """

    CREATED = "created"
    APPROVAL_PENDING = "approvalPending"
    ACTIVATING = "activating"
    ACTIVE = "active"
    TERMINATION_REQUESTED = "terminationRequested"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    DELETED = "deleted"
    UNKNOWN = "unknownFutureValue"

    @classmethod
    def parse(cls, value: Union[str, "RelationshipStatus", None]) -> "RelationshipStatus":
        if isinstance(value, cls):
            return value
        for member in cls:
            if value and member.value.lower() == value.lower():
                return member
        return cls.UNKNOWN

    @property
    def is_settling_termination(self) -> bool:
        return self in (RelationshipStatus.TERMINATION_REQUESTED, RelationshipStatus.TERMINATING)


@dataclass(frozen=True)
class Relationship:
    """Delegated-admin relationship between the partner and one customer."""

    id: str
    display_name: str
    status: RelationshipStatus
    etag: Optional[str] = None
    duration: Optional[str] = None
    auto_extend_duration: Optional[str] = None
    customer: Optional[TenantReference] = None
    created_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    unified_roles: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_graph(
        cls, data: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> "Relationship":
        access_details = data.get("accessDetails") or {}
        roles = frozenset(
            role["roleDefinitionId"]
            for role in access_details.get("unifiedRoles") or []
            if role.get("roleDefinitionId")
        )
        return cls(
            id=data["id"],
            display_name=data.get("displayName") or "",
            status=RelationshipStatus.parse(data.get("status")),
            etag=extract_etag(data, headers),
            duration=data.get("duration"),
            auto_extend_duration=data.get("autoExtendDuration"),
            customer=TenantReference.from_graph(data.get("customer")),
            created_at=parse_timestamp(data.get("createdDateTime")),
            last_modified_at=parse_timestamp(data.get("lastModifiedDateTime")),
            activated_at=parse_timestamp(data.get("activatedDateTime")),
            end_at=parse_timestamp(data.get("endDateTime")),
            unified_roles=roles,
        )

    def with_status(self, status: RelationshipStatus) -> "Relationship":
        return replace(self, status=status)


@dataclass(frozen=True)
class Operation:
    """Read-only projection of asynchronous remote work on a relationship."""

    id: str
    relationship_id: str
    status: str
    type: str
    created_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_graph(cls, relationship_id: str, data: Dict[str, Any]) -> "Operation":
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message") or error.get("code")
        return cls(
            id=data["id"],
            relationship_id=relationship_id,
            status=data.get("status") or "",
            type=data.get("operationType") or "",
            created_at=parse_timestamp(data.get("createdDateTime")),
            last_modified_at=parse_timestamp(data.get("lastModifiedDateTime")),
            error=error,
        )


@dataclass(frozen=True)
class AccessAssignment:
    """Security group bound to a set of approved roles on a relationship."""

    id: str
    relationship_id: str
    status: str
    security_group_id: str
    role_ids: FrozenSet[str]
    etag: Optional[str] = None
    created_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None

    @classmethod
    def from_graph(
        cls,
        relationship_id: str,
        data: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> "AccessAssignment":
        container = data.get("accessContainer") or {}
        access_details = data.get("accessDetails") or {}
        return cls(
            id=data["id"],
            relationship_id=relationship_id,
            status=data.get("status") or "",
            security_group_id=container.get("accessContainerId") or "",
            role_ids=frozenset(
                role["roleDefinitionId"]
                for role in access_details.get("unifiedRoles") or []
                if role.get("roleDefinitionId")
            ),
            etag=extract_etag(data, headers),
            created_at=parse_timestamp(data.get("createdDateTime")),
            last_modified_at=parse_timestamp(data.get("lastModifiedDateTime")),
        )


def unified_roles_payload(role_ids: Iterable[str]) -> list:
    return [{"roleDefinitionId": role_id} for role_id in sorted(set(role_ids))]


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class Success:
    payload: Any = None
    kind: str = field(default="success", init=False)


@dataclass(frozen=True)
class Skipped:
    reason: str
    kind: str = field(default="skipped", init=False)


@dataclass(frozen=True)
class Failure:
    reason: str
    status_code: Optional[int] = None
    error_type: Optional[str] = None
    kind: str = field(default="failure", init=False)

    @classmethod
    def from_exception(cls, error: Exception) -> "Failure":
        return cls(
            reason=str(error),
            status_code=getattr(error, "status_code", None),
            error_type=type(error).__name__,
        )


TenantResult = Union[Success, Skipped, Failure]


@dataclass(frozen=True)
class BatchOutcome:
    """Outcome of the consent pipeline for one tenant."""

    tenant: TenantReference
    result: TenantResult

    @property
    def succeeded(self) -> bool:
        return isinstance(self.result, Success)

    @property
    def failed(self) -> bool:
        return isinstance(self.result, Failure)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "tenant_id": self.tenant.tenant_id,
            "display_name": self.tenant.display_name,
            "result": self.result.kind,
        }
        if isinstance(self.result, Success):
            data["payload"] = self.result.payload
        elif isinstance(self.result, Skipped):
            data["reason"] = self.result.reason
        else:
            data["reason"] = self.result.reason
            data["status_code"] = self.result.status_code
            data["error_type"] = self.result.error_type
        return data


class AssignmentOutcomeKind(Enum):
    CREATED = "created"
    EXISTS = "exists"
    ERROR = "error"


@dataclass(frozen=True)
class AssignmentOutcome:
    """Result of creating one access assignment."""

    kind: AssignmentOutcomeKind
    group_id: str
    role_ids: FrozenSet[str]
    assignment: Optional[AccessAssignment] = None
    group_name: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is not AssignmentOutcomeKind.ERROR
