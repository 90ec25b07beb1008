"""Access assignments: security groups bound to approved roles on a relationship.

Every mutation requires the parent relationship to be ``active``; the check
happens before any request is sent. Roles must be a subset of the roles the
customer approved on the relationship.

Template mode applies a named set of (group, roles) pairs, creating missing
groups first, and keeps going when an individual pair fails.
"""

import logging
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Union

from ..exceptions import (
    DelegatedAdminError,
    RelationshipNotActiveError,
    RemoteConflictError,
    RoleNotApprovedError,
)
from ..models import (
    AccessAssignment,
    AssignmentOutcome,
    AssignmentOutcomeKind,
    Relationship,
    RelationshipStatus,
    unified_roles_payload,
)
from .directory_client import DirectoryClient, Token
from .group_service import GroupService
from .relationship_service import RELATIONSHIPS_PATH, RelationshipRef, RelationshipService
from .role_templates import RoleTemplateRegistry

logger = logging.getLogger(__name__)

AssignmentRef = Union[str, AccessAssignment]


class AccessAssignmentService:
    """Creates, updates and removes access assignments on active relationships."""

    def __init__(
        self,
        client: DirectoryClient,
        token_provider: Callable[[], Token],
        relationships: RelationshipService,
        groups: Optional[GroupService] = None,
        templates: Optional[RoleTemplateRegistry] = None,
    ) -> None:
        self.client = client
        self.token_provider = token_provider
        self.relationships = relationships
        self.groups = groups or GroupService(client, token_provider)
        self.templates = templates or RoleTemplateRegistry()

    def _url(self, relationship_id: str, *parts: str) -> str:
        path = "/".join((RELATIONSHIPS_PATH, relationship_id, "accessAssignments") + parts)
        return self.client.graph_url(path)

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def require_active(self, relationship: RelationshipRef) -> Relationship:
        current = self.relationships.resolve(relationship)
        if current.status is not RelationshipStatus.ACTIVE:
            raise RelationshipNotActiveError(current.id, current.status.value)
        return current

    @staticmethod
    def validate_roles(relationship: Relationship, role_ids: Iterable[str]) -> frozenset:
        roles = frozenset(role_ids)
        if not roles:
            raise ValueError("At least one role is required")
        for role_id in sorted(roles):
            if role_id not in relationship.unified_roles:
                raise RoleNotApprovedError(
                    role_id, relationship.id, approved=relationship.unified_roles
                )
        return roles

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, relationship: RelationshipRef, assignment_id: str) -> AccessAssignment:
        relationship_id = _rel_id(relationship)
        response = self.client.get(self._url(relationship_id, assignment_id), self.token_provider())
        return AccessAssignment.from_graph(relationship_id, response.data, response.headers)

    def list_assignments(self, relationship: RelationshipRef) -> List[AccessAssignment]:
        relationship_id = _rel_id(relationship)
        items = self.client.get_all(self._url(relationship_id), self.token_provider())
        return [AccessAssignment.from_graph(relationship_id, item) for item in items]

    def _resolve_assignment(
        self, relationship_id: str, assignment: AssignmentRef
    ) -> AccessAssignment:
        if isinstance(assignment, AccessAssignment) and assignment.etag:
            return assignment
        assignment_id = assignment.id if isinstance(assignment, AccessAssignment) else assignment
        return self.get(relationship_id, assignment_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        relationship: RelationshipRef,
        group_id: str,
        role_ids: Iterable[str],
    ) -> AssignmentOutcome:
        """Bind ``group_id`` to ``role_ids``.

        A 409 from the directory (assignment already exists) is returned as an
        ``EXISTS`` outcome instead of an exception.

        Raises:
            RelationshipNotActiveError: Parent relationship is not active
            RoleNotApprovedError: A role was not approved on the relationship
        """
        if not group_id:
            raise ValueError("group_id is required")
        current = self.require_active(relationship)
        roles = self.validate_roles(current, role_ids)
        body = {
            "accessContainer": {
                "accessContainerId": group_id,
                "accessContainerType": "securityGroup",
            },
            "accessDetails": {"unifiedRoles": unified_roles_payload(roles)},
        }
        try:
            response = self.client.post(self._url(current.id), self.token_provider(), json=body)
        except RemoteConflictError as e:
            if e.status_code != 409:
                raise
            logger.info(f"Assignment for group {group_id} already exists on {current.id}")
            return AssignmentOutcome(
                kind=AssignmentOutcomeKind.EXISTS,
                group_id=group_id,
                role_ids=roles,
                reason=e.remote_message,
            )

        assignment = AccessAssignment.from_graph(current.id, response.data, response.headers)
        logger.info(
            f"Created access assignment {assignment.id} for group {group_id} "
            f"({len(roles)} roles) on {current.id}"
        )
        return AssignmentOutcome(
            kind=AssignmentOutcomeKind.CREATED,
            group_id=group_id,
            role_ids=roles,
            assignment=assignment,
        )

    def update(
        self,
        relationship: RelationshipRef,
        assignment: AssignmentRef,
        role_ids: Iterable[str],
        refresh_on_conflict: bool = False,
    ) -> AccessAssignment:
        """Replace the roles of an assignment with a conditional PATCH."""
        current = self.require_active(relationship)
        roles = self.validate_roles(current, role_ids)
        target = self._resolve_assignment(current.id, assignment)
        body = {"accessDetails": {"unifiedRoles": unified_roles_payload(roles)}}

        def _send(a: AccessAssignment) -> AccessAssignment:
            response = self.client.patch(
                self._url(current.id, a.id), self.token_provider(), json=body, etag=a.etag
            )
            if response.data.get("id"):
                return AccessAssignment.from_graph(current.id, response.data, response.headers)
            return self.get(current.id, a.id)

        updated = self._with_conflict_retry(current.id, target, _send, refresh_on_conflict)
        logger.info(f"Updated access assignment {target.id} on {current.id}")
        return updated

    def remove(
        self,
        relationship: RelationshipRef,
        assignment: AssignmentRef,
        refresh_on_conflict: bool = False,
    ) -> AccessAssignment:
        """Delete an assignment with a conditional DELETE."""
        current = self.require_active(relationship)
        target = self._resolve_assignment(current.id, assignment)

        def _send(a: AccessAssignment) -> AccessAssignment:
            self.client.delete(self._url(current.id, a.id), self.token_provider(), etag=a.etag)
            return replace(a, status="deleting")

        removed = self._with_conflict_retry(current.id, target, _send, refresh_on_conflict)
        logger.info(f"Removed access assignment {target.id} from {current.id}")
        return removed

    def _with_conflict_retry(
        self,
        relationship_id: str,
        assignment: AccessAssignment,
        send: Callable[[AccessAssignment], AccessAssignment],
        refresh_on_conflict: bool,
    ) -> AccessAssignment:
        try:
            return send(assignment)
        except RemoteConflictError:
            if not refresh_on_conflict:
                raise
            logger.info(f"Stale etag on assignment {assignment.id}, re-reading for one retry")
            return send(self.get(relationship_id, assignment.id))

    # ------------------------------------------------------------------
    # Template mode
    # ------------------------------------------------------------------

    def apply_template(
        self, relationship: RelationshipRef, template_name: str
    ) -> List[AssignmentOutcome]:
        """Apply every (group, roles) pair of a template; failures are recorded, not raised.

        Raises:
            TemplateNotFoundError: Unknown template
            RelationshipNotActiveError: Parent relationship is not active
        """
        template = self.templates.get(template_name)
        current = self.require_active(relationship)
        logger.info(
            f"Applying template '{template.name}' ({len(template.entries)} groups) to {current.id}"
        )

        outcomes: List[AssignmentOutcome] = []
        for entry in template.entries:
            group_id = ""
            try:
                group_id = self.groups.ensure_group(entry.group_name)
                outcome = self.create(current, group_id, entry.role_ids)
                outcome = replace(outcome, group_name=entry.group_name)
            except DelegatedAdminError as e:
                logger.warning(f"Template entry '{entry.group_name}' failed: {e}")
                outcome = AssignmentOutcome(
                    kind=AssignmentOutcomeKind.ERROR,
                    group_id=group_id,
                    role_ids=frozenset(entry.role_ids),
                    group_name=entry.group_name,
                    reason=str(e),
                )
            outcomes.append(outcome)

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            f"Template '{template.name}' applied: {len(outcomes) - failed} ok, {failed} failed"
        )
        return outcomes


def _rel_id(relationship: RelationshipRef) -> str:
    return relationship.id if isinstance(relationship, Relationship) else relationship
