"""Directory-facing services.

``consent_orchestrator`` is imported from its module directly; it depends on
``delegated_admin.auth``, which itself imports ``directory_client`` from here.
"""

from .access_assignment_service import AccessAssignmentService
from .directory_client import DirectoryClient, DirectoryResponse
from .group_service import GroupService
from .relationship_service import RelationshipAction, RelationshipService
from .role_templates import RoleTemplateRegistry

__all__ = [
    "AccessAssignmentService",
    "DirectoryClient",
    "DirectoryResponse",
    "GroupService",
    "RelationshipAction",
    "RelationshipService",
    "RoleTemplateRegistry",
]
