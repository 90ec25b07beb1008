"""Base command infrastructure and shared utilities.

This module provides common utilities used across command modules:
- CommandContext: lazily built configuration, credential and services
- Error reporting helpers that keep the remote error code and message
- Row/dict formatting shared by the table and JSON outputs
"""

import sys
from functools import cached_property
from typing import Any, Dict, NoReturn, Optional

import click
from rich.console import Console

from ..auth.credential_store import CredentialStore, open_credential_store
from ..auth.token_cache import TokenCache
from ..auth.token_refresher import CredentialRefresher
from ..config_manager import ConsentConfig, DelegatedAdminConfig, create_config_from_env
from ..exceptions import DelegatedAdminError
from ..logging_config import configure_logging
from ..models import AccessAssignment, AccessToken, CredentialBundle, Relationship, RelationshipStatus
from ..services.access_assignment_service import AccessAssignmentService
from ..services.consent_orchestrator import ConsentOrchestrator
from ..services.directory_client import DirectoryClient
from ..services.group_service import GroupService
from ..services.relationship_service import RelationshipService
from ..services.role_templates import RoleTemplateRegistry, role_name

console = Console()

STATUS_STYLES = {
    RelationshipStatus.CREATED: "blue",
    RelationshipStatus.APPROVAL_PENDING: "yellow",
    RelationshipStatus.ACTIVATING: "yellow",
    RelationshipStatus.ACTIVE: "green",
    RelationshipStatus.TERMINATION_REQUESTED: "magenta",
    RelationshipStatus.TERMINATING: "magenta",
    RelationshipStatus.TERMINATED: "dim",
    RelationshipStatus.EXPIRING: "yellow",
    RelationshipStatus.EXPIRED: "dim",
    RelationshipStatus.DELETED: "dim",
}


class CommandContext:
    """Shared context for command execution.

    Services are built on first use so that commands which only read local
    configuration (``templates list``) never touch the credential store.
    """

    def __init__(
        self,
        ctx: click.Context,
        log_level: str = "INFO",
        credential_store: Optional[str] = None,
        credential_name: Optional[str] = None,
    ) -> None:
        self.click_ctx = ctx
        self.log_level = log_level
        try:
            self.config: DelegatedAdminConfig = create_config_from_env(log_level)
        except ValueError as e:
            exit_with_error(f"Invalid configuration: {e}")
        if credential_store:
            self.config.credential_store = credential_store
        if credential_name:
            self.config.credential_name = credential_name
        configure_logging(self.config.logging)

    @cached_property
    def store(self) -> CredentialStore:
        return open_credential_store(self.config.credential_store)

    @cached_property
    def credential(self) -> CredentialBundle:
        return self.store.load(self.config.credential_name)

    @cached_property
    def refresher(self) -> CredentialRefresher:
        return CredentialRefresher(self.config.auth)

    @cached_property
    def token_cache(self) -> TokenCache:
        return TokenCache(self.refresher)

    @cached_property
    def client(self) -> DirectoryClient:
        return DirectoryClient(
            self.config.directory.graph_base_url,
            self.config.directory.partner_center_base_url,
        )

    def graph_token(self) -> AccessToken:
        """Graph token for the partner tenant (where relationships and groups live)."""
        return self.token_cache.get_token(self.credential, self.config.auth.graph_scope)

    @cached_property
    def templates(self) -> RoleTemplateRegistry:
        return RoleTemplateRegistry.from_file(self.config.templates_file)

    @cached_property
    def relationships(self) -> RelationshipService:
        return RelationshipService(self.client, self.graph_token, self.config.polling)

    @cached_property
    def assignments(self) -> AccessAssignmentService:
        return AccessAssignmentService(
            self.client,
            self.graph_token,
            self.relationships,
            groups=GroupService(self.client, self.graph_token, self.config.polling),
            templates=self.templates,
        )

    def orchestrator(self, consent: ConsentConfig, max_workers: int = 1) -> ConsentOrchestrator:
        return ConsentOrchestrator(
            self.refresher,
            self.client,
            consent,
            auth_config=self.config.auth,
            polling=self.config.polling,
            max_workers=max_workers,
        )


def command_context(ctx: click.Context) -> CommandContext:
    """Create CommandContext from click context."""
    obj = ctx.obj or {}
    return CommandContext(
        ctx=ctx,
        log_level=obj.get("log_level", "INFO"),
        credential_store=obj.get("credential_store"),
        credential_name=obj.get("credential_name"),
    )


def exit_with_error(message: str, code: int = 1) -> NoReturn:
    """Exit with error message."""
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(code)


def fail(error: DelegatedAdminError) -> NoReturn:
    """Report a package error with its remote details and exit 1."""
    console.print(f"[red]Error:[/red] {error.message}")
    remote_code = error.context.get("remote_code")
    if remote_code:
        console.print(f"  remote code: {remote_code}")
    if error.recovery_suggestion:
        console.print(f"\n{error.recovery_suggestion}")
    sys.exit(1)


def confirm_or_abort(message: str, assume_yes: bool) -> None:
    if assume_yes:
        return
    if not click.confirm(message, default=False):
        console.print("Cancelled")
        sys.exit(0)


def status_markup(status: RelationshipStatus) -> str:
    color = STATUS_STYLES.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def relationship_to_dict(relationship: Relationship) -> Dict[str, Any]:
    return {
        "id": relationship.id,
        "display_name": relationship.display_name,
        "status": relationship.status.value,
        "customer_tenant_id": relationship.customer.tenant_id if relationship.customer else None,
        "customer_name": relationship.customer.display_name if relationship.customer else None,
        "duration": relationship.duration,
        "auto_extend_duration": relationship.auto_extend_duration,
        "created_at": _iso(relationship.created_at),
        "activated_at": _iso(relationship.activated_at),
        "end_at": _iso(relationship.end_at),
        "roles": sorted(relationship.unified_roles),
    }


def assignment_to_dict(assignment: AccessAssignment) -> Dict[str, Any]:
    return {
        "id": assignment.id,
        "relationship_id": assignment.relationship_id,
        "status": assignment.status,
        "security_group_id": assignment.security_group_id,
        "roles": sorted(assignment.role_ids),
        "created_at": _iso(assignment.created_at),
    }


def role_names(role_ids) -> str:
    return ", ".join(sorted(role_name(role_id) for role_id in role_ids))


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None
