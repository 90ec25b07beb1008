"""Delegated-admin relationship commands.

- relationship create: Create and lock a relationship for customer approval
- relationship show / list / operations: Inspect relationships
- relationship wait: Poll until a relationship reaches a status
- relationship terminate / reject / delete: Lifecycle transitions
"""

import json
import sys
from typing import Optional

import click
import yaml
from rich.table import Table

from ..exceptions import DelegatedAdminError
from ..models import Relationship, RelationshipStatus, TenantReference
from ..retry_policy import RetryPolicy
from ..services.role_templates import resolve_roles
from .base import (
    command_context,
    confirm_or_abort,
    console,
    fail,
    relationship_to_dict,
    role_names,
    status_markup,
)

APPROVAL_URL = (
    "https://admin.microsoft.com/AdminPortal/Home#/partners/invitation/"
    "granularAdminRelationships/{id}"
)

_STATUS_CHOICES = [s.value for s in RelationshipStatus if s is not RelationshipStatus.UNKNOWN]

_format_option = click.option(
    "--format",
    "format_type",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)


def _print_relationship(relationship: Relationship, format_type: str = "table") -> None:
    if format_type == "json":
        click.echo(json.dumps(relationship_to_dict(relationship), indent=2))
        return
    table = Table(title=f"Relationship {relationship.display_name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("ID", relationship.id)
    table.add_row("Status", status_markup(relationship.status))
    if relationship.customer:
        table.add_row("Customer", relationship.customer.label)
    table.add_row("Duration", relationship.duration or "N/A")
    table.add_row("Auto extend", relationship.auto_extend_duration or "N/A")
    if relationship.end_at:
        table.add_row("Ends", relationship.end_at.isoformat())
    table.add_row("Roles", role_names(relationship.unified_roles) or "N/A")
    console.print(table)


# =============================================================================
# Relationship Command Group
# =============================================================================


@click.group(name="relationship")
def relationship() -> None:
    """Delegated-admin relationship lifecycle commands."""
    pass


# =============================================================================
# relationship create
# =============================================================================


@relationship.command(name="create")
@click.option("--name", "display_name", required=True, help="Relationship display name (max 50)")
@click.option("--customer-tenant-id", required=True, help="Customer tenant ID")
@click.option("--customer-name", default="", help="Customer display name")
@click.option(
    "--role",
    "roles",
    multiple=True,
    help="Role name or role definition ID (can specify multiple)",
)
@click.option("--template", "template_name", help="Also request every role of this role template")
@click.option("--duration", default="P730D", help="ISO-8601 duration in days (default: P730D)")
@click.option(
    "--auto-extend",
    type=click.Choice(["PT0S", "P180D"]),
    default="PT0S",
    help="Auto extension period (default: PT0S, no extension)",
)
@_format_option
@click.pass_context
def create(
    ctx: click.Context,
    display_name: str,
    customer_tenant_id: str,
    customer_name: str,
    roles: tuple,
    template_name: Optional[str],
    duration: str,
    auto_extend: str,
    format_type: str,
) -> None:
    """Create a relationship and lock it for customer approval.

    Roles come from --role, --template or both. Requesting a template's roles
    up front lets `assignment apply-template` run once the customer approves.

    Example:
        delegated-admin relationship create --name "Contoso support" \\
            --customer-tenant-id 22222222-2222-2222-2222-222222222222 \\
            --role "Helpdesk Administrator" --role "Global Reader" --duration P365D
    """
    cmd_ctx = command_context(ctx)
    try:
        role_ids = resolve_roles(roles)
        if template_name:
            template = cmd_ctx.templates.get(template_name)
            role_ids += sorted(template.role_ids - set(role_ids))
        if not role_ids:
            raise ValueError("Give at least one --role or a --template")
        created = cmd_ctx.relationships.create(
            display_name=display_name,
            customer=TenantReference(customer_tenant_id, customer_name),
            role_ids=role_ids,
            duration=duration,
            auto_extend_duration=auto_extend,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except (OSError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/red] Could not load templates: {e}")
        sys.exit(1)
    except DelegatedAdminError as e:
        fail(e)

    _print_relationship(created, format_type)
    if format_type == "table" and created.status is RelationshipStatus.APPROVAL_PENDING:
        console.print("\n[bold]Next step:[/bold] send the customer this approval link:")
        console.print(f"  {APPROVAL_URL.format(id=created.id)}", soft_wrap=True)


# =============================================================================
# relationship show
# =============================================================================


@relationship.command(name="show")
@click.argument("relationship_id")
@_format_option
@click.pass_context
def show(ctx: click.Context, relationship_id: str, format_type: str) -> None:
    """Show one relationship."""
    cmd_ctx = command_context(ctx)
    try:
        current = cmd_ctx.relationships.get(relationship_id)
    except DelegatedAdminError as e:
        fail(e)
    _print_relationship(current, format_type)


# =============================================================================
# relationship list
# =============================================================================


@relationship.command(name="list")
@click.option(
    "--status",
    type=click.Choice(_STATUS_CHOICES, case_sensitive=False),
    help="Filter by relationship status",
)
@click.option("--customer-tenant-id", help="Filter by customer tenant")
@_format_option
@click.pass_context
def list_relationships(
    ctx: click.Context,
    status: Optional[str],
    customer_tenant_id: Optional[str],
    format_type: str,
) -> None:
    """List delegated-admin relationships.

    Example:
        delegated-admin relationship list --status approvalPending
    """
    cmd_ctx = command_context(ctx)
    try:
        relationships = cmd_ctx.relationships.list_relationships(
            status=RelationshipStatus.parse(status) if status else None,
            customer_tenant_id=customer_tenant_id,
        )
    except DelegatedAdminError as e:
        fail(e)

    if format_type == "json":
        click.echo(json.dumps([relationship_to_dict(r) for r in relationships], indent=2))
        return
    if not relationships:
        console.print("[yellow]No relationships found[/yellow]")
        return

    table = Table(title="Delegated Admin Relationships")
    table.add_column("Name", style="cyan")
    table.add_column("Customer", style="blue")
    table.add_column("Status")
    table.add_column("Ends", style="dim")
    table.add_column("ID", style="dim")
    for r in relationships:
        table.add_row(
            r.display_name,
            r.customer.label if r.customer else "N/A",
            status_markup(r.status),
            r.end_at.date().isoformat() if r.end_at else "N/A",
            r.id,
        )
    console.print(table)
    console.print(f"\nTotal: {len(relationships)} relationship(s)")


# =============================================================================
# relationship operations
# =============================================================================


@relationship.command(name="operations")
@click.argument("relationship_id")
@click.pass_context
def operations(ctx: click.Context, relationship_id: str) -> None:
    """List asynchronous operations recorded on a relationship."""
    cmd_ctx = command_context(ctx)
    try:
        items = cmd_ctx.relationships.list_operations(relationship_id)
    except DelegatedAdminError as e:
        fail(e)

    if not items:
        console.print("[yellow]No operations found[/yellow]")
        return
    table = Table(title=f"Operations on {relationship_id}")
    table.add_column("Type", style="cyan")
    table.add_column("Status")
    table.add_column("Last modified", style="dim")
    table.add_column("Error", style="red")
    for op in items:
        table.add_row(
            op.type,
            op.status,
            op.last_modified_at.isoformat() if op.last_modified_at else "N/A",
            op.error or "",
        )
    console.print(table)


# =============================================================================
# relationship wait
# =============================================================================


@relationship.command(name="wait")
@click.argument("relationship_id")
@click.option(
    "--status",
    "statuses",
    type=click.Choice(_STATUS_CHOICES, case_sensitive=False),
    multiple=True,
    default=["active"],
    help="Status to wait for (can specify multiple, default: active)",
)
@click.option("--interval", type=float, default=30.0, help="Seconds between checks")
@click.option("--timeout", type=float, default=3600.0, help="Give up after this many seconds")
@click.pass_context
def wait(
    ctx: click.Context,
    relationship_id: str,
    statuses: tuple,
    interval: float,
    timeout: float,
) -> None:
    """Wait until a relationship reaches a status (for example, customer approval).

    Exits with status 1 when the timeout passes first.
    """
    cmd_ctx = command_context(ctx)
    wanted = [RelationshipStatus.parse(s) for s in statuses]
    console.print(
        f"Waiting for {relationship_id} to become {', '.join(s.value for s in wanted)}..."
    )
    try:
        current = cmd_ctx.relationships.wait_for_status(
            relationship_id, wanted, RetryPolicy.fixed(interval, timeout=timeout)
        )
    except DelegatedAdminError as e:
        fail(e)

    if current.status not in wanted:
        console.print(
            f"[yellow]⚠[/yellow] Still {current.status.value} after {timeout:g}s"
        )
        sys.exit(1)
    console.print(f"[green]✓[/green] Relationship is {current.status.value}")


# =============================================================================
# relationship terminate
# =============================================================================


@relationship.command(name="terminate")
@click.argument("relationship_id")
@click.option("--yes", "assume_yes", is_flag=True, help="Skip confirmation prompt")
@click.option(
    "--refresh-on-conflict",
    is_flag=True,
    help="Re-read the relationship and retry once if its etag is stale",
)
@click.pass_context
def terminate(
    ctx: click.Context, relationship_id: str, assume_yes: bool, refresh_on_conflict: bool
) -> None:
    """Terminate an active relationship and wait until it is terminated.

    Running it again on a relationship that is still terminating only polls.
    """
    confirm_or_abort(
        "This removes all delegated access to the customer tenant. Continue?", assume_yes
    )
    cmd_ctx = command_context(ctx)
    console.print(f"\n[bold yellow]Terminating {relationship_id}...[/bold yellow]\n")
    try:
        terminated = cmd_ctx.relationships.terminate(
            relationship_id, refresh_on_conflict=refresh_on_conflict
        )
    except DelegatedAdminError as e:
        fail(e)
    console.print(f"[green]✓[/green] Relationship {terminated.id} is terminated")


# =============================================================================
# relationship reject
# =============================================================================


@relationship.command(name="reject")
@click.argument("relationship_id")
@click.option("--reason", required=True, help="Reason recorded with the rejection")
@click.option(
    "--refresh-on-conflict",
    is_flag=True,
    help="Re-read the relationship and retry once if its etag is stale",
)
@click.pass_context
def reject(
    ctx: click.Context, relationship_id: str, reason: str, refresh_on_conflict: bool
) -> None:
    """Reject a relationship that is still pending approval."""
    cmd_ctx = command_context(ctx)
    try:
        rejected = cmd_ctx.relationships.reject(
            relationship_id, reason, refresh_on_conflict=refresh_on_conflict
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except DelegatedAdminError as e:
        fail(e)
    console.print(f"[green]✓[/green] Relationship {rejected.id} rejected ({rejected.status.value})")


# =============================================================================
# relationship delete
# =============================================================================


@relationship.command(name="delete")
@click.argument("relationship_id")
@click.option("--yes", "assume_yes", is_flag=True, help="Skip confirmation prompt")
@click.option(
    "--refresh-on-conflict",
    is_flag=True,
    help="Re-read the relationship and retry once if its etag is stale",
)
@click.pass_context
def delete(
    ctx: click.Context, relationship_id: str, assume_yes: bool, refresh_on_conflict: bool
) -> None:
    """Delete a terminated relationship."""
    confirm_or_abort(f"Delete relationship {relationship_id}?", assume_yes)
    cmd_ctx = command_context(ctx)
    try:
        cmd_ctx.relationships.delete(relationship_id, refresh_on_conflict=refresh_on_conflict)
    except DelegatedAdminError as e:
        fail(e)
    console.print(f"[green]✓[/green] Relationship {relationship_id} deleted")


__all__ = ["relationship"]
