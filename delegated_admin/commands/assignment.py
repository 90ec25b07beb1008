"""Access assignment commands.

- assignment create: Bind a security group to approved roles
- assignment update: Replace the roles of an assignment
- assignment remove: Delete an assignment
- assignment list: List assignments on a relationship
- assignment apply-template: Apply a named role template
"""

import json
import sys
from dataclasses import replace
from typing import List, Optional

import click
from rich.table import Table

from ..exceptions import DelegatedAdminError
from ..models import AssignmentOutcome, AssignmentOutcomeKind
from ..services.role_templates import resolve_roles
from .base import (
    assignment_to_dict,
    command_context,
    confirm_or_abort,
    console,
    exit_with_error,
    fail,
    role_names,
)

_OUTCOME_STYLES = {
    AssignmentOutcomeKind.CREATED: "green",
    AssignmentOutcomeKind.EXISTS: "yellow",
    AssignmentOutcomeKind.ERROR: "red",
}

_role_option = click.option(
    "--role",
    "roles",
    multiple=True,
    required=True,
    help="Role name or role definition ID (can specify multiple)",
)

_refresh_option = click.option(
    "--refresh-on-conflict",
    is_flag=True,
    help="Re-read the assignment and retry once if its etag is stale",
)


def _print_outcomes(outcomes: List[AssignmentOutcome]) -> None:
    table = Table(title="Access Assignments")
    table.add_column("Group", style="cyan")
    table.add_column("Roles", style="blue")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    for outcome in outcomes:
        color = _OUTCOME_STYLES[outcome.kind]
        detail = outcome.assignment.id if outcome.assignment else (outcome.reason or "")
        table.add_row(
            outcome.group_name or outcome.group_id or "N/A",
            role_names(outcome.role_ids),
            f"[{color}]{outcome.kind.value}[/{color}]",
            detail,
        )
    console.print(table)


@click.group(name="assignment")
def assignment() -> None:
    """Access assignment commands (relationship must be active)."""
    pass


# =============================================================================
# assignment create
# =============================================================================


@assignment.command(name="create")
@click.argument("relationship_id")
@click.option("--group-id", help="Security group object ID")
@click.option("--group-name", help="Security group display name (created if missing)")
@_role_option
@click.pass_context
def create(
    ctx: click.Context,
    relationship_id: str,
    group_id: Optional[str],
    group_name: Optional[str],
    roles: tuple,
) -> None:
    """Assign approved roles to a security group.

    Example:
        delegated-admin assignment create <relationship id> \\
            --group-name "GDAP Helpdesk" --role "Helpdesk Administrator"
    """
    if bool(group_id) == bool(group_name):
        exit_with_error("Pass exactly one of --group-id or --group-name")

    cmd_ctx = command_context(ctx)
    try:
        if group_name:
            group_id = cmd_ctx.assignments.groups.ensure_group(group_name)
        outcome = cmd_ctx.assignments.create(relationship_id, group_id, resolve_roles(roles))
    except ValueError as e:
        exit_with_error(str(e))
    except DelegatedAdminError as e:
        fail(e)

    if group_name:
        outcome = replace(outcome, group_name=group_name)
    _print_outcomes([outcome])


# =============================================================================
# assignment update
# =============================================================================


@assignment.command(name="update")
@click.argument("relationship_id")
@click.argument("assignment_id")
@_role_option
@_refresh_option
@click.pass_context
def update(
    ctx: click.Context,
    relationship_id: str,
    assignment_id: str,
    roles: tuple,
    refresh_on_conflict: bool,
) -> None:
    """Replace the roles of an existing assignment."""
    cmd_ctx = command_context(ctx)
    try:
        updated = cmd_ctx.assignments.update(
            relationship_id,
            assignment_id,
            resolve_roles(roles),
            refresh_on_conflict=refresh_on_conflict,
        )
    except ValueError as e:
        exit_with_error(str(e))
    except DelegatedAdminError as e:
        fail(e)
    console.print(f"[green]✓[/green] Assignment {updated.id} updated ({updated.status})")
    console.print(f"  roles: {role_names(updated.role_ids)}")


# =============================================================================
# assignment remove
# =============================================================================


@assignment.command(name="remove")
@click.argument("relationship_id")
@click.argument("assignment_id")
@click.option("--yes", "assume_yes", is_flag=True, help="Skip confirmation prompt")
@_refresh_option
@click.pass_context
def remove(
    ctx: click.Context,
    relationship_id: str,
    assignment_id: str,
    assume_yes: bool,
    refresh_on_conflict: bool,
) -> None:
    """Remove an assignment from a relationship."""
    confirm_or_abort(f"Remove assignment {assignment_id}?", assume_yes)
    cmd_ctx = command_context(ctx)
    try:
        cmd_ctx.assignments.remove(
            relationship_id, assignment_id, refresh_on_conflict=refresh_on_conflict
        )
    except DelegatedAdminError as e:
        fail(e)
    console.print(f"[green]✓[/green] Assignment {assignment_id} removal requested")


# =============================================================================
# assignment list
# =============================================================================


@assignment.command(name="list")
@click.argument("relationship_id")
@click.option(
    "--format",
    "format_type",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)
@click.pass_context
def list_assignments(ctx: click.Context, relationship_id: str, format_type: str) -> None:
    """List access assignments on a relationship."""
    cmd_ctx = command_context(ctx)
    try:
        assignments = cmd_ctx.assignments.list_assignments(relationship_id)
    except DelegatedAdminError as e:
        fail(e)

    if format_type == "json":
        click.echo(json.dumps([assignment_to_dict(a) for a in assignments], indent=2))
        return
    if not assignments:
        console.print("[yellow]No access assignments found[/yellow]")
        return

    table = Table(title=f"Access Assignments on {relationship_id}")
    table.add_column("Group", style="cyan")
    table.add_column("Roles", style="blue")
    table.add_column("Status")
    table.add_column("ID", style="dim")
    for a in assignments:
        table.add_row(a.security_group_id, role_names(a.role_ids), a.status, a.id)
    console.print(table)
    console.print(f"\nTotal: {len(assignments)} assignment(s)")


# =============================================================================
# assignment apply-template
# =============================================================================


@assignment.command(name="apply-template")
@click.argument("relationship_id")
@click.argument("template_name")
@click.pass_context
def apply_template(ctx: click.Context, relationship_id: str, template_name: str) -> None:
    """Apply a role template: create its groups and assignments.

    Existing assignments are reported as 'exists'. Exits with status 1 when
    any entry failed.

    Example:
        delegated-admin assignment apply-template <relationship id> helpdesk
    """
    cmd_ctx = command_context(ctx)
    try:
        outcomes = cmd_ctx.assignments.apply_template(relationship_id, template_name)
    except DelegatedAdminError as e:
        fail(e)

    _print_outcomes(outcomes)
    failed = [o for o in outcomes if not o.ok]
    if failed:
        console.print(f"\n[red]{len(failed)} of {len(outcomes)} assignment(s) failed[/red]")
        sys.exit(1)
    console.print(f"\n[green]✓[/green] Template '{template_name}' applied")


__all__ = ["assignment"]
