"""Role template commands.

- templates list: List built-in and loaded templates
- templates show: Show the groups and roles of one template
"""

import json

import click
import yaml
from rich.table import Table

from ..exceptions import TemplateNotFoundError
from ..services.role_templates import role_name
from .base import command_context, console, exit_with_error, fail


@click.group(name="templates")
def templates() -> None:
    """Role templates for access assignments."""
    pass


@templates.command(name="list")
@click.option(
    "--format",
    "format_type",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)
@click.pass_context
def list_templates(ctx: click.Context, format_type: str) -> None:
    """List role templates (DAM_TEMPLATES_FILE adds more)."""
    cmd_ctx = command_context(ctx)
    try:
        registry = cmd_ctx.templates
    except (OSError, ValueError, KeyError, yaml.YAMLError) as e:
        exit_with_error(f"Could not load templates: {e}")

    items = [registry.get(name) for name in registry.names()]
    if format_type == "json":
        output = [
            {
                "name": t.name,
                "description": t.description,
                "assignments": [
                    {"group": e.group_name, "roles": list(e.role_ids)} for e in t.entries
                ],
            }
            for t in items
        ]
        click.echo(json.dumps(output, indent=2))
        return

    table = Table(title="Role Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Groups", justify="right")
    table.add_column("Roles", justify="right")
    for t in items:
        table.add_row(t.name, t.description, str(len(t.entries)), str(len(t.role_ids)))
    console.print(table)


@templates.command(name="show")
@click.argument("name")
@click.pass_context
def show(ctx: click.Context, name: str) -> None:
    """Show the groups and roles of a template."""
    cmd_ctx = command_context(ctx)
    try:
        template = cmd_ctx.templates.get(name)
    except TemplateNotFoundError as e:
        fail(e)

    table = Table(title=f"Template {template.name}")
    table.add_column("Group", style="cyan")
    table.add_column("Roles", style="blue")
    for entry in template.entries:
        table.add_row(entry.group_name, "\n".join(role_name(r) for r in entry.role_ids))
    console.print(table)


__all__ = ["templates"]
