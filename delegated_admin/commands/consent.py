"""Bulk consent commands.

- consent apply: Apply the application consent request to many customer tenants
"""

import csv
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.table import Table

from ..exceptions import DelegatedAdminError
from ..models import BatchOutcome, Failure, Skipped, TenantReference
from .base import command_context, console, exit_with_error, fail

_RESULT_STYLES = {"success": "green", "skipped": "yellow", "failure": "red"}


def parse_tenant_option(value: str) -> TenantReference:
    """Parse ``<tenant id>`` or ``<tenant id>=<display name>``."""
    tenant_id, _, display_name = value.partition("=")
    return TenantReference(tenant_id.strip(), display_name.strip())


def _tenant_from_mapping(row: Dict[str, Any]) -> TenantReference:
    tenant_id = row.get("tenantId") or row.get("tenant_id") or ""
    display_name = row.get("displayName") or row.get("display_name") or row.get("name") or ""
    return TenantReference(str(tenant_id).strip(), str(display_name).strip())


def load_tenants_file(path: str) -> List[TenantReference]:
    """Read tenants from a JSON list (ids or objects) or a CSV with a tenant_id column."""
    file_path = Path(path)
    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() == ".csv":
        return [_tenant_from_mapping(row) for row in csv.DictReader(text.splitlines())]

    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("tenants") or data.get("value") or []
    tenants = []
    for item in data:
        if isinstance(item, str):
            tenants.append(TenantReference(item.strip()))
        else:
            tenants.append(_tenant_from_mapping(item))
    return tenants


def _print_outcomes(outcomes: List[BatchOutcome]) -> None:
    table = Table(title="Consent Results")
    table.add_column("Tenant", style="cyan")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    for outcome in outcomes:
        color = _RESULT_STYLES[outcome.result.kind]
        detail = outcome.result.reason if isinstance(outcome.result, (Failure, Skipped)) else ""
        table.add_row(
            outcome.tenant.label,
            f"[{color}]{outcome.result.kind}[/{color}]",
            detail,
        )
    console.print(table)


@click.group(name="consent")
def consent() -> None:
    """Customer consent for the service application."""
    pass


# =============================================================================
# consent apply
# =============================================================================


@consent.command(name="apply")
@click.option(
    "--tenant",
    "tenant_values",
    multiple=True,
    help="Customer tenant ID, optionally ID=Name (can specify multiple)",
)
@click.option(
    "--tenants-file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON or CSV file listing customer tenants",
)
@click.option(
    "--permissions-file",
    type=click.Path(dir_okay=False),
    help="Consent request JSON (default: DAM_CONSENT_FILE)",
)
@click.option(
    "--update-existing",
    is_flag=True,
    help="Delete and re-consent tenants where the application already exists",
)
@click.option("--workers", type=click.IntRange(min=1), default=1, help="Tenants processed in parallel")
@click.option(
    "--format",
    "format_type",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)
@click.pass_context
def apply(
    ctx: click.Context,
    tenant_values: tuple,
    tenants_file: Optional[str],
    permissions_file: Optional[str],
    update_existing: bool,
    workers: int,
    format_type: str,
) -> None:
    """Apply the consent request to every listed tenant.

    Each tenant is processed on its own: one tenant failing never stops the
    others. Exits with status 1 when any tenant failed.

    Example:
        delegated-admin consent apply --tenants-file customers.csv \\
            --permissions-file permissions.json --update-existing
    """
    try:
        tenants = [parse_tenant_option(v) for v in tenant_values]
        if tenants_file:
            tenants.extend(load_tenants_file(tenants_file))
    except (OSError, ValueError, KeyError, TypeError) as e:
        exit_with_error(f"Could not read tenants: {e}")
    if not tenants:
        exit_with_error("No tenants given; use --tenant or --tenants-file")

    cmd_ctx = command_context(ctx)
    try:
        request = cmd_ctx.config.load_consent(permissions_file)
        orchestrator = cmd_ctx.orchestrator(request, max_workers=workers)
        outcomes = orchestrator.apply_consent(
            tenants, cmd_ctx.credential, update_existing=update_existing
        )
    except DelegatedAdminError as e:
        fail(e)

    if format_type == "json":
        click.echo(json.dumps([o.to_dict() for o in outcomes], indent=2))
    else:
        _print_outcomes(outcomes)

    failed = sum(1 for o in outcomes if o.failed)
    if format_type == "table":
        console.print(
            f"\nTotal: {len(outcomes)} tenant(s), "
            f"{sum(1 for o in outcomes if o.succeeded)} consented, {failed} failed"
        )
    if failed:
        sys.exit(1)


__all__ = ["consent"]
