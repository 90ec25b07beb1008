"""Service identity commands.

- auth init: Interactive loopback authorization, stores the refresh token
- auth refresh: Check that the stored credential can still mint tokens
- auth show: Show which credential bundle is configured (secrets redacted)
"""

from dataclasses import replace
from typing import Optional

import click

from ..auth.loopback import LoopbackAuthExchanger
from ..exceptions import DelegatedAdminError
from ..models import CredentialBundle
from .base import command_context, console, exit_with_error, fail


@click.group(name="auth")
def auth() -> None:
    """Bootstrap and refresh the service identity."""
    pass


# =============================================================================
# auth init
# =============================================================================


@auth.command(name="init")
@click.option("--tenant-id", required=True, help="Partner tenant ID that owns the application")
@click.option("--client-id", required=True, help="Application (client) ID")
@click.option(
    "--client-secret",
    envvar="DAM_CLIENT_SECRET",
    prompt=True,
    hide_input=True,
    help="Application client secret (prompted if omitted)",
)
@click.option("--redirect-uri", help="Loopback redirect URI (default: DAM_REDIRECT_URI)")
@click.option("--scope", help="Scopes to request (default: DAM_AUTH_SCOPE)")
@click.option("--timeout", type=float, help="Seconds to wait for the browser callback")
@click.pass_context
def init(
    ctx: click.Context,
    tenant_id: str,
    client_id: str,
    client_secret: str,
    redirect_uri: Optional[str],
    scope: Optional[str],
    timeout: Optional[float],
) -> None:
    """Authorize interactively and save the resulting credential bundle.

    A local listener receives the browser redirect; the authorization code is
    exchanged for tokens and the refresh token is written to the credential
    store.

    Example:
        delegated-admin auth init --tenant-id <partner tenant> --client-id <app id>
    """
    cmd_ctx = command_context(ctx)
    exchanger = LoopbackAuthExchanger(cmd_ctx.config.auth, cmd_ctx.config.polling)

    console.print("\n[bold cyan]Waiting for browser authorization...[/bold cyan]\n")
    try:
        tokens = exchanger.authorize(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scope=scope,
            timeout=timeout,
        )
    except DelegatedAdminError as e:
        fail(e)

    refresh_token = tokens.get("refresh_token")
    if not refresh_token:
        exit_with_error("Token response contains no refresh_token; request offline_access")

    bundle = CredentialBundle(
        client_id=client_id,
        client_secret=client_secret,
        tenant_id=tenant_id,
        refresh_token=refresh_token,
    )
    try:
        cmd_ctx.store.save(cmd_ctx.config.credential_name, bundle)
    except DelegatedAdminError as e:
        fail(e)

    console.print("[green]✓[/green] Authorization complete")
    console.print(
        f"[green]✓[/green] Credential '{cmd_ctx.config.credential_name}' saved to "
        f"{cmd_ctx.config.credential_store}"
    )


# =============================================================================
# auth refresh
# =============================================================================


@auth.command(name="refresh")
@click.option("--tenant-id", help="Tenant to mint the token for (default: credential tenant)")
@click.option("--scope", help="Scope to request (default: DAM_GRAPH_SCOPE)")
@click.pass_context
def refresh(ctx: click.Context, tenant_id: Optional[str], scope: Optional[str]) -> None:
    """Exchange the stored refresh token for an access token.

    A rotated refresh token returned by the token endpoint is saved back.
    """
    cmd_ctx = command_context(ctx)
    try:
        bundle = cmd_ctx.credential
        token = cmd_ctx.refresher.refresh_bundle(
            bundle, tenant_id, scope or cmd_ctx.config.auth.graph_scope
        )
        if token.refresh_token and token.refresh_token != bundle.refresh_token:
            cmd_ctx.store.save(
                cmd_ctx.config.credential_name, replace(bundle, refresh_token=token.refresh_token)
            )
            console.print("[green]✓[/green] Rotated refresh token saved")
    except DelegatedAdminError as e:
        fail(e)

    console.print(f"[green]✓[/green] Token issued for tenant {token.tenant_id}")
    console.print(f"  scope:   {token.scope}")
    console.print(f"  expires: {token.expires_on.isoformat()}")


# =============================================================================
# auth show
# =============================================================================


@auth.command(name="show")
@click.pass_context
def show(ctx: click.Context) -> None:
    """Show the configured credential bundle without secrets."""
    cmd_ctx = command_context(ctx)
    try:
        bundle = cmd_ctx.credential
    except DelegatedAdminError as e:
        fail(e)
    console.print(f"Store:     {cmd_ctx.config.credential_store}")
    console.print(f"Name:      {cmd_ctx.config.credential_name}")
    console.print(f"Tenant:    {bundle.tenant_id}")
    console.print(f"Client ID: {bundle.client_id}")


__all__ = ["auth"]
