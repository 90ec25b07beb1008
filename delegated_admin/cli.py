"""Command line entry point: ``delegated-admin``."""

import click

from .commands import register_all_commands


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (DEBUG, INFO, WARNING, ERROR)",
)
@click.option(
    "--credential-store",
    help="Credential store URI: file:<path>, env:<prefix>[@<.env>] or keyvault:<url> "
    "(default: DAM_CREDENTIAL_STORE)",
)
@click.option(
    "--credential-name",
    help="Name of the credential bundle in the store (default: DAM_CREDENTIAL_NAME)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    log_level: str,
    credential_store: str,
    credential_name: str,
) -> None:
    """Delegated Admin Manager - partner relationships, access assignments and consent."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper()
    ctx.obj["credential_store"] = credential_store
    ctx.obj["credential_name"] = credential_name


register_all_commands(cli)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
