"""Command registry for the delegated-admin CLI.

Each command group lives in its own module; ``register_all_commands`` imports
them and attaches the group to the top-level CLI.
"""

import importlib
import logging

import click

from .base import CommandContext, command_context, exit_with_error, fail

logger = logging.getLogger(__name__)

# Mapping of command names to their module paths
_COMMAND_MODULES: dict = {
    "auth": "delegated_admin.commands.auth",
    "relationship": "delegated_admin.commands.relationship",
    "assignment": "delegated_admin.commands.assignment",
    "consent": "delegated_admin.commands.consent",
    "templates": "delegated_admin.commands.templates",
}


def register_all_commands(cli_group: click.Group) -> None:
    """Register all commands with a CLI group.

    Args:
        cli_group: Click group to register commands with
    """
    for name, module_path in _COMMAND_MODULES.items():
        module = importlib.import_module(module_path)
        command = getattr(module, name.replace("-", "_"), None)
        if isinstance(command, click.Command):
            cli_group.add_command(command, name)
            logger.debug(f"Added command {name} to CLI")
        else:
            logger.warning(f"Module {module_path} does not define command '{name}'")


__all__ = [
    "CommandContext",
    "command_context",
    "exit_with_error",
    "fail",
    "register_all_commands",
]
