"""Fixtures for CLI command tests."""

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from delegated_admin.models import Relationship, RelationshipStatus, TenantReference


@pytest.fixture
def cli_runner():
    """Provide Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def cmd_ctx():
    """Mock CommandContext with a file credential store configuration."""
    ctx = MagicMock()
    ctx.config.credential_store = "file:.delegated-admin.json"
    ctx.config.credential_name = "default"
    ctx.config.auth.graph_scope = "https://graph.test/.default"
    return ctx


@pytest.fixture
def use_context(cmd_ctx):
    """Patch ``command_context`` in a command module to return ``cmd_ctx``."""
    patchers = []

    def _use(module: str):
        patcher = patch(f"delegated_admin.commands.{module}.command_context", return_value=cmd_ctx)
        patcher.start()
        patchers.append(patcher)
        return cmd_ctx

    yield _use
    for patcher in patchers:
        patcher.stop()


@pytest.fixture
def pending_relationship():
    return Relationship(
        id="rel-1",
        display_name="Contoso support",
        status=RelationshipStatus.APPROVAL_PENDING,
        etag='W/"1"',
        duration="P30D",
        auto_extend_duration="PT0S",
        customer=TenantReference("22222222-2222-2222-2222-222222222222", "Contoso"),
        unified_roles=frozenset({"729827e3-9c14-49f7-bb1b-9608f156bbb8"}),
    )
