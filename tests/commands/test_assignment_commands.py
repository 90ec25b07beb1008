"""CLI tests for access assignment commands."""

import json

import pytest

from delegated_admin.cli import cli
from delegated_admin.exceptions import RelationshipNotActiveError, TemplateNotFoundError
from delegated_admin.models import (
    AccessAssignment,
    AssignmentOutcome,
    AssignmentOutcomeKind,
)
from delegated_admin.services.role_templates import WELL_KNOWN_ROLES

pytestmark = pytest.mark.unit

READER = WELL_KNOWN_ROLES["Global Reader"]


@pytest.fixture
def ctx(use_context):
    return use_context("assignment")


def _assignment(assignment_id="as-1", group_id="g-1"):
    return AccessAssignment(
        id=assignment_id,
        relationship_id="rel-1",
        status="active",
        security_group_id=group_id,
        role_ids=frozenset({READER}),
        etag='W/"1"',
    )


class TestCreate:
    def test_requires_exactly_one_group_option(self, cli_runner, ctx):
        result = cli_runner.invoke(cli, ["assignment", "create", "rel-1", "--role", "Global Reader"])

        assert result.exit_code == 1
        assert "exactly one" in result.output
        ctx.assignments.create.assert_not_called()

    def test_group_name_is_ensured_first(self, cli_runner, ctx):
        ctx.assignments.groups.ensure_group.return_value = "g-1"
        ctx.assignments.create.return_value = AssignmentOutcome(
            AssignmentOutcomeKind.CREATED, "g-1", frozenset({READER}), assignment=_assignment()
        )

        result = cli_runner.invoke(
            cli,
            ["assignment", "create", "rel-1", "--group-name", "Readers", "--role", "Global Reader"],
        )

        assert result.exit_code == 0, result.output
        ctx.assignments.groups.ensure_group.assert_called_once_with("Readers")
        ctx.assignments.create.assert_called_once_with("rel-1", "g-1", [READER])
        assert "created" in result.output

    def test_inactive_relationship(self, cli_runner, ctx):
        ctx.assignments.create.side_effect = RelationshipNotActiveError("rel-1", "approvalPending")

        result = cli_runner.invoke(
            cli, ["assignment", "create", "rel-1", "--group-id", "g-1", "--role", "Global Reader"]
        )

        assert result.exit_code == 1
        assert "Wait for the customer" in result.output


class TestUpdateRemoveList:
    def test_update(self, cli_runner, ctx):
        ctx.assignments.update.return_value = _assignment()

        result = cli_runner.invoke(
            cli, ["assignment", "update", "rel-1", "as-1", "--role", "Global Reader"]
        )

        assert result.exit_code == 0, result.output
        ctx.assignments.update.assert_called_once_with(
            "rel-1", "as-1", [READER], refresh_on_conflict=False
        )

    def test_remove(self, cli_runner, ctx):
        result = cli_runner.invoke(cli, ["assignment", "remove", "rel-1", "as-1", "--yes"])

        assert result.exit_code == 0, result.output
        ctx.assignments.remove.assert_called_once_with("rel-1", "as-1", refresh_on_conflict=False)

    def test_list_json(self, cli_runner, ctx):
        ctx.assignments.list_assignments.return_value = [_assignment(), _assignment("as-2", "g-2")]

        result = cli_runner.invoke(cli, ["assignment", "list", "rel-1", "--format", "json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [a["security_group_id"] for a in data] == ["g-1", "g-2"]


class TestApplyTemplate:
    def test_exists_is_not_a_failure(self, cli_runner, ctx):
        ctx.assignments.apply_template.return_value = [
            AssignmentOutcome(AssignmentOutcomeKind.CREATED, "g-1", frozenset({READER}), group_name="A"),
            AssignmentOutcome(AssignmentOutcomeKind.EXISTS, "g-2", frozenset({READER}), group_name="B"),
        ]

        result = cli_runner.invoke(cli, ["assignment", "apply-template", "rel-1", "read-only"])

        assert result.exit_code == 0, result.output
        assert "exists" in result.output

    def test_error_entry_exits_non_zero(self, cli_runner, ctx):
        ctx.assignments.apply_template.return_value = [
            AssignmentOutcome(AssignmentOutcomeKind.ERROR, "", frozenset({READER}), reason="boom"),
        ]

        result = cli_runner.invoke(cli, ["assignment", "apply-template", "rel-1", "read-only"])

        assert result.exit_code == 1
        assert "1 of 1" in result.output

    def test_unknown_template(self, cli_runner, ctx):
        ctx.assignments.apply_template.side_effect = TemplateNotFoundError(
            "nope", available=["helpdesk"]
        )

        result = cli_runner.invoke(cli, ["assignment", "apply-template", "rel-1", "nope"])

        assert result.exit_code == 1
        assert "Available templates: helpdesk" in result.output
