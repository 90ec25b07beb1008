"""Unit tests for data models."""

from datetime import datetime, timedelta, timezone

import pytest

from delegated_admin.exceptions import RemoteRequestError
from delegated_admin.models import (
    AccessAssignment,
    AccessToken,
    AssignmentOutcome,
    AssignmentOutcomeKind,
    BatchOutcome,
    CredentialBundle,
    Failure,
    Operation,
    Relationship,
    RelationshipStatus,
    Skipped,
    Success,
    TenantReference,
    parse_timestamp,
    unified_roles_payload,
)

pytestmark = pytest.mark.unit


# ============================================================================
# Timestamps and statuses
# ============================================================================


class TestParseTimestamp:
    def test_parses_seven_fraction_digits(self):
        parsed = parse_timestamp("2026-01-15T12:00:00.1234567Z")
        assert parsed == datetime(2026, 1, 15, 12, 0, 0, 123456, tzinfo=timezone.utc)

    def test_parses_without_fraction(self):
        parsed = parse_timestamp("2026-01-15T12:00:00Z")
        assert parsed.tzinfo is not None

    def test_empty_is_none(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestRelationshipStatus:
    def test_parse_is_case_insensitive(self):
        assert RelationshipStatus.parse("APPROVALPENDING") is RelationshipStatus.APPROVAL_PENDING

    def test_unknown_value(self):
        assert RelationshipStatus.parse("somethingNew") is RelationshipStatus.UNKNOWN
        assert RelationshipStatus.parse(None) is RelationshipStatus.UNKNOWN

    def test_settling_termination(self):
        assert RelationshipStatus.TERMINATING.is_settling_termination
        assert RelationshipStatus.TERMINATION_REQUESTED.is_settling_termination
        assert not RelationshipStatus.ACTIVE.is_settling_termination


# ============================================================================
# Credentials
# ============================================================================


class TestCredentialBundle:
    def test_requires_refresh_token(self):
        with pytest.raises(ValueError, match="Refresh token"):
            CredentialBundle("client", "secret", "tenant", "")

    def test_repr_redacts_secrets(self, credential):
        text = repr(credential)
        assert "app-client-secret" not in text
        assert "refresh-token-1" not in text
        assert "REDACTED" in text

    def test_copy_is_independent(self, credential, fixed_now):
        copied = credential.copy()
        copied.apply_token(AccessToken("tok", 3600, fixed_now(), "t", "scope"))

        assert copied.access_token == "tok"
        assert credential.access_token is None

    def test_apply_token_sets_expiry(self, credential, fixed_now):
        credential.apply_token(AccessToken("tok", 3600, fixed_now(), "t", "scope"))
        assert credential.expires_on == fixed_now() + timedelta(hours=1)

    def test_dict_round_trip_drops_access_token(self, credential, fixed_now):
        credential.apply_token(AccessToken("tok", 3600, fixed_now(), "t", "scope"))
        restored = CredentialBundle.from_dict(credential.to_dict())

        assert restored.refresh_token == "refresh-token-1"
        assert restored.access_token is None


class TestAccessToken:
    def test_is_expired_with_skew(self, fixed_now):
        token = AccessToken("tok", 300, fixed_now(), "t", "scope")

        assert not token.is_expired(now=fixed_now())
        assert token.is_expired(skew=timedelta(minutes=5), now=fixed_now())

    def test_authorization_header(self, fixed_now):
        token = AccessToken("tok", 300, fixed_now(), "t", "scope")
        assert token.authorization_header == "Bearer tok"
        assert "'tok'" not in repr(token)


# ============================================================================
# Directory objects
# ============================================================================


class TestRelationshipFromGraph:
    def test_parses_full_payload(self):
        data = {
            "@odata.etag": 'W/"abc"',
            "id": "rel-1",
            "displayName": "Contoso support",
            "status": "active",
            "duration": "P730D",
            "autoExtendDuration": "P180D",
            "customer": {"tenantId": "cust-1", "displayName": "Contoso"},
            "accessDetails": {
                "unifiedRoles": [
                    {"roleDefinitionId": "role-a"},
                    {"roleDefinitionId": "role-b"},
                ]
            },
            "createdDateTime": "2026-01-01T00:00:00Z",
        }

        rel = Relationship.from_graph(data)

        assert rel.status is RelationshipStatus.ACTIVE
        assert rel.etag == 'W/"abc"'
        assert rel.customer == TenantReference("cust-1", "Contoso")
        assert rel.unified_roles == frozenset({"role-a", "role-b"})

    def test_etag_falls_back_to_header(self):
        rel = Relationship.from_graph(
            {"id": "rel-1", "status": "created"}, headers={"ETag": 'W/"hdr"'}
        )
        assert rel.etag == 'W/"hdr"'
        assert rel.customer is None

    def test_with_status_keeps_identity(self):
        rel = Relationship("rel-1", "name", RelationshipStatus.ACTIVE, etag="e")
        updated = rel.with_status(RelationshipStatus.TERMINATING)
        assert updated.id == "rel-1"
        assert updated.etag == "e"
        assert rel.status is RelationshipStatus.ACTIVE


class TestAccessAssignmentFromGraph:
    def test_parses_container_and_roles(self):
        assignment = AccessAssignment.from_graph(
            "rel-1",
            {
                "id": "as-1",
                "status": "pending",
                "accessContainer": {"accessContainerId": "group-1"},
                "accessDetails": {"unifiedRoles": [{"roleDefinitionId": "role-a"}]},
                "@odata.etag": 'W/"1"',
            },
        )
        assert assignment.security_group_id == "group-1"
        assert assignment.role_ids == frozenset({"role-a"})
        assert assignment.etag == 'W/"1"'

    def test_operation_error_message(self):
        op = Operation.from_graph(
            "rel-1", {"id": "op-1", "status": "failed", "error": {"message": "boom"}}
        )
        assert op.error == "boom"

    def test_unified_roles_payload_is_sorted_and_unique(self):
        assert unified_roles_payload(["b", "a", "b"]) == [
            {"roleDefinitionId": "a"},
            {"roleDefinitionId": "b"},
        ]


# ============================================================================
# Results
# ============================================================================


class TestBatchOutcome:
    def test_failure_from_exception_keeps_status(self):
        error = RemoteRequestError("Request failed", status_code=403, remote_message="denied")
        failure = Failure.from_exception(error)

        assert failure.status_code == 403
        assert failure.error_type == "RemoteRequestError"
        assert "denied" in failure.reason

    def test_to_dict_by_kind(self):
        tenant = TenantReference("t-1", "Fabrikam")

        assert BatchOutcome(tenant, Success({"id": 1})).to_dict()["payload"] == {"id": 1}
        assert BatchOutcome(tenant, Skipped("present")).to_dict()["reason"] == "present"
        failed = BatchOutcome(tenant, Failure("boom", 500, "X")).to_dict()
        assert failed["result"] == "failure"
        assert failed["status_code"] == 500

    def test_flags(self):
        tenant = TenantReference("t-1")
        assert BatchOutcome(tenant, Success()).succeeded
        assert BatchOutcome(tenant, Failure("x")).failed
        assert not BatchOutcome(tenant, Skipped("x")).failed

    def test_tenant_label(self):
        assert TenantReference("t-1", "Fabrikam").label == "Fabrikam (t-1)"
        assert TenantReference("t-1").label == "t-1"
        with pytest.raises(ValueError):
            TenantReference("")


def test_assignment_outcome_ok():
    exists = AssignmentOutcome(AssignmentOutcomeKind.EXISTS, "g", frozenset())
    error = AssignmentOutcome(AssignmentOutcomeKind.ERROR, "g", frozenset(), reason="x")
    assert exists.ok
    assert not error.ok
