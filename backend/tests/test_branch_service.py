"""
Branch-Active Guard, branch freeze/unfreeze, device sessions and CLI tests.
"""

from datetime import timedelta

import pytest

from app.models import AuditLog, DeviceSession, Organization, Product, Register, Store
from app.services.audit_service import write_audit
from app.services.branch_service import BranchError, assert_branch_active, set_branch_status
from app.services.session_service import (
    SessionError,
    create_device_session,
    hash_token,
    revoke_session,
    validate_session,
)
from app.time_utils import utcnow

from conftest import EMPLOYEE_ID


# =============================================================================
# BRANCH-ACTIVE GUARD
# =============================================================================


class TestAssertBranchActive:

    def test_active_branch_passes(self, db_session, org_a, store_a):
        verdict = assert_branch_active(org_a.id, store_a.id)

        assert verdict.ok
        assert verdict.value.id == store_a.id

    def test_frozen_branch(self, db_session, org_a, store_a):
        set_branch_status(org_a.id, store_a.id, "FROZEN")

        verdict = assert_branch_active(org_a.id, store_a.id)

        assert not verdict.ok
        assert verdict.code == "BRANCH_FROZEN"
        assert verdict.outcome == "REJECTED"
        assert verdict.denial_reason == "BRANCH_FROZEN"

    def test_foreign_branch_looks_missing(self, db_session, org_a, store_b):
        foreign = assert_branch_active(org_a.id, store_b.id)
        missing = assert_branch_active(org_a.id, 99999)

        assert foreign.code == missing.code == "VALIDATION_FAILED"
        assert foreign.message == missing.message == "Branch not found"

    def test_none_store_is_not_found(self, db_session, org_a):
        assert assert_branch_active(org_a.id, None).code == "VALIDATION_FAILED"


class TestSetBranchStatus:

    def test_freeze_and_unfreeze_are_audited(self, db_session, org_a, store_a):
        frozen = set_branch_status(org_a.id, store_a.id, "FROZEN", actor_label="ops")
        assert frozen.is_frozen
        assert frozen.frozen_at is not None

        active = set_branch_status(org_a.id, store_a.id, "ACTIVE")
        assert not active.is_frozen
        assert active.frozen_at is None

        actions = [row.action_type for row in db_session.query(AuditLog).order_by(AuditLog.id).all()]
        assert actions == ["BRANCH_FROZEN", "BRANCH_UNFROZEN"]
        first = db_session.query(AuditLog).order_by(AuditLog.id).first()
        assert first.actor_type == "SYSTEM"
        assert first.details == {"actor": "ops"}

    def test_repeating_status_is_noop(self, db_session, org_a, store_a):
        set_branch_status(org_a.id, store_a.id, "FROZEN")
        set_branch_status(org_a.id, store_a.id, "FROZEN")

        assert db_session.query(AuditLog).count() == 1

    def test_invalid_status(self, db_session, org_a, store_a):
        with pytest.raises(BranchError):
            set_branch_status(org_a.id, store_a.id, "CLOSED")

    def test_cannot_freeze_other_tenants_branch(self, db_session, org_a, store_b):
        with pytest.raises(BranchError):
            set_branch_status(org_a.id, store_b.id, "FROZEN")
        assert db_session.get(Store, store_b.id).status == "ACTIVE"


# =============================================================================
# DEVICE SESSIONS
# =============================================================================


class TestDeviceSessions:

    def test_token_resolves_to_context(self, db_session, org_a, store_a):
        session, token = create_device_session(org_a.id, store_a.id, EMPLOYEE_ID, " cashier ", label="Tablet")

        context = validate_session(token)

        assert context.org_id == org_a.id
        assert context.store_id == store_a.id
        assert context.employee_id == EMPLOYEE_ID
        assert context.actor_role == "cashier"
        assert session.token_hash == hash_token(token)
        assert token not in {row.token_hash for row in db_session.query(DeviceSession).all()}

    def test_store_must_belong_to_org(self, db_session, org_a, store_b):
        with pytest.raises(SessionError):
            create_device_session(org_a.id, store_b.id, EMPLOYEE_ID, "cashier")

    def test_inactive_org_cannot_issue(self, db_session, org_a, store_a):
        org_a.is_active = False
        db_session.commit()

        with pytest.raises(SessionError):
            create_device_session(org_a.id, store_a.id, EMPLOYEE_ID, "cashier")

    def test_role_is_required(self, db_session, org_a, store_a):
        with pytest.raises(SessionError):
            create_device_session(org_a.id, store_a.id, EMPLOYEE_ID, "  ")

    def test_revoke(self, db_session, device_token):
        assert revoke_session(device_token) is True
        assert validate_session(device_token) is None
        assert revoke_session("unknown") is False

    def test_expiry(self, db_session, org_a, store_a):
        session, token = create_device_session(org_a.id, store_a.id, EMPLOYEE_ID, "cashier", ttl_hours=1)
        session.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert validate_session(token) is None

    def test_empty_token(self, db_session):
        assert validate_session("") is None


# =============================================================================
# CLI
# =============================================================================


class TestCli:

    def test_freeze_and_unfreeze(self, app, db_session, org_a, store_a):
        runner = app.test_cli_runner()
        org_id, store_id = org_a.id, store_a.id

        result = runner.invoke(args=["branches", "freeze", "--org-id", str(org_id), "--store-id", str(store_id)])
        assert result.exit_code == 0
        assert "FROZEN" in result.output
        assert not assert_branch_active(org_id, store_id).ok

        result = runner.invoke(args=["branches", "unfreeze", "--org-id", str(org_id), "--store-id", str(store_id)])
        assert result.exit_code == 0
        assert assert_branch_active(org_id, store_id).ok

    def test_freeze_unknown_branch_fails(self, app, db_session, org_a):
        result = app.test_cli_runner().invoke(args=["branches", "freeze", "--org-id", str(org_a.id), "--store-id", "999"])

        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_issue_token(self, app, db_session, org_a, store_a):
        result = app.test_cli_runner().invoke(args=[
            "devices", "issue-token",
            "--org-id", str(org_a.id),
            "--store-id", str(store_a.id),
            "--employee-id", "12",
        ])

        assert result.exit_code == 0
        token = result.output.strip().splitlines()[-1]
        context = validate_session(token)
        assert context.employee_id == 12
        assert context.actor_role == "cashier"

    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        assert runner.invoke(args=["system", "seed-demo"]).exit_code == 0
        assert runner.invoke(args=["system", "seed-demo"]).exit_code == 0

        assert db_session.query(Organization).count() == 1
        assert db_session.query(Store).count() == 1
        assert db_session.query(Register).count() == 1
        assert db_session.query(Product).count() == 3

    def test_outbox_commands(self, app, db_session):
        runner = app.test_cli_runner()

        status = runner.invoke(args=["outbox", "status"])
        assert status.exit_code == 0
        assert "Pending: 0" in status.output

        dispatch = runner.invoke(args=["outbox", "dispatch-once"])
        assert dispatch.exit_code == 0
        assert "delivered 0" in dispatch.output

        cleanup = runner.invoke(args=["outbox", "cleanup", "--retention-days", "0"])
        assert cleanup.exit_code == 0
        assert "Deleted 0" in cleanup.output


# =============================================================================
# AUDIT WRITER
# =============================================================================


class TestWriteAudit:

    def test_row_is_added_not_committed(self, db_session, org_a, store_a):
        row = write_audit(
            org_id=org_a.id,
            store_id=store_a.id,
            employee_id=EMPLOYEE_ID,
            actor_role="cashier",
            action_type="SALE_FINALIZED",
            resource_type="sale",
            resource_id=42,
            outcome="SUCCESS",
        )
        assert row.resource_id == "42"

        db_session.rollback()
        assert db_session.query(AuditLog).count() == 0

    @pytest.mark.parametrize("kwargs", [{"outcome": "MAYBE"}, {"denial_reason": "TOO_LATE"}])
    def test_rejects_unknown_vocabulary(self, db_session, org_a, kwargs):
        with pytest.raises(ValueError):
            write_audit(org_id=org_a.id, store_id=None, employee_id=None, actor_role=None,
                        action_type="SYNC_OPERATION_FAILED", **kwargs)
