"""
Branch Service: Branch-Active Guard and freeze/unfreeze

WHY: A tenant can suspend one location (fraud investigation, closure,
audit). While a branch is FROZEN no mutating operation may land on it,
whether it comes from a live terminal or from an offline device replaying
its queue days later.

USAGE:
    from app.services.branch_service import assert_branch_active

    verdict = assert_branch_active(org_id, store_id)
    if not verdict.ok:
        ...  # verdict.code is BRANCH_FROZEN or VALIDATION_FAILED
"""

from __future__ import annotations

from ..extensions import db
from ..models import Store
from ..models.tenancy import BRANCH_ACTIVE, BRANCH_FROZEN
from ..time_utils import utcnow
from .audit_service import write_audit, ACTOR_SYSTEM
from .result import (
    Ok,
    Err,
    Result,
    BRANCH_FROZEN as CODE_BRANCH_FROZEN,
    OUTCOME_REJECTED,
    DENIAL_BRANCH_FROZEN,
    validation_failed,
)


class BranchError(Exception):
    """Raised for invalid freeze/unfreeze requests."""
    pass


def get_branch(org_id: int, store_id: int | None) -> Store | None:
    if store_id is None:
        return None
    return db.session.query(Store).filter_by(id=store_id, org_id=org_id).first()


def assert_branch_active(org_id: int, store_id: int | None) -> Result:
    """
    Branch-Active Guard.

    Returns:
        Ok(store) when the branch exists in the tenant and is ACTIVE
        Err(BRANCH_FROZEN) when it is frozen
        Err(VALIDATION_FAILED) when it does not exist in the tenant

    SECURITY: A store id from another tenant is reported exactly like a
    missing one.
    """
    store = get_branch(org_id, store_id)
    if store is None:
        return validation_failed("Branch not found", store_id=store_id)

    if store.status == BRANCH_FROZEN:
        return Err(
            CODE_BRANCH_FROZEN,
            "Branch is frozen",
            OUTCOME_REJECTED,
            DENIAL_BRANCH_FROZEN,
            {"store_id": store.id},
        )

    return Ok(store)


def set_branch_status(org_id: int, store_id: int, status: str, *, actor_label: str | None = None) -> Store:
    """
    Freeze or unfreeze a branch and record it in the audit trail.

    Idempotent: setting the current status again is a no-op (no audit row).
    """
    if status not in (BRANCH_ACTIVE, BRANCH_FROZEN):
        raise BranchError(f"Invalid branch status: {status}")

    store = get_branch(org_id, store_id)
    if store is None:
        raise BranchError("Branch not found")

    if store.status == status:
        return store

    store.status = status
    store.frozen_at = utcnow() if status == BRANCH_FROZEN else None

    write_audit(
        org_id=org_id,
        store_id=store.id,
        employee_id=None,
        actor_role=None,
        actor_type=ACTOR_SYSTEM,
        action_type="BRANCH_FROZEN" if status == BRANCH_FROZEN else "BRANCH_UNFROZEN",
        resource_type="store",
        resource_id=store.id,
        details={"actor": actor_label} if actor_label else None,
    )
    db.session.commit()
    return store
