# Overview: Append-only audit writer used by the sync pipeline, mutators and event subscribers.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditLog
from .result import (
    OUTCOME_SUCCESS,
    OUTCOME_REJECTED,
    OUTCOME_FAILED,
    DENIAL_VALIDATION_FAILED,
    DENIAL_BRANCH_FROZEN,
    DENIAL_DEPENDENCY_MISSING,
    DENIAL_POLICY_BLOCKED,
)


AUDIT_OUTCOMES = (OUTCOME_SUCCESS, OUTCOME_REJECTED, OUTCOME_FAILED)
DENIAL_REASONS = (
    DENIAL_VALIDATION_FAILED,
    DENIAL_BRANCH_FROZEN,
    DENIAL_DEPENDENCY_MISSING,
    DENIAL_POLICY_BLOCKED,
)

ACTOR_EMPLOYEE = "EMPLOYEE"
ACTOR_SYSTEM = "SYSTEM"


def write_audit(
    *,
    org_id: int,
    store_id: int | None,
    employee_id: int | None,
    actor_role: str | None,
    action_type: str,
    resource_type: str | None = None,
    resource_id=None,
    outcome: str = OUTCOME_SUCCESS,
    denial_reason: str | None = None,
    details: dict | None = None,
    occurred_at: Optional[datetime] = None,
    client_event_id: str | None = None,
    actor_type: str = ACTOR_EMPLOYEE,
) -> AuditLog:
    """
    Add one audit row to the current session.

    WHY no commit: the row must live or die with the change it describes.
    A mutator's audit row written inside a savepoint disappears with the
    savepoint; a rejection audit row commits with the FAILED log entry.

    action_type examples:
    - SYNC_OPERATION_APPLIED
    - SYNC_OPERATION_FAILED
    - SYNC_REJECTED_BRANCH_FROZEN
    - CASH_SESSION_OPENED / CASH_SESSION_CLOSED
    - SALE_FINALIZED
    - CASH_TENDER_ATTACHED_TO_SALE
    - BRANCH_FROZEN / BRANCH_UNFROZEN
    """
    if outcome not in AUDIT_OUTCOMES:
        raise ValueError(f"Unknown audit outcome: {outcome}")
    if denial_reason is not None and denial_reason not in DENIAL_REASONS:
        raise ValueError(f"Unknown denial reason: {denial_reason}")

    row = AuditLog(
        org_id=org_id,
        store_id=store_id,
        employee_id=employee_id,
        actor_role=actor_role,
        actor_type=actor_type,
        action_type=action_type,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        outcome=outcome,
        denial_reason=denial_reason,
        details=details,
        client_event_id=client_event_id,
    )
    if occurred_at is not None:
        row.occurred_at = occurred_at

    db.session.add(row)
    return row


def list_audit_logs(
    org_id: int,
    *,
    store_id: int | None = None,
    action_type: str | None = None,
    client_event_id: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    query = db.session.query(AuditLog).filter(AuditLog.org_id == org_id)
    if store_id is not None:
        query = query.filter(AuditLog.store_id == store_id)
    if action_type is not None:
        query = query.filter(AuditLog.action_type == action_type)
    if client_event_id is not None:
        query = query.filter(AuditLog.client_event_id == client_event_id)
    return query.order_by(AuditLog.id.asc()).limit(limit).all()
