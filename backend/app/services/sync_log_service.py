# Overview: Operation log store (sync_operations): idempotency lookups and terminal state writes.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import SyncOperation
from ..models.sync import STATUS_PROCESSING, STATUS_APPLIED, STATUS_FAILED


def find_operation(org_id: int, client_op_id: str) -> Optional[SyncOperation]:
    return (
        db.session.query(SyncOperation)
        .filter_by(org_id=org_id, client_op_id=client_op_id)
        .first()
    )


def insert_processing(
    *,
    org_id: int,
    store_id: int | None,
    employee_id: int | None,
    client_op_id: str,
    op_type: str,
    payload: dict | None,
    occurred_at: Optional[datetime],
) -> SyncOperation:
    """
    Claim (org_id, client_op_id) by inserting a PROCESSING row.

    Flushes so the unique constraint fires here: a concurrent writer that
    claimed the key first surfaces as IntegrityError, which the caller turns
    into a dedup read.
    """
    entry = SyncOperation(
        org_id=org_id,
        store_id=store_id,
        employee_id=employee_id,
        client_op_id=client_op_id,
        op_type=op_type,
        status=STATUS_PROCESSING,
        payload=payload,
        occurred_at=occurred_at,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def mark_applied(entry: SyncOperation, result: dict | None) -> None:
    entry.status = STATUS_APPLIED
    entry.result = result
    entry.error_code = None
    entry.error_message = None


def mark_failed(entry: SyncOperation, error_code: str, error_message: str) -> None:
    entry.status = STATUS_FAILED
    entry.result = None
    entry.error_code = error_code
    entry.error_message = error_message


def to_apply_result(entry: SyncOperation, *, deduped: bool) -> dict:
    """
    Per-operation result as returned to the device.

    A PROCESSING row is only ever visible to its own transaction; if one is
    read anyway it is reported as FAILED so the device does not treat it as
    applied.
    """
    status = entry.status if entry.status in (STATUS_APPLIED, STATUS_FAILED) else STATUS_FAILED
    out = {
        "client_op_id": entry.client_op_id,
        "type": entry.op_type,
        "status": status,
        "deduped": deduped,
    }
    if status == STATUS_APPLIED:
        out["result"] = entry.result
    else:
        out["error_code"] = entry.error_code
        out["error_message"] = entry.error_message
    return out
