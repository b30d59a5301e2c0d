"""
Offline Sync Service: Idempotent, ordered application of queued device operations

WHY: Branch devices keep selling and running cash sessions while the
connection is down, queueing each mutating action with a client-generated
id. When they reconnect they push the queue, often more than once. The
server must apply every logical operation at most once, in the order the
device recorded them, and answer every retry with the original outcome.

PER OPERATION (strictly in submission order):
1. Dedup: (org_id, client_op_id) already logged -> stored outcome, deduped
2. Claim the key with a PROCESSING log row (IntegrityError -> dedup read)
3. branch_id other than the session branch -> FAILED / VALIDATION_FAILED
4. Branch-Active Guard on the session branch -> FAILED / BRANCH_FROZEN, denial audited
5. Mutator inside a SAVEPOINT:
   - Ok  -> log APPLIED + audit SYNC_OPERATION_APPLIED, commit
   - Err -> roll back savepoint, log FAILED + audit, commit
6. Anything raised -> roll back the whole operation and stop the batch

Each operation commits on its own, so operations applied before a crash stay
applied and the device can resend the whole batch safely.

USAGE:
    service = OfflineSyncService()
    response = service.apply_operations(
        org_id, store_id, employee_id, actor_role, operations,
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.sync import OPERATION_TYPES, STATUS_FAILED
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, coerce_int
from .audit_service import write_audit
from .branch_service import assert_branch_active
from .result import (
    Err,
    BRANCH_FROZEN,
    NOT_IMPLEMENTED,
    validation_failed,
    OUTCOME_SUCCESS,
    OUTCOME_FAILED,
)
from .sync_log_service import (
    find_operation,
    insert_processing,
    mark_applied,
    mark_failed,
    to_apply_result,
)
from .sync_mutators import DEFAULT_MUTATORS, MutationContext


MAX_CLIENT_OP_ID_LENGTH = 64


class SyncError(Exception):
    """Malformed sync request envelope (400). Nothing has been applied."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SyncBatchInterrupted(Exception):
    """
    Infrastructure failure part-way through a batch.

    `results` holds the outcomes of the operations before `index`; those are
    committed. The operation at `index` left no trace.
    """

    def __init__(self, results: list[dict], index: int, client_op_id: str):
        super().__init__(f"Sync batch interrupted at operation {index} ({client_op_id})")
        self.results = results
        self.index = index
        self.client_op_id = client_op_id


@dataclass(frozen=True)
class ClientOperation:
    client_op_id: str
    op_type: str
    payload: Any = None
    occurred_at: Optional[datetime] = None
    branch_id: Optional[int] = None

    @classmethod
    def from_dict(cls, raw, index: int = 0) -> "ClientOperation":
        where = f"operations[{index}]"
        if not isinstance(raw, dict):
            raise SyncError(f"{where} must be an object")

        unknown = set(raw.keys()) - {"client_op_id", "type", "payload", "occurred_at", "branch_id"}
        if unknown:
            raise SyncError(f"{where}: unknown field: {sorted(unknown)[0]}")

        client_op_id = raw.get("client_op_id")
        if not isinstance(client_op_id, str) or not client_op_id.strip():
            raise SyncError(f"{where}.client_op_id is required")
        if client_op_id != client_op_id.strip():
            raise SyncError(f"{where}.client_op_id must not have leading or trailing whitespace")
        if len(client_op_id) > MAX_CLIENT_OP_ID_LENGTH:
            raise SyncError(f"{where}.client_op_id exceeds max length {MAX_CLIENT_OP_ID_LENGTH}")

        op_type = raw.get("type")
        if op_type not in OPERATION_TYPES:
            raise SyncError(
                f"{where}.type must be one of: {', '.join(OPERATION_TYPES)}",
                {"client_op_id": client_op_id},
            )

        payload = raw.get("payload")
        if payload is not None and not isinstance(payload, dict):
            raise SyncError(f"{where}.payload must be an object", {"client_op_id": client_op_id})

        try:
            occurred_at = parse_iso_datetime(raw.get("occurred_at"))
        except ValueError:
            raise SyncError(f"{where}.occurred_at must be an ISO-8601 datetime", {"client_op_id": client_op_id})

        branch_id = None
        if raw.get("branch_id") is not None:
            try:
                branch_id = coerce_int(raw["branch_id"], f"{where}.branch_id", minimum=1)
            except ValidationError as exc:
                raise SyncError(str(exc), {"client_op_id": client_op_id})

        return cls(
            client_op_id=client_op_id,
            op_type=op_type,
            payload=payload,
            occurred_at=occurred_at,
            branch_id=branch_id,
        )


def parse_operations(raw, *, max_batch_size: int = 100) -> list[ClientOperation]:
    """Validate the whole envelope before anything is applied."""
    if not isinstance(raw, list):
        raise SyncError("operations must be a list")
    if not raw:
        raise SyncError("operations cannot be empty")
    if len(raw) > max_batch_size:
        raise SyncError(f"operations cannot exceed {max_batch_size} per request", {"count": len(raw)})
    return [ClientOperation.from_dict(item, index) for index, item in enumerate(raw)]


class OfflineSyncService:
    """
    Apply pipeline for offline operations.

    Collaborators are injectable so tests can swap the guard, the audit
    writer, or individual mutators:

        branch_guard(org_id, store_id) -> Ok(store) | Err
        audit_writer(**fields) -> audit row (added, not committed)
        mutators[op_type](ctx, payload) -> Ok(result) | Err
    """

    def __init__(
        self,
        *,
        branch_guard: Callable = assert_branch_active,
        audit_writer: Callable = write_audit,
        mutators: dict | None = None,
    ):
        self.branch_guard = branch_guard
        self.audit_writer = audit_writer
        self.mutators = dict(DEFAULT_MUTATORS if mutators is None else mutators)

    def apply_operations(
        self,
        org_id: int,
        store_id: int,
        employee_id: int,
        actor_role: str | None,
        operations,
        *,
        stop_on_failure: bool = False,
    ) -> dict:
        """
        Apply `operations` in order and return {"results": [...]}.

        With stop_on_failure=True the batch stops after the first FAILED
        result (fresh or deduped) and "stopped_at" holds its index.

        Raises:
            SyncError if the envelope is malformed (nothing applied)
            SyncBatchInterrupted on infrastructure failure (earlier results committed)
        """
        ops = [
            op if isinstance(op, ClientOperation) else ClientOperation.from_dict(op, index)
            for index, op in enumerate(operations)
        ]

        results: list[dict] = []
        stopped_at = None
        for index, op in enumerate(ops):
            try:
                outcome = self._apply_one(org_id, store_id, employee_id, actor_role, op)
            except Exception as exc:
                db.session.rollback()
                raise SyncBatchInterrupted(results, index, op.client_op_id) from exc

            results.append(outcome)
            if stop_on_failure and outcome["status"] == STATUS_FAILED:
                stopped_at = index
                break

        response = {"results": results}
        if stopped_at is not None:
            response["stopped_at"] = stopped_at
        return response

    def _apply_one(self, org_id, store_id, employee_id, actor_role, op: ClientOperation) -> dict:
        existing = find_operation(org_id, op.client_op_id)
        if existing is not None:
            current_app.logger.debug("Sync dedup hit: org=%s op=%s", org_id, op.client_op_id)
            return to_apply_result(existing, deduped=True)

        try:
            entry = insert_processing(
                org_id=org_id,
                store_id=store_id,
                employee_id=employee_id,
                client_op_id=op.client_op_id,
                op_type=op.op_type,
                payload=op.payload,
                occurred_at=op.occurred_at,
            )
        except IntegrityError:
            # Another request claimed this client_op_id first
            db.session.rollback()
            existing = find_operation(org_id, op.client_op_id)
            if existing is None:
                raise
            return to_apply_result(existing, deduped=True)

        # The device session decides the branch; an operation may only restate it
        if op.branch_id is not None and op.branch_id != store_id:
            mismatch = validation_failed("branch_id does not match authenticated branch", branch_id=op.branch_id)
            return self._fail(entry, mismatch, op, actor_role, op.branch_id)

        verdict = self.branch_guard(org_id, store_id)
        if not verdict.ok:
            return self._fail(entry, verdict, op, actor_role, store_id)

        store = verdict.value

        mutator = self.mutators.get(op.op_type)
        if mutator is None:
            return self._fail(
                entry,
                Err(NOT_IMPLEMENTED, f"No handler for operation type {op.op_type}", OUTCOME_FAILED),
                op,
                actor_role,
                store_id,
            )

        ctx = MutationContext(
            org_id=org_id,
            store=store,
            employee_id=employee_id,
            actor_role=actor_role,
            client_op_id=op.client_op_id,
            occurred_at=op.occurred_at,
            audit_writer=self.audit_writer,
        )

        # The PROCESSING insert already opened the transaction; the SAVEPOINT nests in it
        savepoint = db.session.begin_nested()
        outcome = mutator(ctx, op.payload)
        if not outcome.ok:
            savepoint.rollback()
            return self._fail(entry, outcome, op, actor_role, store_id)
        savepoint.commit()

        mark_applied(entry, outcome.value)
        self.audit_writer(
            org_id=org_id,
            store_id=store.id,
            employee_id=employee_id,
            actor_role=actor_role,
            action_type="SYNC_OPERATION_APPLIED",
            resource_type="sync_operation",
            resource_id=op.client_op_id,
            outcome=OUTCOME_SUCCESS,
            details={"type": op.op_type, "result": outcome.value},
            occurred_at=op.occurred_at,
            client_event_id=op.client_op_id,
        )
        db.session.commit()
        return to_apply_result(entry, deduped=False)

    def _fail(self, entry, err: Err, op: ClientOperation, actor_role, target_store_id) -> dict:
        """Record a typed failure: FAILED log entry plus its audit row, one commit."""
        mark_failed(entry, err.code, err.message)

        details = {"type": op.op_type, "error_code": err.code, "error_message": err.message}
        if target_store_id != entry.store_id:
            details["requested_store_id"] = target_store_id
        details.update(err.details)

        self.audit_writer(
            org_id=entry.org_id,
            store_id=entry.store_id,
            employee_id=entry.employee_id,
            actor_role=actor_role,
            action_type="SYNC_REJECTED_BRANCH_FROZEN" if err.code == BRANCH_FROZEN else "SYNC_OPERATION_FAILED",
            resource_type="sync_operation",
            resource_id=op.client_op_id,
            outcome=err.outcome,
            denial_reason=err.denial_reason,
            details=details,
            occurred_at=op.occurred_at,
            client_event_id=op.client_op_id,
        )
        db.session.commit()

        current_app.logger.info(
            "Sync operation failed: org=%s op=%s type=%s code=%s",
            entry.org_id, op.client_op_id, op.op_type, err.code,
        )
        return to_apply_result(entry, deduped=False)
