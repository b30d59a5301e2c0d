# Overview: Domain event envelope and the versioned event contracts published through the outbox.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..time_utils import to_utc_z


SALE_FINALIZED_V1 = "sales.sale_finalized"
CASH_SESSION_OPENED_V1 = "cash.session_opened"
CASH_SESSION_CLOSED_V1 = "cash.session_closed"
CASH_SALE_CASH_RECORDED_V1 = "cash.sale_cash_recorded"


@dataclass(frozen=True)
class DomainEvent:
    """
    Event as stored in outbox_events and delivered to bus subscribers.

    Payloads are plain JSON-safe dicts; ids are ints, times are ISO strings.
    """
    event_type: str
    org_id: Optional[int]
    payload: dict = field(default_factory=dict)
    version: int = 1
    outbox_id: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "DomainEvent":
        return cls(
            event_type=row.event_type,
            org_id=row.org_id,
            payload=dict(row.payload or {}),
            version=row.version,
            outbox_id=row.id,
        )


def sale_finalized(
    *,
    org_id: int,
    store_id: int,
    sale_id: int,
    employee_id: int,
    payment_method: str,
    total_cents: int,
    cash_received_cents: int | None,
    change_due_cents: int,
    finalized_at: datetime,
    client_op_id: str | None = None,
) -> DomainEvent:
    return DomainEvent(
        event_type=SALE_FINALIZED_V1,
        org_id=org_id,
        payload={
            "org_id": org_id,
            "store_id": store_id,
            "sale_id": sale_id,
            "employee_id": employee_id,
            "payment_method": payment_method,
            "total_cents": total_cents,
            "cash_received_cents": cash_received_cents,
            "change_due_cents": change_due_cents,
            "finalized_at": to_utc_z(finalized_at),
            "client_op_id": client_op_id,
        },
    )


def cash_session_opened(
    *,
    org_id: int,
    store_id: int,
    session_id: int,
    register_id: int | None,
    employee_id: int,
    opening_float_cents: int,
    opened_at: datetime,
) -> DomainEvent:
    return DomainEvent(
        event_type=CASH_SESSION_OPENED_V1,
        org_id=org_id,
        payload={
            "org_id": org_id,
            "store_id": store_id,
            "session_id": session_id,
            "register_id": register_id,
            "employee_id": employee_id,
            "opening_float_cents": opening_float_cents,
            "opened_at": to_utc_z(opened_at),
        },
    )


def cash_session_closed(
    *,
    org_id: int,
    store_id: int,
    session_id: int,
    employee_id: int,
    status: str,
    expected_cash_cents: int,
    counted_cash_cents: int,
    variance_cents: int,
    closed_at: datetime,
) -> DomainEvent:
    return DomainEvent(
        event_type=CASH_SESSION_CLOSED_V1,
        org_id=org_id,
        payload={
            "org_id": org_id,
            "store_id": store_id,
            "session_id": session_id,
            "employee_id": employee_id,
            "status": status,
            "expected_cash_cents": expected_cash_cents,
            "counted_cash_cents": counted_cash_cents,
            "variance_cents": variance_cents,
            "closed_at": to_utc_z(closed_at),
        },
    )


def sale_cash_recorded(
    *,
    org_id: int,
    store_id: int,
    session_id: int,
    sale_id: int,
    movement_id: int,
    amount_cents: int,
) -> DomainEvent:
    return DomainEvent(
        event_type=CASH_SALE_CASH_RECORDED_V1,
        org_id=org_id,
        payload={
            "org_id": org_id,
            "store_id": store_id,
            "session_id": session_id,
            "sale_id": sale_id,
            "movement_id": movement_id,
            "amount_cents": amount_cents,
        },
    )
