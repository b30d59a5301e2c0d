# Overview: Cash-side subscribers for sales events delivered by the outbox dispatcher.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashSession, CashMovement
from ..models.registers import SESSION_OPEN, MOVEMENT_SALE_CASH
from .audit_service import write_audit
from .concurrency import lock_for_update, run_with_retry
from .domain_events import DomainEvent, SALE_FINALIZED_V1, sale_cash_recorded
from .event_bus import EventBus
from .outbox_service import publish_via_outbox


def on_sale_finalized(event: DomainEvent) -> int | None:
    """
    Attach a cash sale to the cashier's open drawer session.

    Records a SALE_CASH movement for the sale total, raises the session's
    expected cash, audits CASH_TENDER_ATTACHED_TO_SALE and publishes
    cash.sale_cash_recorded, all in one transaction.

    Skipped (returns None) when the sale was not paid in cash, when the
    employee has no OPEN session in the branch, or when the movement already
    exists (redelivery).
    """
    payload = event.payload
    if payload.get("payment_method") != "cash":
        return None

    org_id = payload["org_id"]
    store_id = payload["store_id"]
    sale_id = payload["sale_id"]
    employee_id = payload["employee_id"]
    amount_cents = int(payload["total_cents"])

    def _attach():
        already = (
            db.session.query(CashMovement.id)
            .filter_by(sale_id=sale_id, movement_type=MOVEMENT_SALE_CASH)
            .first()
        )
        if already is not None:
            return None

        session = lock_for_update(
            db.session.query(CashSession)
            .filter_by(org_id=org_id, store_id=store_id, opened_by_employee_id=employee_id, status=SESSION_OPEN)
            .order_by(CashSession.opened_at.desc(), CashSession.id.desc())
        ).first()
        if session is None:
            return None

        movement = CashMovement(
            org_id=org_id,
            store_id=store_id,
            session_id=session.id,
            register_id=session.register_id,
            employee_id=employee_id,
            movement_type=MOVEMENT_SALE_CASH,
            amount_cents=amount_cents,
            sale_id=sale_id,
            reason=f"Sale {sale_id}",
        )
        db.session.add(movement)
        session.expected_cash_cents = session.expected_cash_cents + amount_cents
        db.session.flush()

        publish_via_outbox(
            sale_cash_recorded(
                org_id=org_id,
                store_id=store_id,
                session_id=session.id,
                sale_id=sale_id,
                movement_id=movement.id,
                amount_cents=amount_cents,
            ),
            db.session,
        )
        write_audit(
            org_id=org_id,
            store_id=store_id,
            employee_id=employee_id,
            actor_role=None,
            action_type="CASH_TENDER_ATTACHED_TO_SALE",
            resource_type="sale",
            resource_id=sale_id,
            details={
                "session_id": session.id,
                "register_id": session.register_id,
                "movement_id": movement.id,
                "amount_cents": amount_cents,
            },
        )
        db.session.commit()
        return movement.id

    try:
        return run_with_retry(_attach)
    except IntegrityError:
        # Concurrent delivery recorded the same movement first
        db.session.rollback()
        return None
    except Exception:
        db.session.rollback()
        raise


def register_cash_handlers(bus: EventBus) -> None:
    bus.subscribe(SALE_FINALIZED_V1, on_sale_finalized)
