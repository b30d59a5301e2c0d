"""
Domain mutators for offline operations.

One function per operation type, all with the same signature:

    mutator(ctx: MutationContext, payload) -> Ok(result) | Err(...)

A mutator validates its payload, performs its effect through db.session,
writes its own domain audit row, and stages its domain event with
publish_via_outbox(). It never commits: the pipeline runs it inside a
savepoint and decides what survives.

Expected failures (bad payload, missing register, session not open) come
back as Err. Anything raised is treated as an infrastructure failure and
rolls back the whole operation.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from flask import current_app

from ..extensions import db
from ..models import Store, Register, CashSession, Product, Sale, SaleLine
from ..models.registers import SESSION_OPEN, SESSION_CLOSED, SESSION_PENDING_REVIEW
from ..models.sync import OP_SALE_FINALIZED, OP_CASH_SESSION_OPENED, OP_CASH_SESSION_CLOSED
from ..time_utils import business_time
from ..validation import (
    ValidationError,
    require_mapping,
    reject_unknown_fields,
    coerce_int,
    coerce_cents,
    dollars_to_cents,
    coerce_choice,
    coerce_str,
)
from .audit_service import write_audit
from .concurrency import lock_for_update
from .outbox_service import publish_via_outbox
from .result import Ok, Result, validation_failed, dependency_missing, conflict
from . import domain_events


SALE_TYPES = ("dine_in", "take_away", "delivery")
PAYMENT_METHODS = ("cash", "qr")

MAX_SALE_ITEMS = 200
MAX_LINE_QUANTITY = 9999
MAX_NOTE_LENGTH = 500


@dataclass(frozen=True)
class MutationContext:
    org_id: int
    store: Store
    employee_id: int
    actor_role: Optional[str]
    client_op_id: str
    occurred_at: Optional[datetime] = None
    audit_writer: Callable = write_audit

    @property
    def store_id(self) -> int:
        return self.store.id

    def audit(self, action_type: str, resource_type: str, resource_id, details: dict) -> None:
        self.audit_writer(
            org_id=self.org_id,
            store_id=self.store_id,
            employee_id=self.employee_id,
            actor_role=self.actor_role,
            action_type=action_type,
            resource_type=resource_type,
            resource_id=resource_id,
            details={"source": "OFFLINE_SYNC", "client_op_id": self.client_op_id, **details},
            occurred_at=self.occurred_at,
            client_event_id=self.client_op_id,
        )


def payload_errors_as_err(func):
    """Turn ValidationError raised while reading the payload into Err(VALIDATION_FAILED)."""
    @functools.wraps(func)
    def wrapper(ctx: MutationContext, payload) -> Result:
        try:
            return func(ctx, payload)
        except ValidationError as exc:
            return validation_failed(str(exc))
    return wrapper


# ---------------------------------------------------------------------------
# CASH_SESSION_OPENED
# ---------------------------------------------------------------------------

@payload_errors_as_err
def apply_cash_session_opened(ctx: MutationContext, payload) -> Result:
    payload = require_mapping(payload if payload is not None else {})
    reject_unknown_fields(payload, {"register_id", "opening_float_cents", "float_usd", "note"})

    if "opening_float_cents" in payload and "float_usd" in payload:
        raise ValidationError("Provide opening_float_cents or float_usd, not both")
    if "opening_float_cents" in payload:
        opening_float_cents = coerce_cents(payload["opening_float_cents"], "opening_float_cents")
    elif "float_usd" in payload:
        opening_float_cents = dollars_to_cents(payload["float_usd"], "float_usd")
    else:
        opening_float_cents = 0

    register_id = None
    if payload.get("register_id") is not None:
        register_id = coerce_int(payload["register_id"], "register_id", minimum=1)
    note = coerce_str(payload.get("note"), "note", max_length=MAX_NOTE_LENGTH, required=False)

    open_sessions = db.session.query(CashSession).filter(
        CashSession.org_id == ctx.org_id,
        CashSession.status == SESSION_OPEN,
    )
    if register_id is not None:
        register = db.session.query(Register).filter_by(id=register_id).first()
        if register is None:
            return dependency_missing("Register not found", register_id=register_id)
        if register.org_id != ctx.org_id or register.store_id != ctx.store_id:
            return validation_failed("Register does not belong to this tenant/branch")
        if not register.is_active:
            return validation_failed("Register is not active")

        if open_sessions.filter(CashSession.register_id == register_id).first() is not None:
            return conflict("A session is already open on this register")
    else:
        already_open = open_sessions.filter(
            CashSession.store_id == ctx.store_id,
            CashSession.register_id.is_(None),
        ).first()
        if already_open is not None:
            return conflict("A session is already open for this branch")

    opened_at = business_time(ctx.occurred_at)
    session = CashSession(
        org_id=ctx.org_id,
        store_id=ctx.store_id,
        register_id=register_id,
        status=SESSION_OPEN,
        opened_by_employee_id=ctx.employee_id,
        opening_float_cents=opening_float_cents,
        expected_cash_cents=opening_float_cents,
        opened_at=opened_at,
        note=note,
    )
    db.session.add(session)
    db.session.flush()

    ctx.audit(
        "CASH_SESSION_OPENED",
        "cash_session",
        session.id,
        {"register_id": register_id, "opening_float_cents": opening_float_cents, "note": note},
    )
    publish_via_outbox(
        domain_events.cash_session_opened(
            org_id=ctx.org_id,
            store_id=ctx.store_id,
            session_id=session.id,
            register_id=register_id,
            employee_id=ctx.employee_id,
            opening_float_cents=opening_float_cents,
            opened_at=opened_at,
        ),
        db.session,
    )

    return Ok({"type": OP_CASH_SESSION_OPENED, "session_id": session.id})


# ---------------------------------------------------------------------------
# CASH_SESSION_CLOSED
# ---------------------------------------------------------------------------

@payload_errors_as_err
def apply_cash_session_closed(ctx: MutationContext, payload) -> Result:
    payload = require_mapping(payload)
    reject_unknown_fields(payload, {"session_id", "counted_cash_cents", "note"})

    session_id = coerce_int(payload.get("session_id"), "session_id", minimum=1)
    counted_cash_cents = coerce_cents(payload.get("counted_cash_cents"), "counted_cash_cents")
    note = coerce_str(payload.get("note"), "note", max_length=MAX_NOTE_LENGTH, required=False)

    session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
    if session is None:
        return dependency_missing("Session not found", session_id=session_id)
    if session.org_id != ctx.org_id or session.store_id != ctx.store_id:
        return validation_failed("Session does not belong to this tenant/branch")
    if session.status != SESSION_OPEN:
        return validation_failed("Session is not open", status=session.status)

    threshold = ctx.store.variance_threshold_cents
    if threshold is None:
        threshold = current_app.config["CASH_VARIANCE_THRESHOLD_CENTS"]

    expected = session.expected_cash_cents
    variance = counted_cash_cents - expected
    status = SESSION_PENDING_REVIEW if abs(variance) > threshold else SESSION_CLOSED
    closed_at = business_time(ctx.occurred_at)

    session.status = status
    session.counted_cash_cents = counted_cash_cents
    session.variance_cents = variance
    session.closed_by_employee_id = ctx.employee_id
    session.closed_at = closed_at
    if note is not None:
        session.note = note
    db.session.flush()

    ctx.audit(
        "CASH_SESSION_CLOSED",
        "cash_session",
        session.id,
        {
            "status": status,
            "expected_cash_cents": expected,
            "counted_cash_cents": counted_cash_cents,
            "variance_cents": variance,
            "variance_threshold_cents": threshold,
            "note": note,
        },
    )
    publish_via_outbox(
        domain_events.cash_session_closed(
            org_id=ctx.org_id,
            store_id=ctx.store_id,
            session_id=session.id,
            employee_id=ctx.employee_id,
            status=status,
            expected_cash_cents=expected,
            counted_cash_cents=counted_cash_cents,
            variance_cents=variance,
            closed_at=closed_at,
        ),
        db.session,
    )

    return Ok({"type": OP_CASH_SESSION_CLOSED, "session_id": session.id, "status": status})


# ---------------------------------------------------------------------------
# SALE_FINALIZED
# ---------------------------------------------------------------------------

def _read_sale_items(raw) -> list[tuple[int, int]]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")
    if len(raw) > MAX_SALE_ITEMS:
        raise ValidationError(f"items cannot exceed {MAX_SALE_ITEMS} lines")

    items = []
    for idx, line in enumerate(raw):
        field = f"items[{idx}]"
        line = require_mapping(line, field)
        reject_unknown_fields(line, {"product_id", "quantity"}, field)
        product_id = coerce_int(line.get("product_id"), f"{field}.product_id", minimum=1)
        quantity = coerce_int(line.get("quantity"), f"{field}.quantity", minimum=1, maximum=MAX_LINE_QUANTITY)
        items.append((product_id, quantity))
    return items


def compute_vat_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """VAT in cents, rounded half-up."""
    return (subtotal_cents * tax_rate_bps + 5000) // 10000


@payload_errors_as_err
def apply_sale_finalized(ctx: MutationContext, payload) -> Result:
    payload = require_mapping(payload)
    reject_unknown_fields(
        payload,
        {"client_sale_uuid", "sale_type", "items", "payment_method", "cash_received_cents"},
    )

    client_sale_uuid = coerce_str(payload.get("client_sale_uuid"), "client_sale_uuid", max_length=64)
    sale_type = coerce_choice(payload.get("sale_type"), "sale_type", SALE_TYPES)
    payment_method = coerce_choice(payload.get("payment_method"), "payment_method", PAYMENT_METHODS)
    items = _read_sale_items(payload.get("items"))

    cash_received_cents = None
    if payload.get("cash_received_cents") is not None:
        if payment_method != "cash":
            raise ValidationError("cash_received_cents is only allowed for cash payments")
        cash_received_cents = coerce_cents(payload["cash_received_cents"], "cash_received_cents")

    existing = (
        db.session.query(Sale.id)
        .filter_by(org_id=ctx.org_id, client_sale_uuid=client_sale_uuid)
        .first()
    )
    if existing is not None:
        return conflict("Sale already recorded", client_sale_uuid=client_sale_uuid, sale_id=existing.id)

    # Server-authoritative pricing
    product_ids = {product_id for product_id, _ in items}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.org_id == ctx.org_id,
            Product.id.in_(product_ids),
        )
    }
    priced = []
    for product_id, quantity in items:
        product = products.get(product_id)
        if product is None or not product.is_active:
            return dependency_missing(f"Product not found or unavailable: {product_id}", product_id=product_id)
        priced.append((product, quantity, product.price_cents * quantity))

    subtotal_cents = sum(line_total for _, _, line_total in priced)
    vat_cents = compute_vat_cents(subtotal_cents, ctx.store.tax_rate_bps or 0)
    total_cents = subtotal_cents + vat_cents

    change_due_cents = 0
    if payment_method == "cash":
        if cash_received_cents is None:
            cash_received_cents = total_cents
        if cash_received_cents < total_cents:
            return validation_failed(
                "Cash received is less than total",
                total_cents=total_cents,
                cash_received_cents=cash_received_cents,
            )
        change_due_cents = cash_received_cents - total_cents

    finalized_at = business_time(ctx.occurred_at)
    sale = Sale(
        org_id=ctx.org_id,
        store_id=ctx.store_id,
        client_sale_uuid=client_sale_uuid,
        sale_type=sale_type,
        payment_method=payment_method,
        subtotal_cents=subtotal_cents,
        vat_cents=vat_cents,
        total_cents=total_cents,
        cash_received_cents=cash_received_cents,
        change_due_cents=change_due_cents,
        created_by_employee_id=ctx.employee_id,
        finalized_at=finalized_at,
    )
    db.session.add(sale)
    db.session.flush()

    for product, quantity, line_total in priced:
        db.session.add(SaleLine(
            sale_id=sale.id,
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            line_total_cents=line_total,
        ))
    db.session.flush()

    ctx.audit(
        "SALE_FINALIZED",
        "sale",
        sale.id,
        {
            "client_sale_uuid": client_sale_uuid,
            "subtotal_cents": subtotal_cents,
            "vat_cents": vat_cents,
            "total_cents": total_cents,
            "payment_method": payment_method,
        },
    )
    publish_via_outbox(
        domain_events.sale_finalized(
            org_id=ctx.org_id,
            store_id=ctx.store_id,
            sale_id=sale.id,
            employee_id=ctx.employee_id,
            payment_method=payment_method,
            total_cents=total_cents,
            cash_received_cents=cash_received_cents,
            change_due_cents=change_due_cents,
            finalized_at=finalized_at,
            client_op_id=ctx.client_op_id,
        ),
        db.session,
    )

    return Ok({"type": OP_SALE_FINALIZED, "sale_id": sale.id})


DEFAULT_MUTATORS = {
    OP_SALE_FINALIZED: apply_sale_finalized,
    OP_CASH_SESSION_OPENED: apply_cash_session_opened,
    OP_CASH_SESSION_CLOSED: apply_cash_session_closed,
}
