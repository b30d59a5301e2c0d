"""
Domain mutator tests (through the apply pipeline).

Verifies:
- CASH_SESSION_OPENED: float parsing, register checks, one OPEN session per register/branch
- CASH_SESSION_CLOSED: variance against expected cash, review threshold, ownership checks
- SALE_FINALIZED: server-side pricing, VAT rounding, cash tender, product availability
- Every applied mutation writes its domain audit row and stages its outbox event
"""

from datetime import datetime

import pytest

from app.models import CashSession, Register, Sale, SaleLine, OutboxEvent
from app.services.audit_service import list_audit_logs
from app.services.sync_mutators import compute_vat_cents

from conftest import EMPLOYEE_ID, make_op


def _apply_one(service, org, store, op):
    return service.apply_operations(org.id, store.id, EMPLOYEE_ID, "cashier", [op])["results"][0]


def _sale_payload(products, uuid="sale-uuid-1", payment_method="cash", **extra):
    payload = {
        "client_sale_uuid": uuid,
        "sale_type": "dine_in",
        "items": [
            {"product_id": products["coffee"].id, "quantity": 2},
            {"product_id": products["tea"].id, "quantity": 1},
        ],
        "payment_method": payment_method,
    }
    payload.update(extra)
    return payload


# =============================================================================
# CASH_SESSION_OPENED
# =============================================================================


class TestCashSessionOpened:

    def test_opens_branch_session_with_default_float(self, db_session, org_a, store_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED"))

        assert result["status"] == "APPLIED"
        assert result["result"]["type"] == "CASH_SESSION_OPENED"
        session = db_session.get(CashSession, result["result"]["session_id"])
        assert session.status == "OPEN"
        assert session.register_id is None
        assert session.opening_float_cents == 0
        assert session.opened_by_employee_id == EMPLOYEE_ID

    def test_null_payload_is_treated_as_empty(self, db_session, org_a, store_a, sync_service):
        op = {"client_op_id": "o-null", "type": "CASH_SESSION_OPENED", "payload": None}

        result = _apply_one(sync_service, org_a, store_a, op)

        assert result["status"] == "APPLIED"

    def test_float_usd_rounds_half_up(self, db_session, org_a, store_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"float_usd": "12.345"}))

        session = db_session.get(CashSession, result["result"]["session_id"])
        assert session.opening_float_cents == 1235
        assert session.expected_cash_cents == 1235

    def test_opened_at_is_business_time(self, db_session, org_a, store_a, sync_service):
        op = make_op("o-1", "CASH_SESSION_OPENED", {}, occurred_at="2026-02-14T06:45:00Z")

        result = _apply_one(sync_service, org_a, store_a, op)

        session = db_session.get(CashSession, result["result"]["session_id"])
        assert session.opened_at == datetime(2026, 2, 14, 6, 45, 0)

    @pytest.mark.parametrize(
        "payload",
        [
            {"opening_float_cents": 100, "float_usd": 1},
            {"opening_float_cents": 1.5},
            {"opening_float_cents": -1},
            {"opening_float_cents": "1e3"},
            {"register_id": True},
            {"cash_drawer": "left"},
        ],
    )
    def test_invalid_payload_is_validation_failed(self, db_session, org_a, store_a, sync_service, payload):
        result = _apply_one(sync_service, org_a, store_a, make_op("o-bad", "CASH_SESSION_OPENED", payload))

        assert result["status"] == "FAILED"
        assert result["error_code"] == "VALIDATION_FAILED"
        assert db_session.query(CashSession).count() == 0

    def test_opens_on_register(self, db_session, org_a, store_a, register_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"register_id": register_a.id}))

        session = db_session.get(CashSession, result["result"]["session_id"])
        assert session.register_id == register_a.id

    def test_second_session_on_register_conflicts(self, db_session, org_a, store_a, register_a, sync_service):
        _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"register_id": register_a.id}))

        result = _apply_one(sync_service, org_a, store_a, make_op("o-2", "CASH_SESSION_OPENED", {"register_id": register_a.id}))

        assert result["status"] == "FAILED"
        assert result["error_code"] == "CONFLICT"
        assert db_session.query(CashSession).count() == 1

    def test_second_branch_session_conflicts(self, db_session, org_a, store_a, sync_service):
        _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED"))

        result = _apply_one(sync_service, org_a, store_a, make_op("o-2", "CASH_SESSION_OPENED"))

        assert result["error_code"] == "CONFLICT"

    def test_register_session_and_branch_session_coexist(self, db_session, org_a, store_a, register_a, sync_service):
        _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"register_id": register_a.id}))

        result = _apply_one(sync_service, org_a, store_a, make_op("o-2", "CASH_SESSION_OPENED"))

        assert result["status"] == "APPLIED"

    def test_missing_register_is_dependency_missing(self, db_session, org_a, store_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"register_id": 424242}))

        assert result["status"] == "FAILED"
        assert result["error_code"] == "DEPENDENCY_MISSING"

        audit = list_audit_logs(org_a.id, client_event_id="o-1")
        assert audit[0].action_type == "SYNC_OPERATION_FAILED"
        assert audit[0].outcome == "FAILED"
        assert audit[0].denial_reason == "DEPENDENCY_MISSING"

    def test_register_in_other_branch_is_rejected(self, db_session, org_a, store_a, store_a2, sync_service):
        other = Register(org_id=org_a.id, store_id=store_a2.id, register_number="REG-09", name="Patio")
        db_session.add(other)
        db_session.commit()

        result = _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"register_id": other.id}))

        assert result["error_code"] == "VALIDATION_FAILED"

    def test_inactive_register_is_rejected(self, db_session, org_a, store_a, register_a, sync_service):
        register_a.is_active = False
        db_session.commit()

        result = _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"register_id": register_a.id}))

        assert result["error_code"] == "VALIDATION_FAILED"
        assert result["error_message"] == "Register is not active"

    def test_writes_audit_and_event(self, db_session, org_a, store_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("o-1", "CASH_SESSION_OPENED", {"opening_float_cents": 2500}))

        audit = list_audit_logs(org_a.id, action_type="CASH_SESSION_OPENED")
        assert len(audit) == 1
        assert audit[0].details["source"] == "OFFLINE_SYNC"
        assert audit[0].details["opening_float_cents"] == 2500

        event = db_session.query(OutboxEvent).one()
        assert event.event_type == "cash.session_opened"
        assert event.payload["session_id"] == result["result"]["session_id"]
        assert event.payload["opening_float_cents"] == 2500


# =============================================================================
# CASH_SESSION_CLOSED
# =============================================================================


class TestCashSessionClosed:

    def _open(self, service, org, store, float_cents=1000):
        result = _apply_one(service, org, store, make_op("open", "CASH_SESSION_OPENED", {"opening_float_cents": float_cents}))
        return result["result"]["session_id"]

    def test_exact_count_closes(self, db_session, org_a, store_a, sync_service):
        session_id = self._open(sync_service, org_a, store_a)

        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 1000},
        ))

        assert result["status"] == "APPLIED"
        assert result["result"]["status"] == "CLOSED"
        session = db_session.get(CashSession, session_id)
        assert session.status == "CLOSED"
        assert session.variance_cents == 0
        assert session.closed_by_employee_id == EMPLOYEE_ID

    def test_variance_within_threshold_closes(self, db_session, org_a, store_a, sync_service):
        session_id = self._open(sync_service, org_a, store_a)

        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 500},
        ))

        assert result["result"]["status"] == "CLOSED"
        assert db_session.get(CashSession, session_id).variance_cents == -500

    def test_variance_over_threshold_needs_review(self, db_session, org_a, store_a, sync_service):
        session_id = self._open(sync_service, org_a, store_a)

        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 2000},
        ))

        assert result["result"]["status"] == "PENDING_REVIEW"
        session = db_session.get(CashSession, session_id)
        assert session.status == "PENDING_REVIEW"
        assert session.variance_cents == 1000

    def test_branch_threshold_overrides_default(self, db_session, org_a, store_a, sync_service):
        store_a.variance_threshold_cents = 5000
        db_session.commit()
        session_id = self._open(sync_service, org_a, store_a)

        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 3000},
        ))

        assert result["result"]["status"] == "CLOSED"

    def test_closing_twice_is_rejected(self, db_session, org_a, store_a, sync_service):
        session_id = self._open(sync_service, org_a, store_a)
        _apply_one(sync_service, org_a, store_a, make_op(
            "close-1", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 1000},
        ))

        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close-2", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 1000},
        ))

        assert result["error_code"] == "VALIDATION_FAILED"
        assert result["error_message"] == "Session is not open"

    def test_unknown_session_is_dependency_missing(self, db_session, org_a, store_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": 777, "counted_cash_cents": 0},
        ))

        assert result["error_code"] == "DEPENDENCY_MISSING"

    def test_session_of_other_branch_is_rejected(self, db_session, org_a, store_a, store_a2, sync_service):
        session_id = self._open(sync_service, org_a, store_a2)

        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 1000},
        ))

        assert result["error_code"] == "VALIDATION_FAILED"
        assert db_session.get(CashSession, session_id).status == "OPEN"

    def test_counted_cash_is_required(self, db_session, org_a, store_a, sync_service):
        session_id = self._open(sync_service, org_a, store_a)

        result = _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": session_id},
        ))

        assert result["error_code"] == "VALIDATION_FAILED"

    def test_stages_closed_event(self, db_session, org_a, store_a, sync_service):
        session_id = self._open(sync_service, org_a, store_a)
        _apply_one(sync_service, org_a, store_a, make_op(
            "close", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 900, "note": "short a coin"},
        ))

        event = db_session.query(OutboxEvent).filter_by(event_type="cash.session_closed").one()
        assert event.payload["variance_cents"] == -100
        assert event.payload["status"] == "CLOSED"
        assert db_session.get(CashSession, session_id).note == "short a coin"


# =============================================================================
# SALE_FINALIZED
# =============================================================================


class TestSaleFinalized:

    def test_prices_from_catalog_with_vat(self, db_session, org_a, store_a, products_a, sync_service):
        op = make_op("s-1", "SALE_FINALIZED", _sale_payload(products_a, cash_received_cents=1000))

        result = _apply_one(sync_service, org_a, store_a, op)

        assert result["status"] == "APPLIED"
        sale = db_session.get(Sale, result["result"]["sale_id"])
        assert sale.subtotal_cents == 700
        assert sale.vat_cents == 70
        assert sale.total_cents == 770
        assert sale.cash_received_cents == 1000
        assert sale.change_due_cents == 230
        assert sale.created_by_employee_id == EMPLOYEE_ID

        lines = db_session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id).all()
        assert [(line.product_name, line.quantity, line.line_total_cents) for line in lines] == [
            ("Iced Coffee", 2, 500),
            ("Milk Tea", 1, 200),
        ]

    def test_cash_tender_defaults_to_total(self, db_session, org_a, store_a, products_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("s-1", "SALE_FINALIZED", _sale_payload(products_a)))

        sale = db_session.get(Sale, result["result"]["sale_id"])
        assert sale.cash_received_cents == 770
        assert sale.change_due_cents == 0

    def test_insufficient_cash_is_rejected(self, db_session, org_a, store_a, products_a, sync_service):
        op = make_op("s-1", "SALE_FINALIZED", _sale_payload(products_a, cash_received_cents=700))

        result = _apply_one(sync_service, org_a, store_a, op)

        assert result["status"] == "FAILED"
        assert result["error_code"] == "VALIDATION_FAILED"
        assert db_session.query(Sale).count() == 0
        assert db_session.query(OutboxEvent).count() == 0

    def test_qr_sale_rejects_cash_received(self, db_session, org_a, store_a, products_a, sync_service):
        op = make_op("s-1", "SALE_FINALIZED", _sale_payload(products_a, payment_method="qr", cash_received_cents=1000))

        result = _apply_one(sync_service, org_a, store_a, op)

        assert result["error_code"] == "VALIDATION_FAILED"

    def test_qr_sale_has_no_cash_fields(self, db_session, org_a, store_a, products_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("s-1", "SALE_FINALIZED", _sale_payload(products_a, payment_method="qr")))

        sale = db_session.get(Sale, result["result"]["sale_id"])
        assert sale.cash_received_cents is None
        assert sale.change_due_cents == 0

    def test_inactive_product_is_dependency_missing(self, db_session, org_a, store_a, products_a, sync_service):
        payload = _sale_payload(products_a)
        payload["items"].append({"product_id": products_a["discontinued"].id, "quantity": 1})

        result = _apply_one(sync_service, org_a, store_a, make_op("s-1", "SALE_FINALIZED", payload))

        assert result["error_code"] == "DEPENDENCY_MISSING"
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0

    def test_product_of_other_tenant_is_dependency_missing(self, db_session, org_a, store_a, org_b, products_a, sync_service):
        from app.models import Product

        foreign = Product(org_id=org_b.id, sku="COF-001", name="Rival Coffee", price_cents=100)
        db_session.add(foreign)
        db_session.commit()

        payload = _sale_payload(products_a)
        payload["items"] = [{"product_id": foreign.id, "quantity": 1}]

        result = _apply_one(sync_service, org_a, store_a, make_op("s-1", "SALE_FINALIZED", payload))

        assert result["error_code"] == "DEPENDENCY_MISSING"

    def test_duplicate_sale_uuid_conflicts(self, db_session, org_a, store_a, products_a, sync_service):
        _apply_one(sync_service, org_a, store_a, make_op("s-1", "SALE_FINALIZED", _sale_payload(products_a)))

        result = _apply_one(sync_service, org_a, store_a, make_op("s-2", "SALE_FINALIZED", _sale_payload(products_a)))

        assert result["status"] == "FAILED"
        assert result["error_code"] == "CONFLICT"
        assert db_session.query(Sale).count() == 1

    @pytest.mark.parametrize(
        "items",
        [
            [],
            None,
            [{"product_id": 1, "quantity": 0}],
            [{"product_id": 1, "quantity": 10000}],
            [{"product_id": 1, "quantity": True}],
            [{"product_id": 1, "quantity": 1, "price_cents": 1}],
            ["coffee"],
        ],
    )
    def test_bad_items_are_validation_failed(self, db_session, org_a, store_a, products_a, sync_service, items):
        payload = _sale_payload(products_a)
        payload["items"] = items

        result = _apply_one(sync_service, org_a, store_a, make_op("s-bad", "SALE_FINALIZED", payload))

        assert result["error_code"] == "VALIDATION_FAILED"

    def test_client_prices_are_not_accepted(self, db_session, org_a, store_a, products_a, sync_service):
        payload = _sale_payload(products_a, total_cents=1)

        result = _apply_one(sync_service, org_a, store_a, make_op("s-1", "SALE_FINALIZED", payload))

        assert result["error_code"] == "VALIDATION_FAILED"

    def test_stages_sale_event(self, db_session, org_a, store_a, products_a, sync_service):
        result = _apply_one(sync_service, org_a, store_a, make_op("s-1", "SALE_FINALIZED", _sale_payload(products_a)))

        event = db_session.query(OutboxEvent).one()
        assert event.event_type == "sales.sale_finalized"
        assert event.payload["sale_id"] == result["result"]["sale_id"]
        assert event.payload["total_cents"] == 770
        assert event.payload["employee_id"] == EMPLOYEE_ID
        assert event.payload["client_op_id"] == "s-1"

        audit = list_audit_logs(org_a.id, action_type="SALE_FINALIZED")
        assert len(audit) == 1
        assert audit[0].resource_id == str(result["result"]["sale_id"])


class TestVatRounding:

    @pytest.mark.parametrize(
        "subtotal,bps,expected",
        [
            (700, 1000, 70),
            (125, 1000, 13),
            (124, 1000, 12),
            (999, 700, 70),
            (1000, 0, 0),
        ],
    )
    def test_half_up(self, subtotal, bps, expected):
        assert compute_vat_cents(subtotal, bps) == expected
