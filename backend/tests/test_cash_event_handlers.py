"""
Cash drawer subscriber tests.

Verifies:
- A delivered cash sale becomes a SALE_CASH movement on the cashier's open session
- Expected cash grows by the sale total, so closing with the right count has no variance
- Redelivery of the same event is a no-op
- Non-cash sales and cashiers without an open session are skipped
"""

from app.models import CashMovement, CashSession, OutboxEvent
from app.services.audit_service import list_audit_logs
from app.services.cash_event_handlers import on_sale_finalized
from app.services.domain_events import DomainEvent, SALE_FINALIZED_V1

from conftest import EMPLOYEE_ID, make_op


def _apply(service, org, store, *ops):
    return service.apply_operations(org.id, store.id, EMPLOYEE_ID, "cashier", list(ops))["results"]


def _sale_op(products, client_op_id="sale-1", uuid="uuid-1", payment_method="cash", **extra):
    payload = {
        "client_sale_uuid": uuid,
        "sale_type": "take_away",
        "items": [
            {"product_id": products["coffee"].id, "quantity": 2},
            {"product_id": products["tea"].id, "quantity": 1},
        ],
        "payment_method": payment_method,
    }
    payload.update(extra)
    return make_op(client_op_id, "SALE_FINALIZED", payload)


def _sale_event(db_session, sale_id):
    rows = db_session.query(OutboxEvent).filter(OutboxEvent.event_type == SALE_FINALIZED_V1).all()
    row = next(r for r in rows if r.payload["sale_id"] == sale_id)
    return DomainEvent.from_row(row)


# =============================================================================
# DELIVERY THROUGH THE DISPATCHER
# =============================================================================


class TestCashSaleDelivery:

    def test_sale_attaches_to_open_session(self, app, db_session, org_a, store_a, products_a, sync_service):
        opened, sold = _apply(
            sync_service, org_a, store_a,
            make_op("open", "CASH_SESSION_OPENED", {"opening_float_cents": 1000}),
            _sale_op(products_a, cash_received_cents=1000),
        )
        session_id = opened["result"]["session_id"]
        sale_id = sold["result"]["sale_id"]

        report = app.extensions["outbox_dispatcher"].run_once()

        assert report.failed == 0
        assert report.delivered == 2

        movement = db_session.query(CashMovement).one()
        assert movement.session_id == session_id
        assert movement.sale_id == sale_id
        assert movement.movement_type == "SALE_CASH"
        assert movement.amount_cents == 770
        assert db_session.get(CashSession, session_id).expected_cash_cents == 1770

        audit = list_audit_logs(org_a.id, action_type="CASH_TENDER_ATTACHED_TO_SALE")
        assert len(audit) == 1
        assert audit[0].details["session_id"] == session_id

        recorded = db_session.query(OutboxEvent).filter_by(event_type="cash.sale_cash_recorded").one()
        assert recorded.sent_at is None
        assert recorded.payload["movement_id"] == movement.id

    def test_close_after_delivery_has_no_variance(self, app, db_session, org_a, store_a, products_a, sync_service):
        opened, _ = _apply(
            sync_service, org_a, store_a,
            make_op("open", "CASH_SESSION_OPENED", {"opening_float_cents": 1000}),
            _sale_op(products_a),
        )
        session_id = opened["result"]["session_id"]
        app.extensions["outbox_dispatcher"].run_once()

        closed = _apply(
            sync_service, org_a, store_a,
            make_op("close", "CASH_SESSION_CLOSED", {"session_id": session_id, "counted_cash_cents": 1770}),
        )[0]

        assert closed["result"]["status"] == "CLOSED"
        assert db_session.get(CashSession, session_id).variance_cents == 0


# =============================================================================
# HANDLER RULES
# =============================================================================


class TestOnSaleFinalized:

    def test_redelivery_is_noop(self, db_session, org_a, store_a, products_a, sync_service):
        opened, sold = _apply(
            sync_service, org_a, store_a,
            make_op("open", "CASH_SESSION_OPENED", {"opening_float_cents": 0}),
            _sale_op(products_a),
        )
        event = _sale_event(db_session, sold["result"]["sale_id"])

        first = on_sale_finalized(event)
        second = on_sale_finalized(event)

        assert first is not None
        assert second is None
        assert db_session.query(CashMovement).count() == 1
        assert db_session.get(CashSession, opened["result"]["session_id"]).expected_cash_cents == 770

    def test_qr_sale_is_skipped(self, db_session, org_a, store_a, products_a, sync_service):
        opened, sold = _apply(
            sync_service, org_a, store_a,
            make_op("open", "CASH_SESSION_OPENED", {"opening_float_cents": 0}),
            _sale_op(products_a, payment_method="qr"),
        )

        assert on_sale_finalized(_sale_event(db_session, sold["result"]["sale_id"])) is None
        assert db_session.query(CashMovement).count() == 0
        assert db_session.get(CashSession, opened["result"]["session_id"]).expected_cash_cents == 0

    def test_no_open_session_is_skipped(self, db_session, org_a, store_a, products_a, sync_service):
        (sold,) = _apply(sync_service, org_a, store_a, _sale_op(products_a))

        assert on_sale_finalized(_sale_event(db_session, sold["result"]["sale_id"])) is None
        assert db_session.query(CashMovement).count() == 0

    def test_other_cashiers_session_is_not_used(self, db_session, org_a, store_a, products_a, sync_service):
        other = sync_service.apply_operations(
            org_a.id, store_a.id, EMPLOYEE_ID + 1, "cashier",
            [make_op("open-other", "CASH_SESSION_OPENED", {})],
        )["results"][0]
        (sold,) = _apply(sync_service, org_a, store_a, _sale_op(products_a))

        assert on_sale_finalized(_sale_event(db_session, sold["result"]["sale_id"])) is None
        assert db_session.get(CashSession, other["result"]["session_id"]).expected_cash_cents == 0
