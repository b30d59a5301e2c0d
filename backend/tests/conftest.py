"""
Pytest fixtures for backend tests.

Provides the in-memory test database, tenant/branch fixtures, a price list,
device tokens, and a test client.
"""

import pytest
from app import create_app
from app.extensions import db
from app.models import Organization, Store, Register, Product
from app.services.session_service import create_device_session
from app.services.sync_service import OfflineSyncService


EMPLOYEE_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OUTBOX_DISPATCHER_AUTOSTART': False,
        'OUTBOX_POLL_INTERVAL_MS': 20,
        'SYNC_MAX_BATCH_SIZE': 100,
        'CASH_VARIANCE_THRESHOLD_CENTS': 500,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    """Create Store A in Organization A (10% VAT)."""
    store = Store(org_id=org_a.id, name="Store A1", code="A1", tax_rate_bps=1000)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, org_a):
    """Second branch in Organization A."""
    store = Store(org_id=org_a.id, name="Store A2", code="A2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    """Create Store B in Organization B."""
    store = Store(org_id=org_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def register_a(db_session, org_a, store_a):
    register = Register(org_id=org_a.id, store_id=store_a.id, register_number="REG-01", name="Front Counter")
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture(scope='function')
def products_a(db_session, org_a):
    """Price list for Organization A: coffee 2.50, tea 2.00, discontinued 9.99."""
    coffee = Product(org_id=org_a.id, sku="COF-001", name="Iced Coffee", price_cents=250)
    tea = Product(org_id=org_a.id, sku="TEA-001", name="Milk Tea", price_cents=200)
    old = Product(org_id=org_a.id, sku="OLD-001", name="Discontinued", price_cents=999, is_active=False)
    db_session.add_all([coffee, tea, old])
    db_session.commit()
    return {"coffee": coffee, "tea": tea, "discontinued": old}


@pytest.fixture(scope='function')
def sync_service():
    return OfflineSyncService()


@pytest.fixture(scope='function')
def device_token(db_session, org_a, store_a):
    """Plaintext device token bound to Store A / EMPLOYEE_ID."""
    _, token = create_device_session(org_a.id, store_a.id, EMPLOYEE_ID, "cashier", label="Tablet 1")
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def make_op(client_op_id: str, op_type: str, payload=None, **extra) -> dict:
    """Helper to build one client operation as a device would send it."""
    op = {"client_op_id": client_op_id, "type": op_type, "payload": payload if payload is not None else {}}
    op.update(extra)
    return op
