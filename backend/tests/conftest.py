"""
Pytest fixtures for stock ledger tests.

Provides the in-memory application, a clean database per test, and a small
warehouse with two storage locations.
"""

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.services import inventory_service, location_service


PRODUCT_ID = 1001
OTHER_PRODUCT_ID = 1002
ORG_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI='sqlite:///:memory:',
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        LEDGER_RETRY_BACKOFF_SECONDS=0,
        ALERT_LOW_STOCK_QTY=10,
        ALERT_OVERSTOCK_QTY=None,
        ALERT_EXPIRY_WARNING_DAYS=30,
    )

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
def warehouse(db_session):
    """Default warehouse of ORG_ID."""
    return location_service.create_warehouse(org_id=ORG_ID, code="MAIN", name="Main Warehouse")


@pytest.fixture(scope='function')
def location(warehouse):
    """Primary storage location."""
    return location_service.create_location(warehouse_id=warehouse.id, code="A-01", name="Aisle A bin 1")


@pytest.fixture(scope='function')
def second_location(warehouse):
    """Second storage location in the same warehouse."""
    return location_service.create_location(warehouse_id=warehouse.id, code="B-01", name="Aisle B bin 1")


def receive(product_id, location_id, qty, unit_cost_cents=None, lot_number=None, expiry_date=None):
    """Helper to put stock on hand with a purchase move."""
    return inventory_service.apply_move(
        product_id=product_id,
        qty=qty,
        reason="purchase",
        to_location_id=location_id,
        unit_cost_cents=unit_cost_cents,
        lot_number=lot_number,
        expiry_date=expiry_date,
    )


@pytest.fixture(scope='function')
def stocked_location(location):
    """A-01 holding 10 units of PRODUCT_ID at 500 cents."""
    receive(PRODUCT_ID, location.id, 10, unit_cost_cents=500)
    return location
