"""
Pytest fixtures for settlement backend tests.

Provides the in-memory app, per-test table cleanup, a fixed clock, and the
company/product/variant fixtures most ledger tests start from.
"""

from datetime import datetime

import pytest
from settlement import create_app
from settlement.extensions import db
from settlement.models import StockRecord
from settlement.services import catalog_service, directory_service, inventory_service
from settlement.services.catalog_service import VariantKey
from settlement.time_utils import FixedClock


# Wednesday 2025-03-12 11:00 KST: an ordinary working day, before cutoff
DEFAULT_NOW = datetime(2025, 3, 12, 2, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def clock(app):
    """Install a FixedClock for the test; move it with clock.set(...)."""
    fixed = FixedClock(DEFAULT_NOW)
    app.config['CLOCK'] = fixed
    yield fixed
    app.config['CLOCK'] = None


@pytest.fixture(scope='function')
def company(db_session):
    """Wholesale customer company."""
    return directory_service.register_company(name="Hanbit Apparel", business_number="123-45-67890")


@pytest.fixture(scope='function')
def owner(db_session, company):
    """Company owner; holds the company's mileage account."""
    return directory_service.register_user(
        username="hanbit_owner",
        company_id=company.id,
        display_name="Kim Hanbit",
        owner=True,
    )


@pytest.fixture(scope='function')
def product(db_session):
    return catalog_service.register_product(code="TEE-001", name="Basic Tee", base_price=10000)


@pytest.fixture(scope='function')
def variant(product):
    """Registered (Basic Tee, black, M) variant with zero stock."""
    catalog_service.register_variant(product.id, "black", "M")
    return VariantKey.of(product.id, "black", "M")


@pytest.fixture(scope='function')
def stocked_variant(variant):
    """The variant with 10 units received."""
    inventory_service.receive_stock(variant, 10, "initial stock")
    return variant


def stock_of(key: VariantKey) -> int:
    """Current on-hand quantity, bypassing the identity map."""
    db.session.expire_all()
    record = (
        db.session.query(StockRecord)
        .filter_by(product_id=key.product_id, color=key.color, size=key.size)
        .one()
    )
    return record.quantity_on_hand


def line(key: VariantKey, quantity: int, unit_price: int, name: str = "Basic Tee") -> dict:
    """Canonical statement/order line for a variant."""
    return {
        "product_id": key.product_id,
        "product_name": name,
        "color": key.color,
        "size": key.size,
        "quantity": quantity,
        "unit_price": unit_price,
    }
