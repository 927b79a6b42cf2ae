"""
Pytest fixtures for fulfillment backend tests.

Provides an in-memory database, a fake payment gateway, product factories
and a test client.
"""

import pytest

from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.models import Product, Customer

from fakes import FakeGateway, TEST_SECRET


@pytest.fixture(scope='session')
def gateway():
    return FakeGateway()


@pytest.fixture(scope='session')
def app(gateway):
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'SQLALCHEMY_ENGINE_OPTIONS': {},
            'PAYMENT_GATEWAY_KEY_ID': FakeGateway.key_id,
            'PAYMENT_GATEWAY_KEY_SECRET': TEST_SECRET,
            'PAYMENT_CURRENCY': 'INR',
            'PENDING_ORDER_TIMEOUT_MINUTES': 30,
        },
        payment_gateway=gateway,
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
def db_session(app, gateway):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        gateway.reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def manager(app, db_session):
    return app.extensions["order_manager"]


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for catalog products; returns the product id."""
    counter = {"n": 0}

    def _make(stock=10, price_cents=1500, name=None, is_active=True):
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            stock=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product.id

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Asha Rao", phone="9800000000")
    db_session.add(c)
    db_session.commit()
    return c
