"""
Pytest fixtures for RetailPOS backend tests.

Provides the application with in-memory databases for both binds (main and
offline queue), a per-test clean database, catalog/customer factories and a
test client.
"""

from decimal import Decimal

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Customer
from retailpos.services import products_service
from retailpos.services.checkout_service import CheckoutRequest, checkout_cart


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_BINDS': {'offline': 'sqlite:///:memory:'},
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TX_RETRY_BACKOFF': 0,
        'OFFLINE_POLLER_ENABLED': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data in every bind but keep schema
        for meta in db.metadatas.values():
            for table in reversed(meta.sorted_tables):
                db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create a catalog product through the products service."""
    counter = {"n": 0}

    def _make(name=None, unit_price="100", tax_rate_pct="12", stock=10, category=None, sku=None, **extra):
        counter["n"] += 1
        data = {
            "sku": sku or f"SKU-{counter['n']:03d}",
            "name": name or f"Product {counter['n']}",
            "unit_price": unit_price,
            "tax_rate_pct": tax_rate_pct,
            "stock": stock,
            "category": category,
            **extra,
        }
        return products_service.create_product(data, user_id="test")

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: create a customer row directly."""
    def _make(name="Asha", phone="9000000001", loyalty_points=0, total_spend="0", kids_dob=None):
        customer = Customer(
            name=name,
            phone=phone,
            loyalty_points=loyalty_points,
            total_spend=Decimal(total_spend),
            kids_dob=kids_dob,
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def checkout(db_session):
    """Helper: commit a sale from (product, qty) pairs."""
    def _checkout(*lines, op_id=None, **payload):
        body = {
            "items": [{"product_id": product.id, "qty": qty} for product, qty in lines],
            "cashier_user_id": "cashier-1",
            **payload,
        }
        return checkout_cart(CheckoutRequest.from_payload(body), op_id=op_id)

    return _checkout
