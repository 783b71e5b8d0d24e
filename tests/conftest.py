import pytest
from datetime import date
from decimal import Decimal

from config import TestConfig
from gestion import create_app
from gestion import database
from gestion.models import Supplier, Product, Purchase


@pytest.fixture(scope='function')
def app():
    """Create application instance with a fresh in-memory schema."""
    app = create_app(TestConfig)
    with app.app_context():
        database.create_all()
        yield app
        database.db_session.remove()
        database.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session for testing."""
    session = database.get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def supplier(session):
    """Create test supplier."""
    supplier = Supplier(name='Proveedor Test', country='China', email='compras@test.com')
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def product_a(session):
    """Create first test product (no stock, no cost)."""
    product = Product(sku='TEST-001', name='Producto A', cost=Decimal('0.00'), stock=0)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(session):
    """Create second test product (no stock, no cost)."""
    product = Product(sku='TEST-002', name='Producto B', cost=Decimal('0.00'), stock=0)
    session.add(product)
    session.commit()
    return product


def purchase_payload(supplier_id, items, **overrides):
    """Build a local purchase payload with no overhead."""
    payload = {
        'supplier_id': supplier_id,
        'type': 'LOCAL',
        'currency': 'ARS',
        'order_date': date(2024, 3, 1).isoformat(),
        'items': items,
    }
    payload.update(overrides)
    return payload


@pytest.fixture(scope='function')
def make_payload():
    return purchase_payload


@pytest.fixture(scope='function')
def pending_purchase(session, supplier, product_a, product_b):
    """
    PENDING purchase: 5 x 1000 + 3 x 2000 with 875 of overhead
    (500 freight + 375 customs).
    """
    from gestion.services.purchase_service import create_purchase

    result = create_purchase(purchase_payload(
        supplier.id,
        [
            {'product_id': product_a.id, 'quantity': 5, 'unit_price_local': '1000'},
            {'product_id': product_b.id, 'quantity': 3, 'unit_price_local': '2000'},
        ],
        freight_cost='500',
        customs_cost='375',
    ), session)
    return session.get(Purchase, result['purchase_id'])
