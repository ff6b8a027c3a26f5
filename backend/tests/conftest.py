"""
Pytest fixtures for fulfillment backend tests.

Provides test database setup, two merchants with users for every role,
shared warehouses, products with stock, and a test client.
"""

import pytest
from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.models import Merchant, Warehouse, Product, StockItem
from fulfillment.models.auth import (
    ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF, ROLE_WAREHOUSE_STAFF,
)
from fulfillment.services.auth_service import create_user
from fulfillment.services.tenant_service import ActorContext


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ENFORCE_FORWARD_ORDER_TRANSITIONS': False,
        'RESTOCK_ONLY_RETURNED_ITEMS': True,
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

        db.session.rollback()
        # Restore config flags a test may have flipped
        app.config['ENFORCE_FORWARD_ORDER_TRANSITIONS'] = False
        app.config['RESTOCK_ONLY_RETURNED_ITEMS'] = True


def _make_user(username, role, merchant_id=None):
    return create_user(
        username,
        f"{username}@fulfillment.test",
        PASSWORD,
        role,
        merchant_id,
        bcrypt_rounds=4,
    )


@pytest.fixture(scope='function')
def merchant_a(db_session):
    """Merchant A (first tenant)."""
    merchant = Merchant(name="Acme Stores", code="ACME", is_active=True)
    db_session.add(merchant)
    db_session.commit()
    return merchant


@pytest.fixture(scope='function')
def merchant_b(db_session):
    """Merchant B (second tenant)."""
    merchant = Merchant(name="Beta Goods", code="BETA", is_active=True)
    db_session.add(merchant)
    db_session.commit()
    return merchant


@pytest.fixture(scope='function')
def warehouse_1(db_session):
    warehouse = Warehouse(name="Lagos Main", code="LOS-1", city="Lagos", state="Lagos", is_active=True)
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def warehouse_2(db_session):
    warehouse = Warehouse(name="Abuja Hub", code="ABV-1", city="Abuja", state="FCT", is_active=True)
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def platform_admin(db_session):
    return _make_user("platform", ROLE_PLATFORM_ADMIN)


@pytest.fixture(scope='function')
def warehouse_staff(db_session):
    return _make_user("picker", ROLE_WAREHOUSE_STAFF)


@pytest.fixture(scope='function')
def admin_a(db_session, merchant_a):
    return _make_user("admin_a", ROLE_MERCHANT_ADMIN, merchant_a.id)


@pytest.fixture(scope='function')
def staff_a(db_session, merchant_a):
    return _make_user("staff_a", ROLE_MERCHANT_STAFF, merchant_a.id)


@pytest.fixture(scope='function')
def admin_b(db_session, merchant_b):
    return _make_user("admin_b", ROLE_MERCHANT_ADMIN, merchant_b.id)


@pytest.fixture(scope='function')
def product_a(db_session, merchant_a):
    """Product owned by Merchant A, price 2,500.00."""
    product = Product(merchant_id=merchant_a.id, sku="MUG-BLUE", name="Blue Mug", unit_price_cents=250000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a2(db_session, merchant_a):
    product = Product(merchant_id=merchant_a.id, sku="TEE-L", name="T-Shirt L", unit_price_cents=500000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, merchant_b):
    product = Product(merchant_id=merchant_b.id, sku="LAMP-1", name="Desk Lamp", unit_price_cents=900000)
    db_session.add(product)
    db_session.commit()
    return product


def make_stock(db_session, product, warehouse, quantity, batch_number=None):
    stock = StockItem(
        product_id=product.id,
        warehouse_id=warehouse.id,
        quantity=quantity,
        available_quantity=quantity,
        reserved_quantity=0,
        batch_number=batch_number,
    )
    db_session.add(stock)
    db_session.commit()
    return stock


@pytest.fixture(scope='function')
def stock_a(db_session, product_a, product_a2, warehouse_1, warehouse_2):
    """
    Stock for Merchant A's products:
    - Blue Mug: 50 in LOS-1, 20 in ABV-1
    - T-Shirt L: 30 in LOS-1
    """
    return {
        "mug_los": make_stock(db_session, product_a, warehouse_1, 50),
        "mug_abv": make_stock(db_session, product_a, warehouse_2, 20),
        "tee_los": make_stock(db_session, product_a2, warehouse_1, 30),
    }


def actor_for(user) -> ActorContext:
    return ActorContext.for_user(user)


def order_payload(*items, **overrides) -> dict:
    """Order creation body; items are (product_id, quantity) pairs."""
    payload = {
        "customer_name": "Ada Obi",
        "customer_phone": "+2348012345678",
        "customer_email": "ada@example.com",
        "shipping_address": {
            "street": "12 Allen Avenue",
            "city": "Ikeja",
            "state": "Lagos",
        },
        "payment_method": "COD",
        "delivery_fee_cents": 150000,
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
    }
    payload.update(overrides)
    return payload


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json['data']['token']
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
