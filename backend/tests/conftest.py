"""
Pytest fixtures for T VANAMM backend tests.

Provides an in-memory database app, a test client, accounts for every
role, a small catalog and helpers for authenticated requests.
"""

import pytest

from tvanamm import create_app
from tvanamm.extensions import db
from tvanamm.models import Product
from tvanamm.services import loyalty_service
from tvanamm.services.auth_service import create_user
from tvanamm.services.pricing_service import CartLine


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-secret',
        'BCRYPT_ROUNDS': 4,
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
def owner(db_session):
    return create_user("owner@tvanamm.local", PASSWORD, "Owner", role="owner")


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("admin@tvanamm.local", PASSWORD, "Admin", role="admin")


@pytest.fixture(scope='function')
def franchise(db_session):
    return create_user("partner@tvanamm.local", PASSWORD, "Franchise Partner", role="franchise",
                       phone="+91 98765 43210")


@pytest.fixture(scope='function')
def customer(db_session):
    return create_user("customer@example.com", PASSWORD, "Retail Customer", role="customer")


@pytest.fixture(scope='function')
def tea(db_session):
    """Rs 100.00 at 18% GST."""
    product = Product(sku="TEA-250", name="Masala Tea 250g", price_paise=10_000, gst_rate_bps=1800)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def biscuits(db_session):
    """Rs 50.00 at 5% GST."""
    product = Product(sku="BIS-100", name="Tea Biscuits", price_paise=5_000, gst_rate_bps=500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def bulk_pack(db_session):
    """Rs 5000.00, GST-exempt."""
    product = Product(sku="BULK-5K", name="Bulk Leaf Pack", price_paise=500_000, gst_rate_bps=0)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def gifts(db_session):
    """Launch gift catalog: FREE_DELIVERY (unlimited) and TEA_CUPS_30 (100 in stock)."""
    loyalty_service.seed_default_gifts()
    return {gift.code: gift for gift in loyalty_service.list_gifts(active_only=False)}


@pytest.fixture
def shipping_address():
    return {
        "name": "Franchise Partner",
        "phone": "+91 98765 43210",
        "address": "12-3 Tank Bund Road",
        "city": "Hyderabad",
        "state": "Telangana",
        "pincode": "500001",
    }


def line_for(product: Product, quantity: int) -> CartLine:
    """Cart line for a catalog product, priced the way the cart prices it."""
    return CartLine.from_catalog(
        product_id=product.id,
        name=product.name,
        base_price_paise=product.price_paise,
        gst_rate_bps=product.gst_rate_bps,
        quantity=quantity,
    )


def give_points(user_id: int, points: int) -> None:
    loyalty_service.adjust_points(user_id, points, "Opening balance")


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
