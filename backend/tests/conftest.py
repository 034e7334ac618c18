"""
Pytest fixtures for duka backend tests.

Provides test database setup, users with each role, catalog fixtures and
a test client with login helpers.
"""

from decimal import Decimal

import pytest
from duka import create_app
from duka.config import TestConfig
from duka.extensions import db
from duka.models import Category, Product
from duka.models.auth import ROLE_ADMIN, ROLE_CASHIER
from duka.services.auth_service import create_user


ADMIN_PASSWORD = "Admin12345"
CASHIER_PASSWORD = "Cashier12345"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def admin_user(db_session):
    return create_user("admin@test.local", ADMIN_PASSWORD, "Test Admin", role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return create_user("cashier@test.local", CASHIER_PASSWORD, "Test Cashier", role=ROLE_CASHIER)


@pytest.fixture(scope='function')
def soaps(db_session):
    category = Category(name="Soaps", name_key="soaps")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(db_session, soaps):
    """Factory: make_product(name, selling_price_cents=..., stock=...)."""
    def _make(
        name: str,
        *,
        selling_price_cents: int = 11600,
        buying_price_cents: int = 8000,
        stock=10,
        reorder_level=5,
        barcode: str | None = None,
        category: Category | None = None,
    ) -> Product:
        product = Product(
            name=name,
            category_id=(category or soaps).id,
            selling_price_cents=selling_price_cents,
            buying_price_cents=buying_price_cents,
            stock=Decimal(stock),
            reorder_level=Decimal(reorder_level),
            barcode=barcode,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


def get_auth_token(client, email: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.email, ADMIN_PASSWORD))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, cashier_user.email, CASHIER_PASSWORD))
