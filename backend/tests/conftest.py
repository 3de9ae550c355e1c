"""
Pytest fixtures for back-office backend tests.

Two companies (tenants) with their own stores, users and catalog items, an
in-memory database wiped between tests, and a test client.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import CatalogItem, Company, Store
from backoffice.services.auth_service import create_user
from backoffice.services.permission_service import resolve_capabilities

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test, same schema."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def company_a(db_session):
    company = Company(name="Company A - Acme Corp", code="ACME", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    company = Company(name="Company B - Beta Inc", code="BETA", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def store_a(db_session, company_a):
    store = Store(company_id=company_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, company_a):
    """Second store of company A."""
    store = Store(company_id=company_a.id, name="Store A2", code="A2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, company_b):
    store = Store(company_id=company_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


def _user(username, role, company=None, store=None):
    return create_user(
        username=username,
        email=f"{username}@example.com",
        password=PASSWORD,
        role=role,
        company_id=company.id if company else None,
        store_id=store.id if store else None,
    )


@pytest.fixture(scope='function')
def super_admin(db_session):
    return _user("root", "super_admin")


@pytest.fixture(scope='function')
def company_admin_a(db_session, company_a):
    return _user("admin_a", "company_admin", company_a)


@pytest.fixture(scope='function')
def accountant_a(db_session, company_a):
    return _user("accountant_a", "accountant", company_a)


@pytest.fixture(scope='function')
def manager_a(db_session, company_a, store_a):
    return _user("manager_a", "store_manager", company_a, store_a)


@pytest.fixture(scope='function')
def employee_a(db_session, company_a, store_a):
    return _user("cashier_a", "employee", company_a, store_a)


@pytest.fixture(scope='function')
def employee_a_other(db_session, company_a, store_a):
    return _user("cashier_a2", "employee", company_a, store_a)


@pytest.fixture(scope='function')
def manager_a2(db_session, company_a, store_a2):
    return _user("manager_a2", "store_manager", company_a, store_a2)


@pytest.fixture(scope='function')
def manager_b(db_session, company_b, store_b):
    return _user("manager_b", "store_manager", company_b, store_b)


def caps_for(user):
    return resolve_capabilities(user)


def _item(store, sku, name, price, *, stock=10, tax_bps=0, cost=0):
    item = CatalogItem(
        company_id=store.company_id,
        store_id=store.id,
        sku=sku,
        name=name,
        cost_price_cents=cost,
        selling_price_cents=price,
        current_stock=stock,
        tax_rate_bps=tax_bps,
    )
    db.session.add(item)
    db.session.commit()
    return item


@pytest.fixture(scope='function')
def item_a(db_session, store_a):
    """1000 cents, no tax, 10 in stock."""
    return _item(store_a, "WIDGET-1", "Widget", 1000)


@pytest.fixture(scope='function')
def taxed_item_a(db_session, store_a):
    """500 cents, 18% tax, 10 in stock."""
    return _item(store_a, "GADGET-1", "Gadget", 500, tax_bps=1800)


@pytest.fixture(scope='function')
def item_a2(db_session, store_a2):
    return _item(store_a2, "WIDGET-A2", "Widget (A2)", 1000)


@pytest.fixture(scope='function')
def item_b(db_session, store_b):
    return _item(store_b, "WIDGET-B", "Widget (B)", 2000)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def login(client):
    """login(user) -> Authorization headers for that user."""
    def _login(user):
        token = get_auth_token(client, user.username)
        assert token, f"login failed for {user.username}"
        return auth_headers(token)
    return _login
