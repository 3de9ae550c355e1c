"""
Concurrent checkout and cancellation against a file-backed SQLite database.

Each worker thread pushes its own app context and so gets its own session
and connection; the in-memory test database cannot be shared that way.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from backoffice import create_app
from backoffice.errors import InsufficientStockError, SaleAlreadyCancelledError
from backoffice.extensions import db
from backoffice.models import CatalogItem, Company, Sale, StockMovement, Store
from backoffice.services.auth_service import create_user
from backoffice.services.permission_service import resolve_capabilities
from backoffice.services.sale_request import parse_sale_request
from backoffice.services.sales_service import cancel_sale, create_sale

WORKERS = 6


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.engine.dispose()


def _seed(app, stock):
    """Company, store, a manager and one item; returns (caps, item_id)."""
    with app.app_context():
        company = Company(name="Race Co", code="RACE", is_active=True)
        db.session.add(company)
        db.session.commit()
        store = Store(company_id=company.id, name="Race Store", code="R1")
        db.session.add(store)
        db.session.commit()
        manager = create_user(
            username="racer",
            email="racer@example.com",
            password="Password123!",
            role="store_manager",
            company_id=company.id,
            store_id=store.id,
        )
        item = CatalogItem(
            company_id=company.id,
            store_id=store.id,
            sku="LAST-ONE",
            name="Last One",
            selling_price_cents=1000,
            current_stock=stock,
        )
        db.session.add(item)
        db.session.commit()
        return resolve_capabilities(manager), item.id


def _run_concurrently(app, func, count=WORKERS):
    """Start ``count`` calls of func() together; returns (results, errors)."""
    barrier = threading.Barrier(count)

    def worker():
        with app.app_context():
            barrier.wait()
            return func()

    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(worker) for _ in range(count)]
    results, errors = [], []
    for future in futures:
        if future.exception() is not None:
            errors.append(future.exception())
        else:
            results.append(future.result())
    return results, errors


def _checkout(caps, item_id):
    request = parse_sale_request({
        "items": [{"catalog_item_id": item_id, "quantity": 1}],
        "payment": {"method": "cash"},
    })
    return lambda: create_sale(caps, request).sale_number


def test_last_unit_sold_once(file_app):
    caps, item_id = _seed(file_app, stock=1)

    numbers, errors = _run_concurrently(file_app, _checkout(caps, item_id))

    assert len(numbers) == 1
    assert len(errors) == WORKERS - 1
    assert all(isinstance(e, InsufficientStockError) for e in errors)
    with file_app.app_context():
        assert db.session.get(CatalogItem, item_id).current_stock == 0
        assert db.session.query(Sale).count() == 1
        assert db.session.query(StockMovement).filter_by(movement_type="SALE").count() == 1


def test_parallel_sales_get_distinct_numbers(file_app):
    caps, item_id = _seed(file_app, stock=100)

    numbers, errors = _run_concurrently(file_app, _checkout(caps, item_id))

    assert errors == []
    assert len(set(numbers)) == WORKERS
    with file_app.app_context():
        assert db.session.get(CatalogItem, item_id).current_stock == 100 - WORKERS


def test_parallel_cancels_restore_once(file_app):
    caps, item_id = _seed(file_app, stock=5)
    with file_app.app_context():
        sale = create_sale(caps, parse_sale_request({
            "items": [{"catalog_item_id": item_id, "quantity": 3}],
            "payment": {"method": "cash"},
        }))
        sale_id = sale.id

    results, errors = _run_concurrently(file_app, lambda: cancel_sale(caps, sale_id).status)

    assert results == ["cancelled"]
    assert len(errors) == WORKERS - 1
    assert all(isinstance(e, SaleAlreadyCancelledError) for e in errors)
    with file_app.app_context():
        assert db.session.get(CatalogItem, item_id).current_stock == 5
        assert db.session.query(StockMovement).filter_by(sale_id=sale_id, movement_type="SALE_CANCEL").count() == 1
