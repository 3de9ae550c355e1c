"""
Sale creation tests.

Covers the checkout pipeline end to end at the service layer: pricing,
stock reservation, ad-hoc items, customer upsert, scope checks, and the
guarantee that a refused sale leaves stock, items and customers untouched.
"""

import re

import pytest

from backoffice.errors import (
    InsufficientStockError,
    ItemUnavailableError,
    PermissionDeniedError,
    SaleTimeoutError,
    StoreInactiveError,
    StoreNotFoundError,
    ValidationError,
)
from backoffice.models import CatalogItem, Customer, Sale, SecurityEvent, StockMovement, Store
from backoffice.services.sale_request import parse_sale_request
from backoffice.services.sales_service import create_sale
from backoffice.services.totals import verify_sale_totals
from conftest import caps_for


def sale_request(items, *, method="cash", amount=None, **extra):
    payment = {"method": method}
    if amount is not None:
        payment["amount_cents"] = amount
    return parse_sale_request({"items": items, "payment": payment, **extra})


def stock_of(db_session, item):
    db_session.expire_all()
    return db_session.get(CatalogItem, item.id).current_stock


class TestCreateSale:

    def test_single_line_sale(self, db_session, employee_a, store_a, item_a):
        sale = create_sale(
            caps_for(employee_a),
            sale_request([{"catalog_item_id": item_a.id, "quantity": 2}], amount=2000),
        )

        assert sale.status == "completed"
        assert sale.store_id == store_a.id
        assert sale.company_id == store_a.company_id
        assert sale.cashier_id == employee_a.id
        assert re.match(r"^SALE-\d{8}-0001-[0-9a-z]{4}$", sale.sale_number)
        assert sale.subtotal_cents == 2000
        assert sale.total_discount_cents == 0
        assert sale.total_tax_cents == 0
        assert sale.total_amount_cents == 2000
        assert sale.payment_change_cents == 0
        assert stock_of(db_session, item_a) == 8

    def test_discount_and_tax(self, db_session, employee_a, taxed_item_a):
        sale = create_sale(
            caps_for(employee_a),
            sale_request(
                [{"catalog_item_id": taxed_item_a.id, "quantity": 3, "discount": 10}],
                amount=2000,
            ),
        )

        line = sale.lines[0]
        assert line.subtotal_cents == 1500
        assert line.discount_cents == 150
        assert line.tax_cents == 243
        assert line.total_cents == 1593
        assert sale.total_amount_cents == 1593
        assert sale.payment_change_cents == 407

    def test_stored_sale_reconciles_after_reload(self, db_session, employee_a, item_a, taxed_item_a):
        sale = create_sale(
            caps_for(employee_a),
            sale_request([
                {"catalog_item_id": item_a.id, "quantity": 1, "discount": 300, "discount_kind": "fixed"},
                {"catalog_item_id": taxed_item_a.id, "quantity": 4, "discount": "12.5"},
            ]),
        )
        sale_id = sale.id
        db_session.expire_all()

        stored = db_session.get(Sale, sale_id)
        assert [line.line_number for line in stored.lines] == [1, 2]
        assert verify_sale_totals(stored)
        assert stored.total_amount_cents == sum(line.total_cents for line in stored.lines)

    def test_payment_defaults_to_total(self, db_session, employee_a, item_a):
        sale = create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id}]))

        assert sale.payment_amount_cents == 1000
        assert sale.payment_change_cents == 0
        assert sale.amount_due_cents == 0

    def test_underpayment_recorded_with_amount_due(self, db_session, employee_a, item_a):
        sale = create_sale(
            caps_for(employee_a),
            sale_request([{"catalog_item_id": item_a.id}], method="credit", amount=400),
        )

        assert sale.status == "completed"
        assert sale.payment_change_cents == 0
        assert sale.amount_due_cents == 600

    def test_pending_payment_creates_pending_sale(self, db_session, employee_a, item_a):
        req = parse_sale_request({
            "items": [{"catalog_item_id": item_a.id}],
            "payment": {"method": "mobile_money", "status": "pending"},
            "channel": "ecommerce",
        })
        sale = create_sale(caps_for(employee_a), req)

        assert sale.status == "pending"
        assert sale.channel == "ecommerce"
        assert stock_of(db_session, item_a) == 9

    def test_sale_movements_recorded(self, db_session, employee_a, item_a):
        sale = create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id, "quantity": 3}]))

        movements = db_session.query(StockMovement).filter_by(sale_id=sale.id).all()
        assert len(movements) == 1
        assert movements[0].movement_type == "SALE"
        assert movements[0].quantity_delta == -3
        assert movements[0].stock_after == 7
        assert movements[0].line_number == 1

    def test_same_item_on_two_lines(self, db_session, employee_a, item_a):
        create_sale(
            caps_for(employee_a),
            sale_request([
                {"catalog_item_id": item_a.id, "quantity": 4},
                {"catalog_item_id": item_a.id, "quantity": 5},
            ]),
        )
        assert stock_of(db_session, item_a) == 1

    def test_store_stats_refreshed(self, db_session, employee_a, store_a, item_a):
        create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id, "quantity": 2}]))
        create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id}]))

        db_session.expire_all()
        store = db_session.get(Store, store_a.id)
        assert store.total_sales == 2
        assert store.total_revenue_cents == 3000
        assert store.average_sale_cents == 1500
        assert store.last_sale_at is not None


class TestAdHocLines:

    def test_adhoc_item_materialized(self, db_session, employee_a, store_a):
        sale = create_sale(
            caps_for(employee_a),
            sale_request([{"name": "Custom Service", "unit_price_cents": 5000}]),
        )

        line = sale.lines[0]
        item = db_session.get(CatalogItem, line.item_id)
        assert item.is_adhoc is True
        assert item.store_id == store_a.id
        assert item.sku.startswith("AUTO-")
        assert item.name == "Custom Service"
        assert item.selling_price_cents == 5000
        assert item.tax_rate_bps == 0
        assert item.current_stock == 100000 - 1
        assert line.item_sku == item.sku
        assert sale.total_amount_cents == 5000

    def test_adhoc_item_discarded_when_sale_fails(self, db_session, employee_a, item_a):
        with pytest.raises(InsufficientStockError):
            create_sale(
                caps_for(employee_a),
                sale_request([
                    {"name": "Gift wrap", "unit_price_cents": 200},
                    {"catalog_item_id": item_a.id, "quantity": 99},
                ]),
            )

        assert db_session.query(CatalogItem).filter_by(is_adhoc=True).count() == 0


class TestRefusedSales:

    def test_insufficient_stock(self, db_session, employee_a, item_a):
        with pytest.raises(InsufficientStockError) as exc:
            create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id, "quantity": 11}]))

        assert exc.value.details["available"] == 10
        assert exc.value.details["requested"] == 11
        assert exc.value.details["item_id"] == item_a.id
        assert stock_of(db_session, item_a) == 10
        assert db_session.query(Sale).count() == 0

    def test_earlier_lines_rolled_back(self, db_session, employee_a, item_a, taxed_item_a):
        with pytest.raises(InsufficientStockError):
            create_sale(
                caps_for(employee_a),
                sale_request([
                    {"catalog_item_id": item_a.id, "quantity": 2},
                    {"catalog_item_id": taxed_item_a.id, "quantity": 50},
                ]),
            )

        assert stock_of(db_session, item_a) == 10
        assert db_session.query(StockMovement).count() == 0

    def test_duplicate_lines_cannot_oversell(self, db_session, employee_a, item_a):
        with pytest.raises(InsufficientStockError):
            create_sale(
                caps_for(employee_a),
                sale_request([
                    {"catalog_item_id": item_a.id, "quantity": 6},
                    {"catalog_item_id": item_a.id, "quantity": 6},
                ]),
            )
        assert stock_of(db_session, item_a) == 10

    def test_negative_stock_store_policy(self, db_session, employee_a, store_a, item_a):
        store_a.allow_negative_stock = True
        db_session.commit()

        create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id, "quantity": 12}]))
        assert stock_of(db_session, item_a) == -2

    def test_item_of_another_store(self, db_session, employee_a, item_a2):
        with pytest.raises(ItemUnavailableError) as exc:
            create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a2.id}]))
        assert exc.value.details["item_ids"] == [item_a2.id]

    def test_inactive_item(self, db_session, employee_a, item_a):
        item_a.is_active = False
        db_session.commit()

        with pytest.raises(ItemUnavailableError):
            create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id}]))

    def test_unknown_item(self, db_session, employee_a, item_a):
        with pytest.raises(ItemUnavailableError):
            create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": 987654}]))

    @pytest.mark.parametrize("status", ["inactive", "maintenance"])
    def test_store_not_accepting_sales(self, db_session, employee_a, store_a, item_a, status):
        store_a.status = status
        db_session.commit()

        with pytest.raises(StoreInactiveError):
            create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id}]))
        assert stock_of(db_session, item_a) == 10

    def test_role_without_sales_capability(self, db_session, accountant_a, store_a, item_a):
        with pytest.raises(PermissionDeniedError):
            create_sale(
                caps_for(accountant_a),
                sale_request([{"catalog_item_id": item_a.id}], store_id=store_a.id),
            )
        assert db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").count() == 1

    def test_deadline_exceeded_rolls_back(self, app, db_session, employee_a, item_a, monkeypatch):
        monkeypatch.setitem(app.config, "SALE_TRANSACTION_TIMEOUT_SECONDS", 1e-9)

        with pytest.raises(SaleTimeoutError):
            create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id}]))

        assert stock_of(db_session, item_a) == 10
        assert db_session.query(Sale).count() == 0


class TestStoreResolution:

    def test_store_user_request_store_ignored(self, db_session, employee_a, store_a, store_a2, item_a):
        sale = create_sale(
            caps_for(employee_a),
            sale_request([{"catalog_item_id": item_a.id}], store_id=store_a2.id),
        )
        assert sale.store_id == store_a.id

    def test_company_admin_must_name_store(self, db_session, company_admin_a, item_a):
        with pytest.raises(ValidationError):
            create_sale(caps_for(company_admin_a), sale_request([{"catalog_item_id": item_a.id}]))

    def test_company_admin_sells_in_any_own_store(self, db_session, company_admin_a, store_a2, item_a2):
        sale = create_sale(
            caps_for(company_admin_a),
            sale_request([{"catalog_item_id": item_a2.id}], store_id=store_a2.id),
        )
        assert sale.store_id == store_a2.id

    def test_foreign_store_is_not_found_and_logged(self, db_session, company_admin_a, store_b, item_b):
        with pytest.raises(StoreNotFoundError):
            create_sale(
                caps_for(company_admin_a),
                sale_request([{"catalog_item_id": item_b.id}], store_id=store_b.id),
            )

        events = db_session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS").all()
        assert len(events) == 1
        assert events[0].user_id == company_admin_a.id
        assert stock_of(db_session, item_b) == 10

    def test_super_admin_sells_anywhere(self, db_session, super_admin, store_b, item_b):
        sale = create_sale(
            caps_for(super_admin),
            sale_request([{"catalog_item_id": item_b.id}], store_id=store_b.id),
        )
        assert sale.company_id == store_b.company_id


class TestCustomerUpsert:

    def test_new_customer_created_and_reused(self, db_session, employee_a, item_a):
        customer = {"name": "Ada Lovelace", "email": "ada@example.com", "phone": "555-0100"}
        first = create_sale(caps_for(employee_a), sale_request([{"catalog_item_id": item_a.id}], customer=customer))
        second = create_sale(
            caps_for(employee_a),
            sale_request([{"catalog_item_id": item_a.id, "quantity": 2}], customer={"email": "ADA@example.com"}),
        )

        assert first.customer_id is not None
        assert second.customer_id == first.customer_id
        assert second.customer_name == "Ada Lovelace"

        db_session.expire_all()
        stored = db_session.get(Customer, first.customer_id)
        assert stored.total_purchases == 2
        assert stored.total_spent_cents == 3000
        assert db_session.query(Customer).count() == 1

    def test_lookup_by_phone(self, db_session, employee_a, item_a):
        first = create_sale(
            caps_for(employee_a),
            sale_request([{"catalog_item_id": item_a.id}], customer={"name": "Bob", "phone": "555-0199"}),
        )
        second = create_sale(
            caps_for(employee_a),
            sale_request([{"catalog_item_id": item_a.id}], customer={"phone": "555-0199"}),
        )
        assert second.customer_id == first.customer_id

    def test_unnamed_unknown_customer_only_snapshotted(self, db_session, employee_a, item_a):
        sale = create_sale(
            caps_for(employee_a),
            sale_request([{"catalog_item_id": item_a.id}], customer={"email": "walkin@example.com"}),
        )

        assert sale.customer_id is None
        assert sale.customer_email == "walkin@example.com"
        assert db_session.query(Customer).count() == 0
