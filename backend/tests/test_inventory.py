"""Catalog item and manual stock adjustment tests."""

import pytest

from backoffice.errors import CatalogItemNotFoundError, ConflictError, ValidationError
from backoffice.models import StockMovement
from backoffice.services import catalog_service, stock_service
from conftest import caps_for


class TestCatalogItems:

    def test_create_item_in_own_store(self, db_session, manager_a, store_a):
        item = catalog_service.create_item(
            caps_for(manager_a),
            {"sku": "tea-01", "name": "Green Tea", "selling_price_cents": 450, "cost_price_cents": 200,
             "current_stock": 25, "tax_rate_bps": 1800},
            actor_id=manager_a.id,
        )

        assert item.sku == "TEA-01"
        assert item.store_id == store_a.id
        assert item.company_id == store_a.company_id
        assert item.current_stock == 25
        assert item.is_adhoc is False

    def test_sku_unique_within_company(self, db_session, company_admin_a, store_a2, item_a):
        with pytest.raises(ConflictError):
            catalog_service.create_item(
                caps_for(company_admin_a),
                {"sku": item_a.sku, "name": "Clone", "selling_price_cents": 100},
                store_id=store_a2.id,
            )

    def test_same_sku_allowed_in_other_company(self, db_session, manager_b, item_a):
        item = catalog_service.create_item(
            caps_for(manager_b), {"sku": item_a.sku, "name": "Widget", "selling_price_cents": 100}
        )
        assert item.sku == item_a.sku

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "No sku", "selling_price_cents": 100},
            {"sku": "X1", "name": "Cheap", "selling_price_cents": 100, "cost_price_cents": 150},
            {"sku": "X2", "name": "Neg", "selling_price_cents": -1},
            {"sku": "X3", "name": "Stock", "selling_price_cents": 100, "current_stock": -5},
            {"sku": "X4", "name": "Hack", "selling_price_cents": 100, "is_adhoc": True},
            {"sku": "X5", "name": "Float", "selling_price_cents": 9.99},
        ],
    )
    def test_invalid_items_rejected(self, db_session, manager_a, payload):
        with pytest.raises(ValidationError):
            catalog_service.create_item(caps_for(manager_a), payload)

    def test_items_of_other_tenants_invisible(self, db_session, manager_a, item_a, item_a2, item_b):
        listed = catalog_service.list_items(caps_for(manager_a))
        assert [i["id"] for i in listed["items"]] == [item_a.id]

        with pytest.raises(CatalogItemNotFoundError):
            catalog_service.get_item(caps_for(manager_a), item_b.id)
        with pytest.raises(CatalogItemNotFoundError):
            catalog_service.get_item(caps_for(manager_a), item_a2.id)

    def test_company_admin_lists_all_company_stores(self, db_session, company_admin_a, item_a, item_a2, item_b):
        listed = catalog_service.list_items(caps_for(company_admin_a))
        assert {i["id"] for i in listed["items"]} == {item_a.id, item_a2.id}

        one_store = catalog_service.list_items(caps_for(company_admin_a), store_id=item_a2.store_id)
        assert [i["id"] for i in one_store["items"]] == [item_a2.id]

    def test_deactivate_hides_from_default_listing(self, db_session, manager_a, item_a):
        catalog_service.deactivate_item(caps_for(manager_a), item_a.id)

        assert catalog_service.list_items(caps_for(manager_a))["count"] == 0
        assert catalog_service.list_items(caps_for(manager_a), include_inactive=True)["count"] == 1

    def test_search_and_pagination(self, db_session, manager_a, item_a, taxed_item_a):
        found = catalog_service.list_items(caps_for(manager_a), search="gadg")
        assert [i["id"] for i in found["items"]] == [taxed_item_a.id]

        page = catalog_service.list_items(caps_for(manager_a), page=1, per_page=1)
        assert page["count"] == 1
        assert page["pagination"]["total"] == 2
        assert page["pagination"]["has_next"] is True

    def test_sku_race_lost_at_commit_is_conflict(self, db_session, manager_a, item_a, monkeypatch):
        # Another writer inserted the SKU between the check and the commit
        monkeypatch.setattr(catalog_service, "_sku_taken", lambda *args, **kwargs: False)

        with pytest.raises(ConflictError):
            catalog_service.create_item(
                caps_for(manager_a), {"sku": item_a.sku, "name": "Twin", "selling_price_cents": 100}
            )

        assert catalog_service.list_items(caps_for(manager_a))["count"] == 1


class TestUpdateItem:

    def test_patches_given_fields_only(self, db_session, manager_a, item_a):
        item = catalog_service.update_item(
            caps_for(manager_a), item_a.id, {"name": "Widget XL", "selling_price_cents": 1200, "sku": "widget-xl"}
        )

        assert item.name == "Widget XL"
        assert item.selling_price_cents == 1200
        assert item.sku == "WIDGET-XL"
        assert item.current_stock == 10

    def test_stock_not_writable(self, db_session, manager_a, item_a):
        with pytest.raises(ValidationError):
            catalog_service.update_item(caps_for(manager_a), item_a.id, {"current_stock": 99})

    def test_selling_checked_against_stored_cost(self, db_session, manager_a, item_a):
        item_a.cost_price_cents = 600
        db_session.commit()

        with pytest.raises(ValidationError):
            catalog_service.update_item(caps_for(manager_a), item_a.id, {"selling_price_cents": 500})

    def test_sku_of_another_item_is_conflict(self, db_session, manager_a, item_a, taxed_item_a):
        with pytest.raises(ConflictError):
            catalog_service.update_item(caps_for(manager_a), item_a.id, {"sku": taxed_item_a.sku})

    def test_keeping_own_sku_is_fine(self, db_session, manager_a, item_a):
        item = catalog_service.update_item(caps_for(manager_a), item_a.id, {"sku": item_a.sku, "min_stock": 3})
        assert item.min_stock == 3

    def test_foreign_item_not_found(self, db_session, manager_a, item_b):
        with pytest.raises(CatalogItemNotFoundError):
            catalog_service.update_item(caps_for(manager_a), item_b.id, {"name": "Mine now"})


class TestAdjustStock:

    @pytest.mark.parametrize(
        "operation,quantity,expected",
        [
            ("add", 5, 15),
            ("subtract", 4, 6),
            ("subtract", 25, 0),
            ("set", 3, 3),
            ("set", 0, 0),
        ],
    )
    def test_operations(self, db_session, manager_a, item_a, operation, quantity, expected):
        item, movement = stock_service.adjust_stock(
            caps_for(manager_a), item_a.id, quantity=quantity, operation=operation, reason="count"
        )

        assert item.current_stock == expected
        assert movement.stock_after == expected
        assert movement.quantity_delta == expected - 10
        assert movement.movement_type == f"ADJUST_{operation.upper()}"
        assert movement.actor_user_id == manager_a.id

    def test_negative_only_when_store_allows(self, db_session, manager_a, store_a, item_a):
        item, _ = stock_service.adjust_stock(
            caps_for(manager_a), item_a.id, quantity=15, operation="subtract", allow_negative=True
        )
        assert item.current_stock == 0

        store_a.allow_negative_stock = True
        db_session.commit()
        item, _ = stock_service.adjust_stock(
            caps_for(manager_a), item_a.id, quantity=5, operation="subtract", allow_negative=True
        )
        assert item.current_stock == -5

    @pytest.mark.parametrize(
        "operation,quantity",
        [("multiply", 2), ("add", -1), ("add", "3.5"), ("set", None)],
    )
    def test_invalid_adjustments(self, db_session, manager_a, item_a, operation, quantity):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(caps_for(manager_a), item_a.id, quantity=quantity, operation=operation)
        assert db_session.query(StockMovement).count() == 0

    def test_other_company_item_not_found(self, db_session, manager_a, item_b):
        with pytest.raises(CatalogItemNotFoundError):
            stock_service.adjust_stock(caps_for(manager_a), item_b.id, quantity=1, operation="add")


class TestLowStock:

    def test_low_stock_listing(self, db_session, manager_a, item_a, taxed_item_a):
        taxed_item_a.min_stock = 10
        item_a.reorder_point = 2
        db_session.commit()

        low = stock_service.list_low_stock_items(caps_for(manager_a))
        assert [i.id for i in low] == [taxed_item_a.id]
        assert taxed_item_a.is_low_stock
        assert not item_a.needs_reorder

    def test_movements_for_item(self, db_session, manager_a, item_a):
        stock_service.adjust_stock(caps_for(manager_a), item_a.id, quantity=1, operation="add")
        stock_service.adjust_stock(caps_for(manager_a), item_a.id, quantity=2, operation="subtract")

        movements = stock_service.movements_for_item(caps_for(manager_a), item_a.id)
        assert [m.movement_type for m in movements] == ["ADJUST_SUBTRACT", "ADJUST_ADD"]
