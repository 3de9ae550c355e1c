"""
Capability resolution and tenant visibility.

Every role maps to one row of the capability table; unknown roles and
inactive users fail closed. Sales visibility follows the resolved scope.
"""

import pytest

from backoffice.errors import PermissionDeniedError, SaleNotFoundError, ScopeError
from backoffice.models import SecurityEvent
from backoffice.permissions import Scope
from backoffice.services.permission_service import require_capability, resolve_capabilities
from backoffice.services.sale_request import parse_sale_request
from backoffice.services.sales_service import SaleFilters, create_sale, get_sale, list_sales, summarize_sales
from conftest import caps_for


def _sell(user, item, quantity=1, method="cash", **extra):
    return create_sale(
        caps_for(user),
        parse_sale_request({
            "items": [{"catalog_item_id": item.id, "quantity": quantity}],
            "payment": {"method": method},
            **extra,
        }),
    )


class TestCapabilities:

    @pytest.mark.parametrize(
        "fixture,scope,sell,cancel,inventory,reports,own_only",
        [
            ("super_admin", Scope.PLATFORM, True, True, True, True, False),
            ("company_admin_a", Scope.COMPANY, True, True, True, True, False),
            ("accountant_a", Scope.COMPANY, False, False, False, True, False),
            ("manager_a", Scope.STORE, True, True, True, True, False),
            ("employee_a", Scope.STORE, True, False, False, False, True),
        ],
    )
    def test_role_table(self, request, fixture, scope, sell, cancel, inventory, reports, own_only):
        caps = caps_for(request.getfixturevalue(fixture))

        assert caps.scope == scope
        assert caps.can_process_sales is sell
        assert caps.can_cancel_sales is cancel
        assert caps.can_manage_inventory is inventory
        assert caps.can_view_reports is reports
        assert caps.own_sales_only is own_only

    def test_scope_drops_irrelevant_ids(self, super_admin, company_admin_a, manager_a, store_a):
        assert caps_for(super_admin).company_id is None
        assert caps_for(company_admin_a).store_id is None
        assert caps_for(manager_a).store_id == store_a.id

    def test_unknown_role_fails_closed(self, db_session, manager_a):
        manager_a.role = "regional_overlord"
        caps = resolve_capabilities(manager_a)

        assert caps.scope == Scope.STORE
        assert not any([caps.can_process_sales, caps.can_cancel_sales, caps.can_manage_inventory, caps.can_view_reports])

    def test_inactive_user_fails_closed(self, db_session, company_admin_a):
        company_admin_a.is_active = False
        db_session.commit()
        caps = resolve_capabilities(company_admin_a)

        assert caps.scope == Scope.STORE
        assert caps.can_process_sales is False

    def test_denial_is_logged(self, db_session, accountant_a):
        with pytest.raises(PermissionDeniedError) as exc_info:
            require_capability(caps_for(accountant_a), "can_cancel_sales")

        assert exc_info.value.details["required_capability"] == "can_cancel_sales"
        event = db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.user_id == accountant_a.id
        assert event.success is False

    def test_unknown_flag_is_a_programming_error(self, manager_a):
        with pytest.raises(KeyError):
            caps_for(manager_a).allows("can_fly")


class TestSaleVisibility:

    @pytest.fixture
    def sales(self, db_session, employee_a, employee_a_other, manager_a2, manager_b, item_a, item_a2, item_b):
        return {
            "mine": _sell(employee_a, item_a),
            "colleague": _sell(employee_a_other, item_a, method="card"),
            "other_store": _sell(manager_a2, item_a2),
            "other_company": _sell(manager_b, item_b),
        }

    def _ids(self, listing):
        return {s["id"] for s in listing["items"]}

    def test_employee_sees_own_sales_only(self, sales, employee_a):
        caps = caps_for(employee_a)

        assert self._ids(list_sales(caps, SaleFilters())) == {sales["mine"].id}
        assert get_sale(caps, sales["mine"].id).id == sales["mine"].id
        with pytest.raises(ScopeError):
            get_sale(caps, sales["colleague"].id)

    def test_manager_sees_whole_store(self, sales, manager_a):
        caps = caps_for(manager_a)

        assert self._ids(list_sales(caps, SaleFilters())) == {sales["mine"].id, sales["colleague"].id}
        with pytest.raises(ScopeError):
            get_sale(caps, sales["other_store"].id)

    def test_company_admin_sees_all_company_stores(self, sales, company_admin_a, store_a2):
        caps = caps_for(company_admin_a)

        assert self._ids(list_sales(caps, SaleFilters())) == {
            sales["mine"].id, sales["colleague"].id, sales["other_store"].id,
        }
        assert self._ids(list_sales(caps, SaleFilters(store_id=store_a2.id))) == {sales["other_store"].id}

    def test_other_company_sale_does_not_exist(self, sales, company_admin_a):
        with pytest.raises(SaleNotFoundError):
            get_sale(caps_for(company_admin_a), sales["other_company"].id)

    def test_foreign_store_filter_yields_nothing(self, sales, manager_a, store_b):
        assert list_sales(caps_for(manager_a), SaleFilters(store_id=store_b.id))["count"] == 0

    def test_super_admin_sees_everything(self, sales, super_admin):
        assert len(self._ids(list_sales(caps_for(super_admin), SaleFilters()))) == 4

    def test_mine_listing(self, sales, manager_a, employee_a_other):
        listing = list_sales(caps_for(employee_a_other), SaleFilters(), mine=True)
        assert self._ids(listing) == {sales["colleague"].id}
        assert list_sales(caps_for(manager_a), SaleFilters(), mine=True)["count"] == 0

    def test_status_filter_and_pagination(self, sales, manager_a):
        caps = caps_for(manager_a)

        assert list_sales(caps, SaleFilters(status="cancelled"))["count"] == 0
        page = list_sales(caps, SaleFilters(page=1, per_page=1))
        assert page["count"] == 1
        assert page["pagination"]["total"] == 2
        assert "items" not in page["items"][0]


class TestSalesSummary:

    def test_summary_for_store(self, db_session, employee_a, manager_a, item_a, taxed_item_a):
        _sell(employee_a, item_a, quantity=2)
        _sell(employee_a, taxed_item_a, quantity=1, method="card")

        summary = summarize_sales(caps_for(manager_a), SaleFilters())

        assert summary["total_sales"] == 2
        assert summary["total_revenue_cents"] == 2000 + 590
        assert summary["total_tax_cents"] == 90
        assert summary["items_sold"] == 3
        assert summary["average_sale_cents"] == 2590 // 2
        assert summary["by_payment_method"] == [
            {"method": "card", "count": 1, "total_cents": 590},
            {"method": "cash", "count": 1, "total_cents": 2000},
        ]

    def test_summary_excludes_other_tenants(self, db_session, manager_a, manager_b, item_b):
        _sell(manager_b, item_b)

        assert summarize_sales(caps_for(manager_a), SaleFilters())["total_sales"] == 0

    def test_summary_needs_reports(self, db_session, employee_a):
        with pytest.raises(PermissionDeniedError):
            summarize_sales(caps_for(employee_a), SaleFilters())
