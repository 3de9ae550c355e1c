"""
Sales Service - checkout and cancellation of sale aggregates.

CREATE PIPELINE (one database transaction):
    resolve store -> resolve catalog lines / materialize ad-hoc lines
    -> compute totals -> upsert customer -> reserve stock per line
    -> assign sale number -> persist sale, lines and stock movements -> commit

Stock is reserved with a conditional decrement before the sale row is
written; any failure after that rolls the whole transaction back, which
returns the reserved stock. A deadline bounds how long the transaction may
hold its reservations.

CANCELLATION (one database transaction):
    lock sale -> guard transition -> flip status, append note
    -> restore stock per line (idempotent) -> commit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import SaleNotFoundError, ScopeError, StoreInactiveError, ValidationError
from ..extensions import db
from ..models import CatalogItem, Sale, SaleLine, Store
from ..permissions import Capabilities, Scope
from ..time_utils import utcnow
from ..validation import MAX_PRICE_CENTS
from .catalog_service import load_sale_items, materialize_adhoc_item
from .concurrency import Deadline, begin_write, lock_for_update, run_with_retry
from .customer_service import record_purchase, reverse_purchase, upsert_customer
from .pagination import paginate
from .permission_service import require_capability
from .sale_lifecycle import append_note, initial_status, require_transition
from .sale_number_service import generate_sale_number
from .sale_request import CatalogLine, LineRequest, SaleRequest
from .stock_service import record_sale_movements, reserve_line, restore_sale_stock
from .store_service import refresh_store_stats_quietly
from .tenant_service import resolve_sale_store, scope_query
from .totals import LinePricing, SaleTotals, compute_change, compute_totals

logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON = "Cancelled by user"


@dataclass(frozen=True)
class _ResolvedLine:
    line_number: int
    item: CatalogItem
    request: LineRequest

    @property
    def pricing(self) -> LinePricing:
        return LinePricing(
            quantity=self.request.quantity,
            unit_price_cents=self.item.selling_price_cents,
            discount_kind=self.request.discount_kind,
            discount_value=self.request.discount_value,
            tax_rate_bps=self.item.tax_rate_bps,
        )


@dataclass(frozen=True)
class SaleFilters:
    status: str | None = None
    store_id: int | None = None
    cashier_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int | None = None
    per_page: int | None = None


def _resolve_lines(store: Store, request: SaleRequest, actor_id: int) -> list[_ResolvedLine]:
    catalog_ids = {line.source.item_id for line in request.lines if isinstance(line.source, CatalogLine)}
    items = load_sale_items(store, catalog_ids)
    initial_stock = current_app.config["ADHOC_ITEM_INITIAL_STOCK"]

    resolved = []
    for number, line in enumerate(request.lines, start=1):
        if isinstance(line.source, CatalogLine):
            item = items[line.source.item_id]
        else:
            item = materialize_adhoc_item(
                store,
                name=line.source.name,
                unit_price_cents=line.source.unit_price_cents,
                cost_price_cents=line.source.cost_price_cents,
                initial_stock=initial_stock,
                actor_id=actor_id,
            )
        resolved.append(_ResolvedLine(line_number=number, item=item, request=line))
    return resolved


def _check_amount_bounds(totals: SaleTotals) -> None:
    """Line and sale amounts must stay within the single-amount bound."""
    for number, t in enumerate(totals.lines, start=1):
        if max(t.subtotal_cents, t.total_cents) > MAX_PRICE_CENTS:
            raise ValidationError(
                f"Line {number} amount exceeds the maximum allowed",
                {"field": f"items[{number - 1}]", "max_cents": MAX_PRICE_CENTS},
            )
    if max(totals.subtotal_cents, totals.total_amount_cents) > MAX_PRICE_CENTS:
        raise ValidationError(
            "Sale total exceeds the maximum allowed",
            {"field": "items", "max_cents": MAX_PRICE_CENTS},
        )


def create_sale(caps: Capabilities, request: SaleRequest) -> Sale:
    """
    Price, number and persist a sale, taking its stock.

    Raises ValidationError, ScopeError/StoreInactiveError,
    StoreNotFoundError, ItemUnavailableError, InsufficientStockError or
    SaleTimeoutError; none of them leaves anything behind.
    """
    require_capability(caps, "can_process_sales")
    config = current_app.config
    deadline = Deadline(config["SALE_TRANSACTION_TIMEOUT_SECONDS"])
    store_id = resolve_sale_store(caps, request.store_id).id

    def _op() -> Sale:
        begin_write()
        store = db.session.get(Store, store_id)
        if not store.is_active:
            raise StoreInactiveError("Store is not active", {"store_id": store.id, "status": store.status})

        resolved = _resolve_lines(store, request, caps.user_id)
        deadline.check("resolve_items")

        totals = compute_totals(r.pricing for r in resolved)
        _check_amount_bounds(totals)
        paid = request.payment.amount_cents
        if paid is None:
            paid = totals.total_amount_cents
        change = compute_change(totals.total_amount_cents, paid)

        customer = upsert_customer(store, request.customer)

        reservations = [
            reserve_line(r.item, r.request.quantity, r.line_number, allow_negative=store.allow_negative_stock)
            for r in resolved
        ]
        deadline.check("reserve_stock")

        now = utcnow()
        snapshot = request.customer
        sale = Sale(
            company_id=store.company_id,
            store_id=store.id,
            cashier_id=caps.user_id,
            customer_id=customer.id if customer else None,
            sale_number=generate_sale_number(store.company_id, now.date(), attempts=config["SALE_NUMBER_ATTEMPTS"]),
            channel=request.channel,
            status=initial_status(request.payment.status),
            subtotal_cents=totals.subtotal_cents,
            total_discount_cents=totals.total_discount_cents,
            total_tax_cents=totals.total_tax_cents,
            total_amount_cents=totals.total_amount_cents,
            payment_method=request.payment.method,
            payment_amount_cents=paid,
            payment_change_cents=change,
            payment_reference=request.payment.reference,
            payment_status=request.payment.status,
            customer_name=(snapshot.name if snapshot else None) or (customer.name if customer else None),
            customer_email=(snapshot.email if snapshot else None) or (customer.email if customer else None),
            customer_phone=(snapshot.phone if snapshot else None) or (customer.phone if customer else None),
            customer_address=(snapshot.address if snapshot else None) or (customer.address if customer else None),
            notes=request.notes,
            sale_date=now,
        )
        sale.lines = [
            SaleLine(
                line_number=r.line_number,
                item_id=r.item.id,
                item_name=r.item.name,
                item_sku=r.item.sku,
                quantity=r.request.quantity,
                unit_price_cents=r.item.selling_price_cents,
                discount_kind=r.request.discount_kind,
                discount_value=r.request.discount_value,
                discount_cents=t.discount_cents,
                tax_rate_bps=r.item.tax_rate_bps,
                tax_cents=t.tax_cents,
                subtotal_cents=t.subtotal_cents,
                total_cents=t.total_cents,
            )
            for r, t in zip(resolved, totals.lines)
        ]
        db.session.add(sale)
        db.session.flush()

        record_sale_movements(sale, reservations, caps.user_id)
        if customer is not None:
            record_purchase(customer, totals.total_amount_cents, now)

        deadline.check("persist")
        db.session.commit()
        return sale

    sale = run_with_retry(
        _op,
        attempts=config["DB_RETRY_ATTEMPTS"],
        deadline=deadline,
        retry_on=(IntegrityError,),
    )
    logger.info(
        "Sale %s created in store %s: %d line(s), total %d",
        sale.sale_number, sale.store_id, len(sale.lines), sale.total_amount_cents,
    )
    refresh_store_stats_quietly(sale.store_id)
    return sale


def _check_visible(caps: Capabilities, sale: Sale | None, sale_id: int) -> Sale:
    """
    Sales of another company do not exist for the caller; sales of another
    store, or of another cashier for own-sales-only roles, are forbidden.
    """
    if sale is None:
        raise SaleNotFoundError("Sale not found", {"sale_id": sale_id})
    if caps.scope != Scope.PLATFORM and sale.company_id != caps.company_id:
        raise SaleNotFoundError("Sale not found", {"sale_id": sale_id})
    if caps.scope == Scope.STORE and sale.store_id != caps.store_id:
        raise ScopeError("Access denied to this sale", {"sale_id": sale_id})
    if caps.own_sales_only and sale.cashier_id != caps.user_id:
        raise ScopeError("Access denied to this sale", {"sale_id": sale_id})
    return sale


def get_sale(caps: Capabilities, sale_id: int) -> Sale:
    return _check_visible(caps, db.session.get(Sale, sale_id), sale_id)


def cancel_sale(caps: Capabilities, sale_id: int, reason: str | None = None) -> Sale:
    """
    Cancel a pending or completed sale and give its stock back.

    Raises SaleNotFoundError, ScopeError, SaleAlreadyCancelledError or
    SaleStateError before changing anything.
    """
    require_capability(caps, "can_cancel_sales")
    reason = reason or DEFAULT_CANCEL_REASON

    def _op() -> Sale:
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter(Sale.id == sale_id)).first()
        _check_visible(caps, sale, sale_id)
        require_transition(sale, "cancelled")

        sale.status = "cancelled"
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = caps.user_id
        sale.notes = append_note(sale.notes, f"Cancelled: {reason}")
        # Bumps version_id now so a concurrent cancel fails before restoring
        db.session.flush()

        restored = restore_sale_stock(sale, caps.user_id)
        if sale.customer is not None:
            reverse_purchase(sale.customer, sale.total_amount_cents)

        db.session.commit()
        logger.info("Sale %s cancelled, %d line(s) restocked", sale.sale_number, restored)
        return sale

    sale = run_with_retry(_op, attempts=current_app.config["DB_RETRY_ATTEMPTS"])
    refresh_store_stats_quietly(sale.store_id)
    return sale


def _filtered_query(caps: Capabilities, filters: SaleFilters):
    query = scope_query(db.session.query(Sale), Sale, caps, filters.store_id)
    if caps.own_sales_only:
        query = query.filter(Sale.cashier_id == caps.user_id)
    if filters.status:
        query = query.filter(Sale.status == filters.status)
    if filters.cashier_id:
        query = query.filter(Sale.cashier_id == filters.cashier_id)
    if filters.date_from:
        query = query.filter(Sale.sale_date >= filters.date_from)
    if filters.date_to:
        query = query.filter(Sale.sale_date <= filters.date_to)
    return query


def list_sales(caps: Capabilities, filters: SaleFilters, *, mine: bool = False) -> dict:
    query = _filtered_query(caps, filters)
    if mine:
        query = query.filter(Sale.cashier_id == caps.user_id)
    query = query.order_by(Sale.sale_date.desc(), Sale.id.desc())
    return paginate(
        query,
        page=filters.page or 1,
        per_page=filters.per_page,
        serialize=lambda s: s.to_dict(include_lines=False),
    )


def summarize_sales(caps: Capabilities, filters: SaleFilters) -> dict:
    """Totals over completed sales in scope, plus a per-payment-method split."""
    require_capability(caps, "can_view_reports")
    completed = _filtered_query(caps, filters).filter(Sale.status == "completed")

    count, revenue, tax, discount = (
        completed.with_entities(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_amount_cents), 0),
            func.coalesce(func.sum(Sale.total_tax_cents), 0),
            func.coalesce(func.sum(Sale.total_discount_cents), 0),
        )
        .one()
    )

    items_sold = (
        completed.join(SaleLine, SaleLine.sale_id == Sale.id)
        .with_entities(func.coalesce(func.sum(SaleLine.quantity), 0))
        .scalar()
    )

    by_method = (
        completed.with_entities(
            Sale.payment_method,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_amount_cents), 0),
        )
        .group_by(Sale.payment_method)
        .order_by(Sale.payment_method)
        .all()
    )

    return {
        "total_sales": count,
        "total_revenue_cents": int(revenue),
        "total_tax_cents": int(tax),
        "total_discount_cents": int(discount),
        "average_sale_cents": int(revenue) // count if count else 0,
        "items_sold": int(items_sold or 0),
        "by_payment_method": [
            {"method": method, "count": n, "total_cents": int(total)}
            for method, n, total in by_method
        ],
    }
