from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, StoreNotFoundError, ValidationError
from ..extensions import db
from ..models import Company, Sale, Store
from ..models.tenancy import STORE_STATUSES
from .concurrency import begin_write, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


def create_store(
    company_id: int,
    name: str,
    code: str | None = None,
    *,
    status: str = "active",
    allow_negative_stock: bool = False,
) -> Store:
    def _op():
        if not name:
            raise ValidationError("Store name is required", {"field": "name"})
        if status not in STORE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(STORE_STATUSES)}", {"field": "status"})
        if db.session.get(Company, company_id) is None:
            raise ValidationError("Company not found", {"company_id": company_id})
        if code and db.session.query(Store.id).filter_by(company_id=company_id, code=code).first():
            raise ConflictError("Store code already exists", {"code": code})

        store = Store(
            company_id=company_id,
            name=name,
            code=code,
            status=status,
            allow_negative_stock=allow_negative_stock,
        )
        db.session.add(store)
        db.session.commit()
        return store

    return run_with_retry(_op)


def refresh_store_stats(store_id: int) -> Store:
    """
    Recompute the store's cached sale statistics from its non-cancelled
    sales. Idempotent; safe to call after any sale or cancellation.
    """
    def _op():
        begin_write()
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if store is None:
            raise StoreNotFoundError("Store not found", {"store_id": store_id})

        count, revenue, last_sale = (
            db.session.query(
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.total_amount_cents), 0),
                func.max(Sale.sale_date),
            )
            .filter(Sale.store_id == store_id, Sale.status != "cancelled")
            .one()
        )

        store.total_sales = count
        store.total_revenue_cents = int(revenue)
        store.average_sale_cents = int(revenue) // count if count else 0
        store.last_sale_at = last_sale
        db.session.commit()
        return store

    return run_with_retry(_op, attempts=current_app.config.get("DB_RETRY_ATTEMPTS", 3))


def refresh_store_stats_quietly(store_id: int) -> None:
    """
    Best-effort refresh after a committed sale. A failure here must not
    turn a successful checkout into an error response.
    """
    try:
        refresh_store_stats(store_id)
    except Exception:
        db.session.rollback()
        logger.exception("Failed to refresh statistics for store %s", store_id)
