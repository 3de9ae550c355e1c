"""
Stock Consistency Engine.

Keeps CatalogItem.current_stock numerically consistent with committed sales.

RESERVATION: a single conditional UPDATE per sale line,
    current_stock = current_stock - n  WHERE id = :id AND is_active AND current_stock >= n
so availability check and decrement cannot be interleaved by another
checkout. Zero rows updated means the line cannot be served and the caller
rolls back the whole sale.

MOVEMENTS: every change writes a StockMovement. Sale-driven movements are
unique per (sale_id, line_number, movement_type); restore and replay check
for the row first, so running them twice changes nothing.

None of these functions commit; the caller owns the transaction, except
adjust_stock and reconcile_sale_stock which are complete units of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..errors import CatalogItemNotFoundError, InsufficientStockError, ItemUnavailableError, SaleNotFoundError, ValidationError
from ..extensions import db
from ..models import CatalogItem, Sale, StockMovement
from ..permissions import Capabilities
from ..validation import MAX_QUANTITY, coerce_int
from .concurrency import begin_write, lock_for_update, run_with_retry
from .tenant_service import scope_query

logger = logging.getLogger(__name__)

ADJUST_OPERATIONS = {
    "add": "ADJUST_ADD",
    "subtract": "ADJUST_SUBTRACT",
    "set": "ADJUST_SET",
}


@dataclass(frozen=True)
class Reservation:
    """Stock taken for one sale line, before the sale row exists."""
    line_number: int
    item: CatalogItem
    quantity: int
    stock_after: int


def _apply_delta(item: CatalogItem, delta: int) -> int:
    """Unconditional stock change; returns the new stock."""
    db.session.execute(
        update(CatalogItem)
        .where(CatalogItem.id == item.id)
        .values(current_stock=CatalogItem.current_stock + delta)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(item, ["current_stock"])
    return item.current_stock


def reserve_line(item: CatalogItem, quantity: int, line_number: int, *, allow_negative: bool = False) -> Reservation:
    """
    Atomically take ``quantity`` units of ``item``.

    Raises InsufficientStockError (or ItemUnavailableError if the item was
    deactivated meanwhile) without changing anything.
    """
    stmt = update(CatalogItem).where(
        CatalogItem.id == item.id,
        CatalogItem.is_active.is_(True),
    )
    if not allow_negative:
        stmt = stmt.where(CatalogItem.current_stock >= quantity)
    stmt = stmt.values(current_stock=CatalogItem.current_stock - quantity).execution_options(
        synchronize_session=False
    )

    result = db.session.execute(stmt)
    db.session.expire(item, ["current_stock", "is_active"])

    if result.rowcount != 1:
        if not item.is_active:
            raise ItemUnavailableError(
                f"Item {item.name} is no longer available",
                {"item_id": item.id, "sku": item.sku},
            )
        raise InsufficientStockError(
            f"Insufficient stock for {item.name}",
            {
                "item_id": item.id,
                "sku": item.sku,
                "available": item.current_stock,
                "requested": quantity,
            },
        )

    return Reservation(line_number=line_number, item=item, quantity=quantity, stock_after=item.current_stock)


def record_sale_movements(sale: Sale, reservations: list[Reservation], actor_id: int | None = None) -> None:
    """Write the SALE movement for each reservation once the sale has an id."""
    for r in reservations:
        db.session.add(StockMovement(
            company_id=sale.company_id,
            store_id=sale.store_id,
            item_id=r.item.id,
            movement_type="SALE",
            quantity_delta=-r.quantity,
            stock_after=r.stock_after,
            sale_id=sale.id,
            line_number=r.line_number,
            reason=f"Sale {sale.sale_number}",
            actor_user_id=actor_id,
        ))


def _movement_exists(sale_id: int, line_number: int, movement_type: str) -> bool:
    return (
        db.session.query(StockMovement.id)
        .filter_by(sale_id=sale_id, line_number=line_number, movement_type=movement_type)
        .first()
        is not None
    )


def restore_sale_stock(sale: Sale, actor_id: int | None = None, reason: str | None = None) -> int:
    """
    Give back the stock taken by each line of ``sale``.

    Unconditional: deactivated items and manually corrected counters are
    credited all the same. Lines already restored, lines whose decrement was
    never recorded, and lines whose item was deleted are skipped.
    Returns the number of lines restored.
    """
    restored = 0
    for line in sale.lines:
        if line.item_id is None:
            logger.warning("Sale %s line %s has no catalog item; stock not restored", sale.id, line.line_number)
            continue
        if _movement_exists(sale.id, line.line_number, "SALE_CANCEL"):
            continue
        if not _movement_exists(sale.id, line.line_number, "SALE"):
            continue

        item = db.session.get(CatalogItem, line.item_id)
        stock_after = _apply_delta(item, line.quantity)
        db.session.add(StockMovement(
            company_id=sale.company_id,
            store_id=sale.store_id,
            item_id=item.id,
            movement_type="SALE_CANCEL",
            quantity_delta=line.quantity,
            stock_after=stock_after,
            sale_id=sale.id,
            line_number=line.line_number,
            reason=reason or f"Cancellation of {sale.sale_number}",
            actor_user_id=actor_id,
        ))
        restored += 1
    return restored


def reconcile_sale_stock(sale_id: int, actor_id: int | None = None) -> dict:
    """
    Replay any stock movement a sale should have produced but did not.

    Active sales get their missing SALE decrements; cancelled sales then get
    their missing SALE_CANCEL restores. Safe to run any number of times.
    """
    def _op() -> dict:
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter(Sale.id == sale_id)).first()
        if sale is None:
            raise SaleNotFoundError("Sale not found", {"sale_id": sale_id})

        decremented = 0
        for line in sale.lines:
            if line.item_id is None or _movement_exists(sale.id, line.line_number, "SALE"):
                continue
            item = db.session.get(CatalogItem, line.item_id)
            stock_after = _apply_delta(item, -line.quantity)
            db.session.add(StockMovement(
                company_id=sale.company_id,
                store_id=sale.store_id,
                item_id=item.id,
                movement_type="SALE",
                quantity_delta=-line.quantity,
                stock_after=stock_after,
                sale_id=sale.id,
                line_number=line.line_number,
                reason=f"Replay of {sale.sale_number}",
                actor_user_id=actor_id,
            ))
            decremented += 1
        db.session.flush()

        restored = 0
        if sale.status == "cancelled":
            restored = restore_sale_stock(sale, actor_id, reason=f"Replay of cancellation {sale.sale_number}")

        db.session.commit()
        if decremented or restored:
            logger.warning("Reconciled sale %s: %d decrements, %d restores replayed", sale.id, decremented, restored)
        return {"sale_id": sale.id, "decrements_applied": decremented, "restores_applied": restored}

    return run_with_retry(_op, attempts=current_app.config.get("DB_RETRY_ATTEMPTS", 3))


def adjust_stock(
    caps: Capabilities,
    item_id: int,
    *,
    quantity,
    operation: str,
    reason: str | None = None,
    allow_negative: bool = False,
) -> tuple[CatalogItem, StockMovement]:
    """
    Manual stock correction: add, subtract or set.

    subtract and set are floored at zero unless ``allow_negative`` is asked
    for and the item's store policy allows negative stock.
    """
    if operation not in ADJUST_OPERATIONS:
        raise ValidationError(
            f"operation must be one of: {', '.join(ADJUST_OPERATIONS)}",
            {"field": "operation"},
        )
    quantity = coerce_int(quantity, "quantity", minimum=0, maximum=MAX_QUANTITY)

    def _op() -> tuple[CatalogItem, StockMovement]:
        begin_write()
        item = lock_for_update(
            scope_query(db.session.query(CatalogItem), CatalogItem, caps).filter(CatalogItem.id == item_id)
        ).first()
        if item is None:
            raise CatalogItemNotFoundError("Catalog item not found", {"item_id": item_id})

        negative_ok = allow_negative and item.store.allow_negative_stock
        before = item.current_stock
        if operation == "add":
            after = before + quantity
        elif operation == "subtract":
            after = before - quantity
        else:
            after = quantity
        if not negative_ok:
            after = max(0, after)

        item.current_stock = after
        movement = StockMovement(
            company_id=item.company_id,
            store_id=item.store_id,
            item_id=item.id,
            movement_type=ADJUST_OPERATIONS[operation],
            quantity_delta=after - before,
            stock_after=after,
            reason=reason,
            actor_user_id=caps.user_id,
        )
        db.session.add(movement)
        db.session.commit()
        logger.info("Stock of item %s adjusted (%s %d): %d -> %d", item.id, operation, quantity, before, after)
        return item, movement

    return run_with_retry(_op, attempts=current_app.config.get("DB_RETRY_ATTEMPTS", 3))


def list_low_stock_items(caps: Capabilities, store_id: int | None = None) -> list[CatalogItem]:
    """Active items at or below their min stock or reorder point."""
    query = scope_query(db.session.query(CatalogItem), CatalogItem, caps, store_id)
    return (
        query.filter(
            CatalogItem.is_active.is_(True),
            (CatalogItem.current_stock <= CatalogItem.min_stock)
            | (CatalogItem.current_stock <= CatalogItem.reorder_point),
        )
        .order_by(CatalogItem.current_stock.asc(), CatalogItem.name.asc())
        .all()
    )


def movements_for_item(caps: Capabilities, item_id: int, limit: int = 100) -> list[StockMovement]:
    query = scope_query(db.session.query(StockMovement), StockMovement, caps)
    return (
        query.filter(StockMovement.item_id == item_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
