from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class CatalogItem(db.Model):
    """
    Sellable item with pricing and a stock counter.

    MULTI-TENANT: Items belong to a store and, through it, to a company.
    SKUs and barcodes are unique within the company.

    STOCK: ``current_stock`` is only ever changed through stock_service,
    which pairs every change with a StockMovement row. It may go below zero
    only in stores whose policy allows negative stock.

    Ad-hoc items are materialised at checkout for free-text sale lines and
    carry ``is_adhoc = True``.
    """
    __tablename__ = "catalog_items"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sku", name="uq_catalog_items_company_sku"),
        db.UniqueConstraint("company_id", "barcode", name="uq_catalog_items_company_barcode"),
        db.CheckConstraint("cost_price_cents >= 0", name="ck_catalog_items_cost_nonneg"),
        db.CheckConstraint("selling_price_cents >= cost_price_cents", name="ck_catalog_items_selling_ge_cost"),
        db.CheckConstraint("tax_rate_bps >= 0", name="ck_catalog_items_tax_nonneg"),
        db.Index("ix_catalog_items_store_active", "store_id", "is_active"),
        db.Index("ix_catalog_items_store_name", "store_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(50), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    cost_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    selling_price_cents = db.Column(db.BigInteger, nullable=False)
    wholesale_price_cents = db.Column(db.BigInteger, nullable=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_point = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(16), nullable=False, default="piece")

    # Basis points (1800 = 18%)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_inclusive = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_adhoc = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    store = db.relationship("Store", backref=db.backref("catalog_items", lazy=True))

    def __repr__(self) -> str:
        return f"<CatalogItem id={self.id} sku={self.sku!r} store_id={self.store_id} stock={self.current_stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.min_stock

    @property
    def needs_reorder(self) -> bool:
        return self.current_stock <= self.reorder_point

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "current_stock": self.current_stock,
            "min_stock": self.min_stock,
            "reorder_point": self.reorder_point,
            "unit": self.unit,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_inclusive": self.tax_inclusive,
            "is_active": self.is_active,
            "is_adhoc": self.is_adhoc,
            "is_low_stock": self.is_low_stock,
            "needs_reorder": self.needs_reorder,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


MOVEMENT_TYPES = ("SALE", "SALE_CANCEL", "ADJUST_ADD", "ADJUST_SUBTRACT", "ADJUST_SET")


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    Every change to CatalogItem.current_stock writes one row. Sale-driven
    rows are keyed by (sale_id, line_number, movement_type): the unique
    constraint is what makes decrement and restore replayable without
    double-applying.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", "movement_type", name="uq_stock_movements_sale_line_type"),
        db.Index("ix_stock_movements_item_occurred", "item_id", "occurred_at"),
        db.Index("ix_stock_movements_store_type", "store_id", "movement_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False)

    movement_type = db.Column(db.String(16), nullable=False)
    # Signed change actually applied to current_stock
    quantity_delta = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    line_number = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    item = db.relationship("CatalogItem", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "item_id": self.item_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "stock_after": self.stock_after,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
