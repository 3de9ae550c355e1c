from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


SALE_STATUSES = ("completed", "pending", "cancelled", "refunded")
SALE_CHANNELS = ("pos", "ecommerce")
PAYMENT_METHODS = ("cash", "card", "mobile_money", "bank_transfer", "check", "credit")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
DISCOUNT_KINDS = ("percentage", "fixed")


class Sale(db.Model):
    """
    Sale aggregate root: header, owned lines, payment and customer snapshot.

    Built once by sales_service.create_sale and afterwards only touched by
    cancellation (status, notes, cancel attribution). Totals are stored as
    produced by services.totals and must satisfy
    total_amount = subtotal - total_discount + total_tax.

    CONCURRENCY: version_id gives optimistic locking so two concurrent
    cancellations cannot both restore stock.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sale_number", name="uq_sales_company_number"),
        db.Index("ix_sales_company_date", "company_id", "sale_date"),
        db.Index("ix_sales_store_status_date", "store_id", "status", "sale_date"),
        db.Index("ix_sales_cashier_date", "cashier_id", "sale_date"),
        db.CheckConstraint(
            "status IN ('completed', 'pending', 'cancelled', 'refunded')",
            name="ck_sales_status",
        ),
        db.CheckConstraint(
            "total_amount_cents = subtotal_cents - total_discount_cents + total_tax_cents",
            name="ck_sales_totals_reconcile",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # e.g. "SALE-20260211-0007-k3x9"
    sale_number = db.Column(db.String(64), nullable=False)
    channel = db.Column(db.String(16), nullable=False, default="pos")
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    subtotal_cents = db.Column(db.BigInteger, nullable=False)
    total_discount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_tax_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount_cents = db.Column(db.BigInteger, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_amount_cents = db.Column(db.BigInteger, nullable=False)
    payment_change_cents = db.Column(db.BigInteger, nullable=False, default=0)
    payment_reference = db.Column(db.String(128), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default="completed")

    # Snapshot taken at checkout, independent of the Customer row
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id])
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.line_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount_due_cents(self) -> int:
        """Unpaid remainder when the declared payment was short of the total."""
        return max(0, self.total_amount_cents - self.payment_amount_cents)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "sale_number": self.sale_number,
            "channel": self.channel,
            "status": self.status,
            "totals": {
                "subtotal_cents": self.subtotal_cents,
                "total_discount_cents": self.total_discount_cents,
                "total_tax_cents": self.total_tax_cents,
                "total_amount_cents": self.total_amount_cents,
            },
            "payment": {
                "method": self.payment_method,
                "amount_cents": self.payment_amount_cents,
                "change_cents": self.payment_change_cents,
                "amount_due_cents": self.amount_due_cents,
                "reference": self.payment_reference,
                "status": self.payment_status,
            },
            "customer": {
                "name": self.customer_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
                "address": self.customer_address,
            },
            "notes": self.notes,
            "item_count": self.item_count,
            "sale_date": to_utc_z(self.sale_date),
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    One line of a sale. Owned by exactly one Sale; never referenced from
    outside the aggregate.

    ``item_id`` is a weak reference (SET NULL on delete); ``item_name`` and
    ``item_sku`` are the snapshot shown on receipts.

    ``discount_value`` holds the discount as entered: basis points for
    ``percentage`` (1000 = 10%), minor units for ``fixed``.
    ``discount_cents`` is the normalised amount actually deducted.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line"),
        db.CheckConstraint("quantity >= 1", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_sale_lines_price_nonneg"),
        db.CheckConstraint(
            "total_cents = subtotal_cents - discount_cents + tax_cents",
            name="ck_sale_lines_total_reconcile",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    item_id = db.Column(
        db.Integer, db.ForeignKey("catalog_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    item_name = db.Column(db.String(255), nullable=False)
    item_sku = db.Column(db.String(50), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)

    discount_kind = db.Column(db.String(16), nullable=False, default="percentage")
    discount_value = db.Column(db.BigInteger, nullable=False, default=0)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.BigInteger, nullable=False, default=0)

    subtotal_cents = db.Column(db.BigInteger, nullable=False)
    total_cents = db.Column(db.BigInteger, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "item_sku": self.item_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_kind": self.discount_kind,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
        }
