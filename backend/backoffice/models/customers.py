from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data.

    MULTI-TENANT: Customers are company-wide; the store where they were first
    seen is kept for reference only.

    Created lazily at checkout (see customer_service.upsert_customer). Sales
    keep their own snapshot of name/email/phone, so editing a customer never
    rewrites historical receipts.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("company_id", "email", name="uq_customers_company_email"),
        db.Index("ix_customers_company_phone", "company_id", "phone"),
        db.Index("ix_customers_company_active", "company_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Denormalized aggregates, maintained by sales_service on create and cancel
    total_spent_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_purchases = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    company = db.relationship("Company", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "is_active": self.is_active,
            "total_spent_cents": self.total_spent_cents,
            "total_purchases": self.total_purchases,
            "last_purchase_at": to_utc_z(self.last_purchase_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
