from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Company(db.Model):
    """
    Tenant root: every store, user, catalog item, customer and sale belongs
    to exactly one company. No data may cross company boundaries.
    """
    __tablename__ = "companies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


STORE_STATUSES = ("active", "inactive", "maintenance")


class Store(db.Model):
    """
    Sales location within a company.

    Only ``active`` stores accept sales. ``allow_negative_stock`` is the
    store's inventory policy: when set, sales may drive an item's stock
    below zero instead of being refused.

    The aggregate statistics are a denormalised cache refreshed after each
    sale or cancellation (see store_service.refresh_store_stats).
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_stores_company_code"),
        db.CheckConstraint(
            "status IN ('active', 'inactive', 'maintenance')",
            name="ck_stores_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    allow_negative_stock = db.Column(db.Boolean, nullable=False, default=False)

    total_sales = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.BigInteger, nullable=False, default=0)
    average_sale_cents = db.Column(db.BigInteger, nullable=False, default=0)
    last_sale_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    company = db.relationship("Company", backref=db.backref("stores", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<Store id={self.id} company_id={self.company_id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "code": self.code,
            "status": self.status,
            "allow_negative_stock": self.allow_negative_stock,
            "stats": {
                "total_sales": self.total_sales,
                "total_revenue_cents": self.total_revenue_cents,
                "average_sale_cents": self.average_sale_cents,
                "last_sale_at": to_utc_z(self.last_sale_at),
            },
            "created_at": to_utc_z(self.created_at),
        }
