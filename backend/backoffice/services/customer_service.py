"""
Customer upsert at checkout.

Lookup order within the company: email first, then phone. A new customer is
only created when the checkout names one; otherwise the sale keeps just its
snapshot. Runs inside the sale transaction and never commits.

Two concurrent checkouts for the same new email collide on the
(company_id, email) unique constraint and the losing sale is retried, which
then finds the winner's row. Phone-only customers have no such constraint
and can be duplicated by a race.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Sale, Store
from ..time_utils import utcnow
from .sale_request import CustomerRequest


def find_customer(company_id: int, email: str | None = None, phone: str | None = None) -> Customer | None:
    if email:
        customer = db.session.query(Customer).filter_by(company_id=company_id, email=email).first()
        if customer is not None:
            return customer
    if phone:
        return (
            db.session.query(Customer)
            .filter_by(company_id=company_id, phone=phone)
            .order_by(Customer.id.asc())
            .first()
        )
    return None


def upsert_customer(store: Store, request: CustomerRequest | None) -> Customer | None:
    if request is None or not request.has_contact:
        return None

    customer = find_customer(store.company_id, request.email, request.phone)
    if customer is not None:
        return customer

    if not request.name:
        return None

    customer = Customer(
        company_id=store.company_id,
        store_id=store.id,
        name=request.name,
        email=request.email,
        phone=request.phone,
        address=request.address,
    )
    db.session.add(customer)
    db.session.flush()
    return customer


def record_purchase(customer: Customer, amount_cents: int, when=None) -> None:
    customer.total_spent_cents = Customer.total_spent_cents + amount_cents
    customer.total_purchases = Customer.total_purchases + 1
    customer.last_purchase_at = when or utcnow()


def reverse_purchase(customer: Customer, amount_cents: int) -> None:
    """
    Undo record_purchase for a cancelled sale.

    The sale must already be flushed as cancelled; last_purchase_at falls back
    to the customer's latest remaining sale, or None.
    """
    customer.total_spent_cents = Customer.total_spent_cents - amount_cents
    customer.total_purchases = Customer.total_purchases - 1
    customer.last_purchase_at = (
        db.session.query(func.max(Sale.sale_date))
        .filter(Sale.customer_id == customer.id, Sale.status != "cancelled")
        .scalar()
    )
