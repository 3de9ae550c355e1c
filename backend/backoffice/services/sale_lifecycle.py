"""
Sale Lifecycle

STATE MACHINE:
    (create) -> completed | pending
    completed -> cancelled
    pending   -> cancelled

    completed: paid at checkout (default for in-person sales)
    pending:   payment collected asynchronously, not yet confirmed
    cancelled: TERMINAL, stock restored, reason appended to notes
    refunded:  TERMINAL, money returned after completion. Declared for
               reporting and imports; nothing transitions into it yet.

RULES:
1. Nothing leaves cancelled or refunded
2. Cancelling twice fails; it never restores stock a second time
"""

from __future__ import annotations

from typing import Literal

from ..errors import SaleAlreadyCancelledError, SaleStateError
from ..models.sales import SALE_STATUSES

SaleStatus = Literal["completed", "pending", "cancelled", "refunded"]

VALID_TRANSITIONS = {
    ("completed", "cancelled"),
    ("pending", "cancelled"),
}


def validate_status(status: str) -> None:
    if status not in SALE_STATUSES:
        raise SaleStateError(
            f"Invalid status '{status}'. Must be one of: {', '.join(SALE_STATUSES)}",
            {"status": status},
        )


def initial_status(payment_status: str) -> SaleStatus:
    """Status a new sale enters with, given the payment declared at checkout."""
    return "pending" if payment_status == "pending" else "completed"


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in VALID_TRANSITIONS


def require_transition(sale, to_status: str) -> None:
    """Raise the specific business error for a forbidden transition."""
    if can_transition(sale.status, to_status):
        return
    if sale.status == "cancelled" and to_status == "cancelled":
        raise SaleAlreadyCancelledError(
            "Sale is already cancelled",
            {"sale_id": sale.id, "sale_number": sale.sale_number},
        )
    raise SaleStateError(
        f"Cannot move a {sale.status} sale to {to_status}",
        {"sale_id": sale.id, "from": sale.status, "to": to_status},
    )


def append_note(existing: str | None, note: str) -> str:
    """Notes are append-only: new text always goes on its own line."""
    if existing:
        return f"{existing}\n{note}"
    return note
