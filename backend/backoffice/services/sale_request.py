"""
Checkout input, parsed.

A sale line arrives either as a reference to a catalog item or as a free-text
ad-hoc line; the two are distinct types rather than one dict whose shape is
probed later. parse_sale_request turns a JSON body into a SaleRequest or
raises ValidationError before anything touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from ..errors import ValidationError
from ..models.sales import DISCOUNT_KINDS, PAYMENT_METHODS, SALE_CHANNELS
from ..validation import (
    MAX_NOTES_LENGTH,
    MAX_PRICE_CENTS,
    MAX_QUANTITY,
    MAX_SALE_LINES,
    coerce_int,
    coerce_percent_bps,
    optional_str,
    required_str,
)

# Payment statuses a checkout may declare
CHECKOUT_PAYMENT_STATUSES = ("completed", "pending")


@dataclass(frozen=True)
class CatalogLine:
    item_id: int


@dataclass(frozen=True)
class AdHocLine:
    name: str
    unit_price_cents: int
    cost_price_cents: int = 0


LineSource = Union[CatalogLine, AdHocLine]


@dataclass(frozen=True)
class LineRequest:
    source: LineSource
    quantity: int = 1
    discount_kind: str = "percentage"
    # bps for percentage, minor units for fixed
    discount_value: int = 0


@dataclass(frozen=True)
class PaymentRequest:
    method: str
    # None: the customer pays exactly the total
    amount_cents: int | None = None
    reference: str | None = None
    status: str = "completed"


@dataclass(frozen=True)
class CustomerRequest:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None

    @property
    def has_contact(self) -> bool:
        return bool(self.email or self.phone)


@dataclass(frozen=True)
class SaleRequest:
    lines: tuple[LineRequest, ...]
    payment: PaymentRequest
    store_id: int | None = None
    customer: CustomerRequest | None = None
    notes: str | None = None
    channel: str = "pos"


def _parse_line(raw: Any, index: int) -> LineRequest:
    prefix = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{prefix} must be an object", {"field": prefix})

    item_id = raw.get("catalog_item_id")
    if item_id is not None:
        source: LineSource = CatalogLine(item_id=coerce_int(item_id, f"{prefix}.catalog_item_id", minimum=1))
    else:
        name = required_str(raw.get("name"), f"{prefix}.name", max_length=255)
        if raw.get("unit_price_cents") is None:
            raise ValidationError(
                f"{prefix} needs catalog_item_id or name and unit_price_cents",
                {"field": prefix},
            )
        price = coerce_int(raw["unit_price_cents"], f"{prefix}.unit_price_cents", minimum=0, maximum=MAX_PRICE_CENTS)
        cost = coerce_int(raw.get("cost_price_cents", 0), f"{prefix}.cost_price_cents", minimum=0, maximum=price)
        source = AdHocLine(name=name, unit_price_cents=price, cost_price_cents=cost)

    quantity = coerce_int(raw.get("quantity", 1), f"{prefix}.quantity", minimum=1, maximum=MAX_QUANTITY)

    kind = raw.get("discount_kind") or "percentage"
    if kind not in DISCOUNT_KINDS:
        raise ValidationError(
            f"{prefix}.discount_kind must be one of: {', '.join(DISCOUNT_KINDS)}",
            {"field": f"{prefix}.discount_kind"},
        )
    raw_discount = raw.get("discount")
    if raw_discount in (None, ""):
        discount = 0
    elif kind == "percentage":
        discount = coerce_percent_bps(raw_discount, f"{prefix}.discount")
    else:
        discount = coerce_int(raw_discount, f"{prefix}.discount", minimum=0, maximum=MAX_PRICE_CENTS)

    return LineRequest(source=source, quantity=quantity, discount_kind=kind, discount_value=discount)


def _parse_payment(raw: Any) -> PaymentRequest:
    if not isinstance(raw, dict):
        raise ValidationError("payment is required", {"field": "payment"})

    method = raw.get("method")
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment.method must be one of: {', '.join(PAYMENT_METHODS)}",
            {"field": "payment.method"},
        )

    amount = raw.get("amount_cents")
    if amount is not None:
        amount = coerce_int(amount, "payment.amount_cents", minimum=0, maximum=MAX_PRICE_CENTS)

    status = raw.get("status") or "completed"
    if status not in CHECKOUT_PAYMENT_STATUSES:
        raise ValidationError(
            f"payment.status must be one of: {', '.join(CHECKOUT_PAYMENT_STATUSES)}",
            {"field": "payment.status"},
        )

    return PaymentRequest(
        method=method,
        amount_cents=amount,
        reference=optional_str(raw.get("reference"), "payment.reference", max_length=128),
        status=status,
    )


def _parse_customer(raw: Any) -> CustomerRequest | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("customer must be an object", {"field": "customer"})

    email = optional_str(raw.get("email"), "customer.email", max_length=255)
    if email is not None:
        if "@" not in email:
            raise ValidationError("customer.email is not a valid address", {"field": "customer.email"})
        email = email.lower()

    customer = CustomerRequest(
        name=optional_str(raw.get("name"), "customer.name", max_length=255),
        email=email,
        phone=optional_str(raw.get("phone"), "customer.phone", max_length=32),
        address=optional_str(raw.get("address"), "customer.address", max_length=255),
    )
    if not any((customer.name, customer.email, customer.phone, customer.address)):
        return None
    return customer


def parse_sale_request(payload: Any) -> SaleRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required", {"field": "items"})
    if len(items) > MAX_SALE_LINES:
        raise ValidationError(
            f"A sale can have at most {MAX_SALE_LINES} items",
            {"field": "items", "max_items": MAX_SALE_LINES},
        )

    store_id = payload.get("store_id")
    if store_id is not None:
        store_id = coerce_int(store_id, "store_id", minimum=1)

    channel = payload.get("channel") or "pos"
    if channel not in SALE_CHANNELS:
        raise ValidationError(
            f"channel must be one of: {', '.join(SALE_CHANNELS)}",
            {"field": "channel"},
        )

    return SaleRequest(
        lines=tuple(_parse_line(raw, i) for i, raw in enumerate(items)),
        payment=_parse_payment(payload.get("payment")),
        store_id=store_id,
        customer=_parse_customer(payload.get("customer")),
        notes=optional_str(payload.get("notes"), "notes", max_length=MAX_NOTES_LENGTH),
        channel=channel,
    )
