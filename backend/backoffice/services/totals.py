"""
Sale totals calculator.

Pure and deterministic: no database, no clock, no randomness. Used to price
a sale before it is persisted and re-run against stored sales to verify
them.

MONEY: integer minor units throughout. Percentage discounts are given in
basis points (1000 = 10%) and tax rates in basis points (1800 = 18%);
fractional minor units are rounded half-up.

Per line:
    subtotal = quantity * unit_price
    discount = subtotal * pct   (percentage)  |  amount  (fixed)
               clamped to [0, subtotal]
    taxable  = subtotal - discount
    tax      = taxable * rate
    total    = taxable + tax
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

DiscountKind = Literal["percentage", "fixed"]

BPS_DENOMINATOR = 10_000
FULL_PERCENT_BPS = 10_000


@dataclass(frozen=True)
class LinePricing:
    quantity: int
    unit_price_cents: int
    discount_kind: DiscountKind = "percentage"
    # bps for percentage, minor units for fixed
    discount_value: int = 0
    tax_rate_bps: int = 0


@dataclass(frozen=True)
class LineTotals:
    subtotal_cents: int
    discount_cents: int
    taxable_cents: int
    tax_cents: int
    total_cents: int


@dataclass(frozen=True)
class SaleTotals:
    lines: tuple[LineTotals, ...]
    subtotal_cents: int
    total_discount_cents: int
    total_tax_cents: int
    total_amount_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "total_discount_cents": self.total_discount_cents,
            "total_tax_cents": self.total_tax_cents,
            "total_amount_cents": self.total_amount_cents,
        }


def apply_bps(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000, rounded half-up. Both operands non-negative."""
    return (amount_cents * bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def compute_line(line: LinePricing) -> LineTotals:
    if line.quantity < 1:
        raise ValueError("quantity must be at least 1")
    if line.unit_price_cents < 0:
        raise ValueError("unit price cannot be negative")
    if line.discount_value < 0:
        raise ValueError("discount cannot be negative")
    if line.tax_rate_bps < 0:
        raise ValueError("tax rate cannot be negative")

    subtotal = line.quantity * line.unit_price_cents

    if line.discount_kind == "percentage":
        if line.discount_value > FULL_PERCENT_BPS:
            raise ValueError("percentage discount cannot exceed 100%")
        discount = apply_bps(subtotal, line.discount_value)
    elif line.discount_kind == "fixed":
        discount = line.discount_value
    else:
        raise ValueError(f"unknown discount kind: {line.discount_kind!r}")
    discount = min(discount, subtotal)

    taxable = subtotal - discount
    tax = apply_bps(taxable, line.tax_rate_bps)

    return LineTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        taxable_cents=taxable,
        tax_cents=tax,
        total_cents=taxable + tax,
    )


def compute_totals(lines: Iterable[LinePricing]) -> SaleTotals:
    line_totals = tuple(compute_line(line) for line in lines)
    if not line_totals:
        raise ValueError("a sale needs at least one line")

    subtotal = sum(t.subtotal_cents for t in line_totals)
    discount = sum(t.discount_cents for t in line_totals)
    tax = sum(t.tax_cents for t in line_totals)

    return SaleTotals(
        lines=line_totals,
        subtotal_cents=subtotal,
        total_discount_cents=discount,
        total_tax_cents=tax,
        total_amount_cents=subtotal - discount + tax,
    )


def compute_change(total_amount_cents: int, paid_cents: int) -> int:
    """Change due on overpayment; an underpayment yields 0, not an error."""
    if paid_cents > total_amount_cents:
        return paid_cents - total_amount_cents
    return 0


def pricing_from_sale_line(sale_line) -> LinePricing:
    return LinePricing(
        quantity=sale_line.quantity,
        unit_price_cents=sale_line.unit_price_cents,
        discount_kind=sale_line.discount_kind,
        discount_value=sale_line.discount_value,
        tax_rate_bps=sale_line.tax_rate_bps,
    )


def verify_sale_totals(sale) -> bool:
    """Re-price a stored sale and compare with what was persisted."""
    expected = compute_totals(pricing_from_sale_line(line) for line in sale.lines)

    for stored, computed in zip(sale.lines, expected.lines):
        if (
            stored.subtotal_cents != computed.subtotal_cents
            or stored.discount_cents != computed.discount_cents
            or stored.tax_cents != computed.tax_cents
            or stored.total_cents != computed.total_cents
        ):
            return False

    return (
        len(sale.lines) == len(expected.lines)
        and sale.subtotal_cents == expected.subtotal_cents
        and sale.total_discount_cents == expected.total_discount_cents
        and sale.total_tax_cents == expected.total_tax_cents
        and sale.total_amount_cents == expected.total_amount_cents
        and sale.payment_change_cents == compute_change(expected.total_amount_cents, sale.payment_amount_cents)
    )
