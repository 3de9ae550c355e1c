"""
Sale totals calculator tests.

Pure arithmetic: no app or database fixtures needed.
"""

from types import SimpleNamespace

import pytest

from backoffice.services.totals import (
    LinePricing,
    apply_bps,
    compute_change,
    compute_line,
    compute_totals,
    verify_sale_totals,
)


class TestComputeLine:

    def test_plain_line(self):
        totals = compute_totals([LinePricing(quantity=2, unit_price_cents=1000)])

        assert totals.subtotal_cents == 2000
        assert totals.total_discount_cents == 0
        assert totals.total_tax_cents == 0
        assert totals.total_amount_cents == 2000
        assert compute_change(totals.total_amount_cents, 2000) == 0

    def test_percentage_discount_then_tax(self):
        line = compute_line(LinePricing(
            quantity=3,
            unit_price_cents=500,
            discount_kind="percentage",
            discount_value=1000,
            tax_rate_bps=1800,
        ))

        assert line.subtotal_cents == 1500
        assert line.discount_cents == 150
        assert line.taxable_cents == 1350
        assert line.tax_cents == 243
        assert line.total_cents == 1593

    def test_full_percentage_discount_zeroes_line(self):
        line = compute_line(LinePricing(
            quantity=1, unit_price_cents=999, discount_value=10_000, tax_rate_bps=1800,
        ))

        assert line.taxable_cents == 0
        assert line.tax_cents == 0
        assert line.total_cents == 0

    def test_fixed_discount_clamped_to_subtotal(self):
        line = compute_line(LinePricing(
            quantity=1, unit_price_cents=300, discount_kind="fixed", discount_value=5000, tax_rate_bps=1800,
        ))

        assert line.discount_cents == 300
        assert line.taxable_cents == 0
        assert line.total_cents == 0

    def test_tax_rounds_half_up(self):
        # 25 * 1800 / 10000 = 4.5
        assert compute_line(LinePricing(quantity=1, unit_price_cents=25, tax_rate_bps=1800)).tax_cents == 5
        assert apply_bps(1, 4999) == 0
        assert apply_bps(1, 5000) == 1

    @pytest.mark.parametrize(
        "pricing",
        [
            LinePricing(quantity=0, unit_price_cents=100),
            LinePricing(quantity=1, unit_price_cents=-1),
            LinePricing(quantity=1, unit_price_cents=100, discount_value=-5),
            LinePricing(quantity=1, unit_price_cents=100, discount_value=10_001),
            LinePricing(quantity=1, unit_price_cents=100, tax_rate_bps=-1),
            LinePricing(quantity=1, unit_price_cents=100, discount_kind="bogus"),
        ],
    )
    def test_rejects_invalid_input(self, pricing):
        with pytest.raises(ValueError):
            compute_line(pricing)


class TestComputeTotals:

    def test_aggregates_reconcile_with_lines(self):
        totals = compute_totals([
            LinePricing(quantity=3, unit_price_cents=500, discount_value=1000, tax_rate_bps=1800),
            LinePricing(quantity=2, unit_price_cents=1000),
            LinePricing(quantity=1, unit_price_cents=700, discount_kind="fixed", discount_value=200),
        ])

        assert totals.subtotal_cents == 1500 + 2000 + 700
        assert totals.total_discount_cents == 150 + 200
        assert totals.total_tax_cents == 243
        assert totals.total_amount_cents == sum(line.total_cents for line in totals.lines)
        assert totals.total_amount_cents == (
            totals.subtotal_cents - totals.total_discount_cents + totals.total_tax_cents
        )

    def test_empty_sale_rejected(self):
        with pytest.raises(ValueError):
            compute_totals([])

    def test_change(self):
        assert compute_change(1593, 2000) == 407
        assert compute_change(1593, 1593) == 0
        # Underpayment is recorded, not refused
        assert compute_change(1593, 1000) == 0


class TestVerifySaleTotals:

    def _stored_sale(self, **overrides):
        pricing = LinePricing(quantity=3, unit_price_cents=500, discount_value=1000, tax_rate_bps=1800)
        computed = compute_line(pricing)
        line = SimpleNamespace(
            quantity=3, unit_price_cents=500, discount_kind="percentage", discount_value=1000,
            tax_rate_bps=1800, subtotal_cents=computed.subtotal_cents, discount_cents=computed.discount_cents,
            tax_cents=computed.tax_cents, total_cents=computed.total_cents,
        )
        fields = dict(
            lines=[line], subtotal_cents=1500, total_discount_cents=150, total_tax_cents=243,
            total_amount_cents=1593, payment_amount_cents=2000, payment_change_cents=407,
        )
        fields.update(overrides)
        return SimpleNamespace(**fields)

    def test_consistent_sale_verifies(self):
        assert verify_sale_totals(self._stored_sale()) is True

    def test_tampered_total_detected(self):
        assert verify_sale_totals(self._stored_sale(total_amount_cents=1600)) is False

    def test_wrong_change_detected(self):
        assert verify_sale_totals(self._stored_sale(payment_change_cents=0)) is False
