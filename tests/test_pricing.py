"""Tests for the pricing engine."""

from dataclasses import replace

from conftest import make_line
from pricing import compute_totals, shipping_for, subtotal
from schemas import AppliedCoupon, Totals

TEN_PERCENT = AppliedCoupon(code="SAVE10", discount_type="percentage", discount_value=10)


def _consistent(totals: Totals) -> bool:
    expected = round(totals.subtotal - totals.discount + totals.tax + totals.shipping, 2)
    return abs(totals.total - expected) < 1e-9


class TestComputeTotals:
    def test_empty_cart_is_all_zero(self, policy):
        assert compute_totals([], TEN_PERCENT, policy) == Totals()

    def test_two_items_with_ten_percent_coupon(self, policy):
        items = [make_line(20.0, 2), make_line(15.0, 1, sku="SKU-2")]
        totals = compute_totals(items, TEN_PERCENT, policy)

        assert totals.subtotal == 55.0
        assert totals.discount == 5.5
        assert totals.tax == 3.96
        assert totals.shipping == 5.99
        assert totals.total == 59.45

    def test_threshold_on_pre_discount_subtotal(self, policy):
        legacy = replace(policy, free_shipping_on_discounted=False)
        items = [make_line(20.0, 2), make_line(15.0, 1, sku="SKU-2")]
        totals = compute_totals(items, TEN_PERCENT, legacy)

        assert totals.shipping == 0.0
        assert totals.total == 53.46

    def test_no_coupon(self, policy):
        totals = compute_totals([make_line(19.99, 3)], None, policy)

        assert totals.subtotal == 59.97
        assert totals.discount == 0.0
        assert totals.tax == 4.80
        assert totals.shipping == 0.0
        assert totals.total == 64.77

    def test_fixed_coupon_larger_than_subtotal(self, policy):
        coupon = AppliedCoupon(code="BIG", discount_type="fixed", discount_value=100)
        totals = compute_totals([make_line(12.5, 2)], coupon, policy)

        assert totals.discount == 25.0
        assert totals.tax == 0.0
        assert totals.total == 5.99

    def test_percentage_discount_capped(self, policy):
        coupon = AppliedCoupon(code="HALF", discount_type="percentage", discount_value=50, maximum_discount=10)
        totals = compute_totals([make_line(100.0, 1)], coupon, policy)

        assert totals.discount == 10.0
        assert totals.discount <= totals.subtotal * 50 / 100

    def test_idempotent(self, policy):
        items = [make_line(20.0, 2), make_line(15.0, 1, sku="SKU-2")]

        assert compute_totals(items, TEN_PERCENT, policy) == compute_totals(items, TEN_PERCENT, policy)

    def test_total_matches_components(self, policy):
        prices = [0.01, 0.99, 3.33, 7.77, 19.99, 33.33, 49.99, 50.01]
        for price in prices:
            for qty in (1, 2, 3, 7):
                for coupon in (None, TEN_PERCENT):
                    totals = compute_totals([make_line(price, qty)], coupon, policy)
                    assert _consistent(totals), (price, qty, coupon)

    def test_custom_policy(self, policy):
        custom = replace(policy, tax_rate=0.0, flat_shipping_fee=10.0, free_shipping_threshold=100.0)
        totals = compute_totals([make_line(60.0, 1)], None, custom)

        assert totals.tax == 0.0
        assert totals.shipping == 10.0
        assert totals.total == 70.0


class TestShipping:
    def test_threshold_is_exclusive(self, policy):
        assert float(shipping_for(subtotal([make_line(50.0, 1)]), policy)) == 5.99

    def test_above_threshold_is_free(self, policy):
        assert float(shipping_for(subtotal([make_line(50.01, 1)]), policy)) == 0.0
