"""
Pricing engine.

Pure functions that turn line items, an optional applied coupon and a
PricingPolicy into cart totals. Money is handled as Decimal internally and
every component is rounded half-up to cents before the total is summed, so
``total == subtotal - discount + tax + shipping`` holds on the returned values.
"""
from decimal import Decimal
from typing import Iterable, Optional

from config import PricingPolicy
from coupons import discount_amount
from money import ZERO, to_money
from schemas import AppliedCoupon, Totals


def line_total(item) -> Decimal:
    return to_money(Decimal(str(item.unit_price)) * item.quantity)


def subtotal(items: Iterable) -> Decimal:
    return sum((line_total(item) for item in items), ZERO)


def coupon_discount(coupon: Optional[AppliedCoupon], amount: Decimal) -> Decimal:
    if coupon is None:
        return ZERO
    return discount_amount(coupon.discount_type, coupon.discount_value, amount, coupon.maximum_discount)


def shipping_for(amount: Decimal, policy: PricingPolicy) -> Decimal:
    if amount > Decimal(str(policy.free_shipping_threshold)):
        return ZERO
    return to_money(policy.flat_shipping_fee)


def compute_totals(items: Iterable, coupon: Optional[AppliedCoupon], policy: PricingPolicy) -> Totals:
    items = list(items)
    if not items:
        return Totals()

    sub = subtotal(items)
    discount = coupon_discount(coupon, sub)
    taxable = sub - discount
    tax = to_money(taxable * Decimal(str(policy.tax_rate)))
    basis = taxable if policy.free_shipping_on_discounted else sub
    shipping = shipping_for(basis, policy)
    total = to_money(sub - discount + tax + shipping)
    return Totals(
        subtotal=float(sub),
        discount=float(discount),
        tax=float(tax),
        shipping=float(shipping),
        total=float(total),
    )
