"""
Coupon evaluation.

A coupon has to pass three independent gates, in order, before it discounts
anything: it must be valid right now (active, inside its window, under its
total usage limit), the user must be under their per-user limit, and the
cart must satisfy the coupon's scope and minimum purchase. Applying a coupon
to a cart only runs the gates; usage is recorded once, when an order is placed.

``record_usage`` is that bookkeeping on an in-memory coupon. Checkout writes
it to the store with ``database.record_coupon_usage``, which applies the same
change as in-place increments.
"""
import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, NamedTuple, Optional

from errors import CouponError
from money import ZERO, to_money
from schemas import Coupon, CouponUsage

logger = logging.getLogger(__name__)


class Check(NamedTuple):
    ok: bool
    reason: Optional[str] = None
    discount: float = 0.0


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def user_usage(coupon: Coupon, user_id: str) -> Optional[CouponUsage]:
    for usage in coupon.used_by:
        if usage.user_id == str(user_id):
            return usage
    return None


def in_window(coupon: Coupon, now: Optional[datetime] = None) -> bool:
    now = _now(now)
    return as_utc(coupon.start_date) <= now <= as_utc(coupon.end_date)


def is_valid(coupon: Coupon, now: Optional[datetime] = None) -> Check:
    now = _now(now)
    if not coupon.is_active:
        return Check(False, "Coupon is inactive")
    if not in_window(coupon, now):
        if now < as_utc(coupon.start_date):
            return Check(False, "Coupon not yet active")
        return Check(False, "Coupon has expired")
    limit = coupon.usage_limit.total
    if limit and coupon.usage_count >= limit:
        return Check(False, "Usage limit reached")
    return Check(True)


def can_user_use(coupon: Coupon, user_id: str) -> Check:
    limit = coupon.usage_limit.per_user
    if limit:
        usage = user_usage(coupon, user_id)
        if usage is not None and usage.count >= limit:
            return Check(False, "Per-user limit reached")
    return Check(True)


def discount_amount(discount_type: str, value: float, subtotal, maximum_discount: Optional[float] = None) -> Decimal:
    """Discount for a subtotal, never negative and never more than the subtotal."""
    subtotal = to_money(subtotal)
    if discount_type == "percentage":
        discount = subtotal * Decimal(str(value)) / Decimal(100)
        if maximum_discount:
            discount = min(discount, Decimal(str(maximum_discount)))
    else:
        discount = Decimal(str(value))
    discount = max(ZERO, min(discount, subtotal))
    return to_money(discount)


def _intersects(candidates: Iterable[str], allowed: Iterable[str]) -> bool:
    allowed = {str(a) for a in allowed}
    return any(str(c) in allowed for c in candidates)


def calculate_discount(
    coupon: Coupon,
    subtotal: float,
    product_ids: Iterable[str] = (),
    category_ids: Iterable[str] = (),
) -> Check:
    if coupon.apply_to == "products" and coupon.applicable_products:
        if not _intersects(product_ids, coupon.applicable_products):
            return Check(False, "Coupon not applicable to these products")

    if coupon.apply_to == "categories" and coupon.applicable_categories:
        if not _intersects(category_ids, coupon.applicable_categories):
            return Check(False, "Coupon not applicable to these categories")

    if subtotal < coupon.minimum_purchase:
        return Check(False, f"Minimum purchase of ${coupon.minimum_purchase:g} required")

    discount = discount_amount(coupon.discount_type, coupon.discount_value, subtotal, coupon.maximum_discount)
    return Check(True, discount=float(discount))


def evaluate(
    coupon: Coupon,
    user_id: str,
    subtotal: float,
    product_ids: Iterable[str] = (),
    category_ids: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> float:
    """Run every gate in order; raise CouponError with the first failing reason."""
    check = is_valid(coupon, now)
    if check.ok:
        check = can_user_use(coupon, user_id)
    if check.ok:
        check = calculate_discount(coupon, subtotal, product_ids, category_ids)
    if not check.ok:
        raise CouponError(check.reason, code=coupon.code)
    return check.discount


def record_usage(coupon: Coupon, user_id: str, now: Optional[datetime] = None) -> Coupon:
    now = _now(now)
    coupon.usage_count += 1
    usage = user_usage(coupon, user_id)
    if usage is not None:
        usage.count += 1
        usage.last_used = now
    else:
        coupon.used_by.append(CouponUsage(user_id=str(user_id), count=1, last_used=now))
    logger.info("coupon %s used by %s (usage_count=%d)", coupon.code, user_id, coupon.usage_count)
    return coupon


def coupon_stats(coupon: Coupon, now: Optional[datetime] = None) -> dict:
    now = _now(now)
    end = as_utc(coupon.end_date)
    remaining = None
    if coupon.usage_limit.total:
        remaining = coupon.usage_limit.total - coupon.usage_count
    seconds_left = (end - now).total_seconds()
    return {
        "total_usage": coupon.usage_count,
        "unique_users": len(coupon.used_by),
        "remaining_uses": remaining,
        "is_expired": now > end,
        "days_until_expiry": math.ceil(seconds_left / 86400),
    }
