"""
Checkout and cancellation.

Placing an order touches four collections (product, order, coupon, cart) and
MongoDB gives no transaction across them here, so the sequence runs as a
saga: every stock reservation records its compensation, and if any later step
fails the recorded compensations run in reverse before the error propagates.

Cancelling writes the status first, conditioned on the stored status still
being cancellable, and only the writer that wins that update puts stock back.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from config import PricingPolicy
from coupons import can_user_use, is_valid
from cart import clear, recalculate
from database import (
    find_coupon,
    insert_order,
    load_cart,
    load_order,
    load_products,
    record_coupon_usage,
    release_coupon_usage,
    save_cart,
    transition_order,
)
from errors import CouponError, StateError, StockError, ValidationError
from inventory import InventoryLedger, find_record
from orders import CANCELLABLE_STATUSES, cancel, create_order
from schemas import Address, Order, utcnow
logger = logging.getLogger(__name__)

Compensation = Callable[[], None]


def _compensate(compensations: List[Tuple[str, Compensation]]) -> Tuple[int, int]:
    """Run compensations in reverse. Returns (run, failed)."""
    run, failed = 0, 0
    for label, undo in reversed(compensations):
        try:
            undo()
            run += 1
        except Exception:
            failed += 1
            logger.exception("compensation %s failed", label)
    return run, failed


def place_order(
    db,
    user_id: str,
    shipping_address: Address,
    billing_address: Optional[Address],
    payment_method: str,
    policy: PricingPolicy,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, Order]:
    """Turn the user's cart into an order. Returns (order_id, order)."""
    now = now or utcnow()
    cart = load_cart(db, user_id)
    if cart is None or not cart.items:
        raise ValidationError("Cart is empty")

    recalculate(cart, policy)
    products = load_products(db, [item.product_id for item in cart.items])

    # read-only pass so the common failure needs no compensation
    for item in cart.items:
        product = products.get(item.product_id)
        record = find_record(product, item.sku) if product else None
        if product is None or record is None or record.quantity < item.quantity:
            name = product.name if product else item.name or "Product"
            raise StockError(f"{name} is out of stock or insufficient quantity", sku=item.sku)

    coupon_entry = None
    if cart.coupon:
        coupon_entry = find_coupon(db, cart.coupon.code)
        if coupon_entry is None:
            raise CouponError("Invalid coupon code", code=cart.coupon.code)
        for check in (is_valid(coupon_entry[1], now), can_user_use(coupon_entry[1], user_id)):
            if not check.ok:
                raise CouponError(check.reason, code=cart.coupon.code)

    order = create_order(cart, user_id, products, shipping_address, billing_address, payment_method, notes, now)

    ledger = InventoryLedger(db)
    compensations: List[Tuple[str, Compensation]] = []
    try:
        for item in order.items:
            ledger.reserve(item.product_id, item.sku, item.quantity)
            compensations.append((
                f"release {item.sku}",
                lambda item=item: ledger.release(item.product_id, item.sku, item.quantity),
            ))

        order_id = insert_order(db, order)
        compensations.append(("delete order", lambda: db["order"].delete_one({"order_number": order.order_number})))

        if coupon_entry is not None:
            coupon_id = coupon_entry[0]
            record_coupon_usage(db, coupon_id, user_id, now)
            compensations.append(("release coupon usage", lambda: release_coupon_usage(db, coupon_id, user_id)))

        save_cart(db, clear(cart, policy))
    except Exception:
        run, failed = _compensate(compensations)
        logger.warning("checkout for %s rolled back (%d compensations run, %d failed)", user_id, run, failed)
        raise

    logger.info("order %s placed by %s, total %.2f", order.order_number, user_id, order.pricing.total)
    return order_id, order


def cancel_order(
    db,
    order_id: str,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Cancel a pending/processing order and put its stock back."""
    order = load_order(db, order_id, user_id=user_id)
    cancel(order, reason, actor, now)

    if not transition_order(db, order_id, order, CANCELLABLE_STATUSES):
        raise StateError(load_order(db, order_id).status, "cancel")

    ledger = InventoryLedger(db)
    for item in order.items:
        ledger.release(item.product_id, item.sku, item.quantity)

    logger.info("order %s cancelled by %s", order.order_number, actor)
    return order
