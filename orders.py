"""
Order aggregate and its status lifecycle.

    pending -> processing -> shipped -> delivered
    pending | processing -> cancelled
    any -> refunded (full refund) | returned

Items and pricing are frozen when the order is created. Status changes only
ever append to the timeline.
"""
import logging
import random
import string
from datetime import datetime
from typing import Mapping, Optional

from errors import StateError, ValidationError
from schemas import (
    Address,
    Cart,
    Order,
    OrderItem,
    OrderNotes,
    Payment,
    PricingSnapshot,
    Product,
    TimelineEvent,
    Tracking,
    utcnow,
)

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled", "refunded", "returned")
CANCELLABLE_STATUSES = ("pending", "processing")

_BASE36 = string.digits + string.ascii_uppercase

TRACKING_URLS = {
    "ups": "https://www.ups.com/track?tracknum={}",
    "fedex": "https://www.fedex.com/fedextrack/?trknbr={}",
    "usps": "https://tools.usps.com/go/TrackConfirmAction?tLabels={}",
    "dhl": "https://www.dhl.com/en/express/tracking.html?AWB={}",
}


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """ORD-<base36 epoch millis>-<4 random base36 chars>."""
    now = now or utcnow()
    rng = rng or random.SystemRandom()
    stamp = _base36(int(now.timestamp() * 1000))
    suffix = "".join(rng.choice(_BASE36) for _ in range(4))
    return f"ORD-{stamp}-{suffix}"


def tracking_url(carrier: str, tracking_number: str) -> Optional[str]:
    template = TRACKING_URLS.get((carrier or "").lower())
    return template.format(tracking_number) if template else None


def _append(order: Order, status: str, description: str, actor: Optional[str], now: datetime) -> TimelineEvent:
    event = TimelineEvent(status=status, description=description, timestamp=now, updated_by=actor)
    order.timeline.append(event)
    order.updated_at = now
    return event


def create_order(
    cart: Cart,
    user_id: str,
    products: Mapping[str, Product],
    shipping_address: Address,
    billing_address: Optional[Address],
    payment_method: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Snapshot a priced cart into a new pending order.

    The cart's totals must already be current. Nothing here touches stock or
    coupons; see ``checkout.place_order`` for the full sequence.
    """
    now = now or utcnow()
    items = []
    for line in cart.items:
        product = products.get(line.product_id)
        items.append(OrderItem(
            product_id=line.product_id,
            name=product.name if product else line.name,
            sku=line.sku,
            image=line.image,
            unit_price=line.unit_price,
            quantity=line.quantity,
            variant_details=dict(line.variant_details),
        ))

    totals = cart.totals
    order = Order(
        order_number=generate_order_number(now),
        user_id=str(user_id),
        items=items,
        shipping_address=shipping_address,
        billing_address=billing_address or shipping_address,
        payment=Payment(method=payment_method),
        pricing=PricingSnapshot(
            subtotal=totals.subtotal,
            discount=totals.discount,
            coupon_code=cart.coupon.code if cart.coupon else None,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
        ),
        notes=OrderNotes(customer=notes),
        created_at=now,
        updated_at=now,
    )
    _append(order, "pending", "Order placed successfully", None, now)
    return order


def update_status(
    order: Order,
    status: str,
    description: Optional[str] = None,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Set any known status. There is no adjacency check and no stock side effect."""
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}", field="status")
    if status == "cancelled":
        logger.warning("order %s set to cancelled via status update; stock is not restored", order.order_number)
    order.status = status
    _append(order, status, description or f"Order status updated to {status}", actor, now or utcnow())
    return order


def can_cancel(order: Order) -> bool:
    return order.status in CANCELLABLE_STATUSES


def cancel(order: Order, reason: Optional[str] = None, actor: Optional[str] = None, now: Optional[datetime] = None) -> Order:
    """Mark the order cancelled. Restoring stock is the caller's job."""
    if not can_cancel(order):
        raise StateError(order.status, "cancel")
    order.status = "cancelled"
    _append(order, "cancelled", f"Order cancelled. Reason: {reason or 'Cancelled by customer'}", actor, now or utcnow())
    return order


def add_tracking(
    order: Order,
    carrier: str,
    tracking_number: str,
    estimated_delivery: Optional[datetime] = None,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    now = now or utcnow()
    order.tracking = Tracking(
        carrier=carrier,
        tracking_number=tracking_number,
        tracking_url=tracking_url(carrier, tracking_number),
        estimated_delivery=estimated_delivery,
    )
    order.updated_at = now
    # attaching tracking to an unshipped order ships it
    if order.status in CANCELLABLE_STATUSES:
        order.status = "shipped"
        _append(order, "shipped", "Order has been shipped", actor, now)
    return order


def process_refund(order: Order, amount: float, reason: str, actor: Optional[str] = None, now: Optional[datetime] = None) -> Order:
    """Refund up to the order total. Stock is not restored."""
    if amount <= 0:
        raise ValidationError("Refund amount must be positive", field="amount")
    if amount > order.pricing.total:
        raise ValidationError("Refund amount cannot exceed order total", field="amount")

    now = now or utcnow()
    full = amount >= order.pricing.total
    order.payment.status = "refunded" if full else "partially_refunded"
    order.payment.refund_amount = amount
    order.payment.refunded_at = now
    if full:
        order.status = "refunded"
    _append(order, "refunded", f"Refund processed: ${amount:.2f}. Reason: {reason}", actor, now)
    logger.info("order %s refunded %.2f (%s)", order.order_number, amount, order.payment.status)
    return order


def update_payment(order: Order, status: str, transaction_id: Optional[str] = None, now: Optional[datetime] = None) -> Order:
    now = now or utcnow()
    order.payment.status = status
    if transaction_id:
        order.payment.transaction_id = transaction_id
    if status == "completed":
        order.payment.paid_at = now
    order.updated_at = now
    return order


def order_summary(order: Order) -> dict:
    return {
        "order_number": order.order_number,
        "status": order.status,
        "total": order.pricing.total,
        "item_count": sum(item.quantity for item in order.items),
        "created_at": order.created_at,
        "tracking": order.tracking.model_dump() if order.tracking else None,
    }
