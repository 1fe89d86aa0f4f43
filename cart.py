"""
Cart aggregate.

Carts are loaded whole, mutated in memory by the functions below and written
back whole. Every mutating function finishes with ``recalculate`` so the
stored totals are never stale, and every check runs before the first
mutation so a failed call leaves the cart untouched.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional

from config import PricingPolicy
from coupons import evaluate
from errors import NotFoundError, StockError, ValidationError
from inventory import find_record, find_record_for_variant
from pricing import compute_totals
from schemas import AppliedCoupon, Cart, Coupon, InventoryRecord, LineItem, Product, utcnow

logger = logging.getLogger(__name__)


def new_cart(user_id: str, currency: str = "USD") -> Cart:
    return Cart(user_id=str(user_id), currency=currency)


def recalculate(cart: Cart, policy: PricingPolicy) -> Cart:
    cart.totals = compute_totals(cart.items, cart.coupon, policy)
    cart.updated_at = utcnow()
    return cart


def item_count(cart: Cart) -> int:
    return sum(item.quantity for item in cart.items)


def is_empty(cart: Cart) -> bool:
    return not cart.items


def find_item(cart: Cart, item_id: str) -> Optional[LineItem]:
    for item in cart.items:
        if item.id == item_id:
            return item
    return None


def find_line(cart: Cart, product_id: str, sku: str) -> Optional[LineItem]:
    for item in cart.items:
        if item.product_id == str(product_id) and item.sku == sku:
            return item
    return None


def _primary_image(product: Product) -> str:
    for image in product.images:
        if image.is_primary:
            return image.url
    return product.images[0].url if product.images else ""


def _resolve_record(product: Product, sku: Optional[str], variant_details: Optional[Dict[str, str]]) -> InventoryRecord:
    if sku:
        record = find_record(product, sku)
    else:
        record = find_record_for_variant(product, variant_details)
    if record is None:
        raise NotFoundError("Product variant not found")
    return record


def _check_stock(record: InventoryRecord, quantity: int) -> None:
    if record.quantity < quantity:
        raise StockError(f"Only {record.quantity} items available in stock", sku=record.sku, available=record.quantity)


def add_item(
    cart: Cart,
    product_id: str,
    product: Optional[Product],
    sku: Optional[str],
    quantity: int,
    variant_details: Optional[Dict[str, str]],
    policy: PricingPolicy,
) -> LineItem:
    """Add ``quantity`` of a SKU, merging into an existing line for the same SKU."""
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")
    if product is None or not product.is_active:
        raise NotFoundError("Product not found")

    record = _resolve_record(product, sku, variant_details)
    existing = find_line(cart, product_id, record.sku)
    wanted = quantity + (existing.quantity if existing else 0)
    _check_stock(record, wanted)

    if existing:
        existing.quantity = wanted
        line = existing
    else:
        line = LineItem(
            product_id=str(product_id),
            sku=record.sku,
            name=product.name,
            image=_primary_image(product),
            quantity=quantity,
            unit_price=product.price,
            variant_details=dict(variant_details or record.variant_combination),
        )
        cart.items.append(line)

    recalculate(cart, policy)
    return line


def update_quantity(
    cart: Cart,
    item_id: str,
    quantity: int,
    product: Optional[Product],
    policy: PricingPolicy,
) -> Cart:
    item = find_item(cart, item_id)
    if item is None:
        raise NotFoundError("Cart item not found")

    if quantity <= 0:
        cart.items = [i for i in cart.items if i.id != item_id]
    else:
        record = find_record(product, item.sku) if product is not None else None
        if record is not None:
            _check_stock(record, quantity)
        item.quantity = quantity

    return recalculate(cart, policy)


def remove_item(cart: Cart, item_id: str, policy: PricingPolicy) -> Cart:
    cart.items = [i for i in cart.items if i.id != item_id]
    return recalculate(cart, policy)


def apply_coupon(
    cart: Cart,
    coupon: Coupon,
    user_id: str,
    category_ids: Iterable[str],
    policy: PricingPolicy,
    now: Optional[datetime] = None,
) -> float:
    """Validate ``coupon`` against the cart and attach it. Usage is not recorded here."""
    if is_empty(cart):
        raise ValidationError("Cannot apply coupon to empty cart")

    # price the cart without any coupon so a previous one doesn't skew the checks
    subtotal = compute_totals(cart.items, None, policy).subtotal
    product_ids = [item.product_id for item in cart.items]
    discount = evaluate(coupon, user_id, subtotal, product_ids, category_ids, now=now)

    cart.coupon = AppliedCoupon(
        code=coupon.code,
        discount_value=coupon.discount_value,
        discount_type=coupon.discount_type,
        maximum_discount=coupon.maximum_discount,
    )
    recalculate(cart, policy)
    return discount


def remove_coupon(cart: Cart, policy: PricingPolicy) -> Cart:
    cart.coupon = None
    return recalculate(cart, policy)


def clear(cart: Cart, policy: PricingPolicy) -> Cart:
    cart.items = []
    cart.coupon = None
    return recalculate(cart, policy)


def sync_items(
    cart: Cart,
    entries: Iterable[Mapping],
    products: Mapping[str, Product],
    policy: PricingPolicy,
) -> Cart:
    """Replace the cart contents with a guest cart, keeping only what can be sold.

    Lines for inactive or unknown products and out-of-stock SKUs are dropped;
    quantities are clamped to what is in stock.
    """
    entries = list(entries)
    synced: List[LineItem] = []
    for entry in entries:
        product_id = str(entry["product_id"])
        product = products.get(product_id)
        if product is None or not product.is_active:
            continue
        record = find_record(product, entry["sku"])
        if record is None or record.quantity <= 0:
            continue
        quantity = min(int(entry.get("quantity", 1)), record.quantity)
        if quantity < 1:
            continue
        existing = next((i for i in synced if i.product_id == product_id and i.sku == record.sku), None)
        if existing:
            existing.quantity = min(existing.quantity + quantity, record.quantity)
            continue
        synced.append(LineItem(
            product_id=product_id,
            sku=record.sku,
            name=product.name,
            image=_primary_image(product),
            quantity=quantity,
            unit_price=product.price,
            variant_details=dict(entry.get("variant_details") or {}),
        ))

    if len(synced) != len(entries):
        logger.info("cart sync for %s kept %d of %d lines", cart.user_id, len(synced), len(entries))
    cart.items = synced
    return recalculate(cart, policy)
