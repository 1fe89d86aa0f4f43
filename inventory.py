"""
Inventory ledger.

Each product embeds its SKU records; ``total_quantity`` on the product is the
cached sum of the record quantities and is recomputed by every mutation here.

The pure helpers operate on a ``Product`` model. ``decrement`` and ``restore``
are the in-memory forms of the stock moves; orders move stock only through
the ledger. ``InventoryLedger`` is the persistence side
used at checkout and cancellation: ``reserve`` is a single conditional update
that only matches when the SKU still has enough stock, so two concurrent
checkouts for the last unit cannot both succeed, and ``release`` is its
inverse. Admin stock edits go through ``set_quantity``.
"""
import logging
from typing import Dict, Optional, Tuple

from bson.objectid import ObjectId

from errors import NotFoundError, StockError
from schemas import InventoryRecord, Product

logger = logging.getLogger(__name__)

VariantKey = Tuple[Tuple[str, str], ...]


def variant_key(selections: Optional[Dict[str, str]]) -> VariantKey:
    """Order-independent key for a set of variant selections."""
    return tuple(sorted((str(k), str(v)) for k, v in (selections or {}).items()))


def find_record(product: Product, sku: str) -> Optional[InventoryRecord]:
    for record in product.inventory:
        if record.sku == sku:
            return record
    return None


def find_record_for_variant(product: Product, selections: Optional[Dict[str, str]]) -> Optional[InventoryRecord]:
    key = variant_key(selections)
    for record in product.inventory:
        if variant_key(record.variant_combination) == key:
            return record
    return None


def recompute_total_quantity(product: Product) -> int:
    product.total_quantity = sum(record.quantity for record in product.inventory)
    return product.total_quantity


def _require_record(product: Product, sku: str) -> InventoryRecord:
    record = find_record(product, sku)
    if record is None:
        raise NotFoundError("Product variant not found")
    return record


def decrement(product: Product, sku: str, quantity: int) -> InventoryRecord:
    """Take ``quantity`` units off a SKU, flooring at zero."""
    record = _require_record(product, sku)
    if record.quantity < quantity:
        logger.warning("sku %s short by %d units, flooring at zero", sku, quantity - record.quantity)
    record.quantity = max(0, record.quantity - quantity)
    recompute_total_quantity(product)
    return record


def restore(product: Product, sku: str, quantity: int) -> InventoryRecord:
    record = _require_record(product, sku)
    record.quantity += quantity
    recompute_total_quantity(product)
    return record


def set_quantity(product: Product, sku: str, quantity: int) -> InventoryRecord:
    if quantity < 0:
        raise StockError("Quantity cannot be negative", sku=sku)
    record = _require_record(product, sku)
    record.quantity = quantity
    recompute_total_quantity(product)
    return record


def is_in_stock(product: Product) -> bool:
    return product.total_quantity > 0


def is_variant_in_stock(product: Product, sku: str) -> bool:
    record = find_record(product, sku)
    return record is not None and record.quantity > 0


def is_low_stock(record: InventoryRecord) -> bool:
    return record.quantity <= record.low_stock_threshold


class InventoryLedger:
    """Atomic per-SKU stock moves against the ``product`` collection."""

    def __init__(self, db):
        self.collection = db["product"]

    def reserve(self, product_id: str, sku: str, quantity: int) -> None:
        res = self.collection.update_one(
            {
                "_id": ObjectId(product_id),
                "inventory": {"$elemMatch": {"sku": sku, "quantity": {"$gte": quantity}}},
            },
            {"$inc": {"inventory.$.quantity": -quantity, "total_quantity": -quantity, "sales_count": quantity}},
        )
        if res.matched_count == 0:
            raise StockError(f"Insufficient stock for SKU {sku}", sku=sku)
        logger.info("reserved %d x %s on product %s", quantity, sku, product_id)

    def release(self, product_id: str, sku: str, quantity: int) -> bool:
        res = self.collection.update_one(
            {"_id": ObjectId(product_id), "inventory": {"$elemMatch": {"sku": sku}}},
            {"$inc": {"inventory.$.quantity": quantity, "total_quantity": quantity, "sales_count": -quantity}},
        )
        if res.matched_count == 0:
            logger.warning("could not release %d x %s on product %s", quantity, sku, product_id)
            return False
        logger.info("released %d x %s on product %s", quantity, sku, product_id)
        return True
