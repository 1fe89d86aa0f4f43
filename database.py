"""
MongoDB access.

``db`` is None until DATABASE_URL and DATABASE_NAME are both set. Handlers get
the database through the ``get_db`` dependency so tests can swap it out.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

from config import CURRENCY, DATABASE_NAME, DATABASE_URL
from errors import NotFoundError, ServiceUnavailableError, ValidationError
from schemas import Cart, Coupon, CouponUsage, Order, Product

logger = logging.getLogger(__name__)

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]

# fields of an order document that may change after it is placed
MUTABLE_ORDER_FIELDS = ("status", "timeline", "tracking", "payment", "notes", "updated_at")


def get_db():
    if db is None:
        raise ServiceUnavailableError()
    return db


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["coupon"].create_index("code", unique=True)
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("user_id", 1), ("created_at", -1)])
    database["order"].create_index("status")


def parse_object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationError("Invalid ID")
    return ObjectId(value)


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    database = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, database=None) -> List[dict]:
    database = database if database is not None else get_db()
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


# ----------------------- Aggregate loaders -----------------------
def load_product(database, product_id: str) -> Optional[Product]:
    if not ObjectId.is_valid(str(product_id)):
        return None
    doc = database["product"].find_one({"_id": ObjectId(str(product_id))})
    return Product.model_validate(doc) if doc else None


def load_products(database, product_ids) -> Dict[str, Product]:
    ids = [ObjectId(str(p)) for p in set(product_ids) if ObjectId.is_valid(str(p))]
    if not ids:
        return {}
    return {str(doc["_id"]): Product.model_validate(doc) for doc in database["product"].find({"_id": {"$in": ids}})}


def load_cart(database, user_id: str) -> Optional[Cart]:
    doc = database["cart"].find_one({"user_id": str(user_id)})
    return Cart.model_validate(doc) if doc else None


def load_or_create_cart(database, user_id: str) -> Cart:
    cart = load_cart(database, user_id)
    if cart is None:
        cart = Cart(user_id=str(user_id), currency=CURRENCY)
    return cart


def save_cart(database, cart: Cart) -> None:
    # whole-document write, last write wins
    database["cart"].replace_one({"user_id": cart.user_id}, cart.model_dump(), upsert=True)


def find_coupon(database, code: str) -> Optional[Tuple[str, Coupon]]:
    doc = database["coupon"].find_one({"code": code})
    if not doc:
        return None
    return str(doc["_id"]), Coupon.model_validate(doc)


def record_coupon_usage(database, coupon_id: str, user_id: str, now: Optional[datetime] = None) -> None:
    """Count one use of a coupon by ``user_id`` with in-place increments."""
    now = now or datetime.now(timezone.utc)
    oid, uid = ObjectId(coupon_id), str(user_id)
    collection = database["coupon"]
    bump = {
        "$inc": {"usage_count": 1, "used_by.$.count": 1},
        "$set": {"used_by.$.last_used": now, "updated_at": now},
    }
    first_use = {
        "$inc": {"usage_count": 1},
        "$push": {"used_by": CouponUsage(user_id=uid, count=1, last_used=now).model_dump()},
        "$set": {"updated_at": now},
    }
    # a second pass covers another checkout pushing this user's entry in between
    for _ in range(2):
        if collection.update_one({"_id": oid, "used_by.user_id": uid}, bump).matched_count:
            return
        if collection.update_one({"_id": oid, "used_by.user_id": {"$ne": uid}}, first_use).matched_count:
            return
    raise NotFoundError("Coupon not found")


def release_coupon_usage(database, coupon_id: str, user_id: str) -> bool:
    """Undo one recorded use by ``user_id``; other users' usage is left alone."""
    oid, uid = ObjectId(coupon_id), str(user_id)
    collection = database["coupon"]
    res = collection.update_one(
        {"_id": oid, "used_by": {"$elemMatch": {"user_id": uid, "count": {"$gte": 1}}}},
        {"$inc": {"usage_count": -1, "used_by.$.count": -1}},
    )
    if res.matched_count == 0:
        logger.warning("no usage of coupon %s by %s to release", coupon_id, uid)
        return False
    collection.update_one({"_id": oid}, {"$pull": {"used_by": {"user_id": uid, "count": {"$lte": 0}}}})
    return True


def load_order(database, order_id: str, user_id: Optional[str] = None) -> Order:
    query: Dict[str, Any] = {"_id": parse_object_id(order_id)}
    if user_id is not None:
        query["user_id"] = str(user_id)
    doc = database["order"].find_one(query)
    if not doc:
        raise NotFoundError("Order not found")
    return Order.model_validate(doc)


def insert_order(database, order: Order) -> str:
    result = database["order"].insert_one(order.model_dump())
    return str(result.inserted_id)


def save_order(database, order_id: str, order: Order) -> None:
    """Persist the mutable parts of an order; items and pricing are never rewritten."""
    doc = order.model_dump(include=set(MUTABLE_ORDER_FIELDS))
    database["order"].update_one({"_id": ObjectId(order_id)}, {"$set": doc})


def transition_order(database, order_id: str, order: Order, from_statuses) -> bool:
    """Like ``save_order``, but only while the stored status is one of ``from_statuses``.

    Returns False when another writer moved the order first.
    """
    doc = order.model_dump(include=set(MUTABLE_ORDER_FIELDS))
    res = database["order"].update_one(
        {"_id": ObjectId(order_id), "status": {"$in": list(from_statuses)}},
        {"$set": doc},
    )
    return res.matched_count == 1
