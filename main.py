import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import jwt
from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart as carts
import database
import orders
from checkout import cancel_order, place_order
from config import JWT_ALGO, JWT_EXPIRE_DAYS, JWT_SECRET, LOG_LEVEL, POLICY, PricingPolicy
from coupons import as_utc, coupon_stats, evaluate, in_window, normalize_code
from database import (
    create_document,
    ensure_indexes,
    find_coupon,
    get_db,
    get_documents,
    load_cart,
    load_or_create_cart,
    load_order,
    load_product,
    load_products,
    parse_object_id,
    save_cart,
    save_order,
)
from errors import (
    AuthenticationError,
    AuthorizationError,
    CouponError,
    CouponNotFoundError,
    NotFoundError,
    ServiceUnavailableError,
    StateError,
    StockError,
    StoreError,
    ValidationError,
)
from inventory import find_record, is_in_stock, is_low_stock, is_variant_in_stock, recompute_total_quantity, set_quantity
from schemas import (
    Address,
    Coupon as CouponSchema,
    CouponScope,
    DiscountType,
    InventoryRecord,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product as ProductSchema,
    ProductImage,
    User as UserSchema,
    UsageLimit,
    utcnow,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------- Utils -----------------------
security = HTTPBearer(auto_error=False)


def serialize_doc(doc):
    if isinstance(doc, BaseModel):
        doc = doc.model_dump()
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = str(v)
            elif k != "password_hash":
                out[k] = serialize_doc(v)
        return out
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    return doc


def ok(data=None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def hash_password(password: str) -> str:
    import hashlib
    return hashlib.sha256(password.encode()).hexdigest()


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def get_policy() -> PricingPolicy:
    return POLICY


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
):
    if credentials is None:
        raise AuthenticationError("Not authorized, no token")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationError("Invalid token payload")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AuthenticationError("User not found")
    return serialize_doc(user)


def get_admin_user(user=Depends(get_current_user)):
    if not user.get("is_admin"):
        raise AuthorizationError("Admin only")
    return user


def order_out(order_id: str, order) -> dict:
    return {"id": order_id, **serialize_doc(order)}


def cart_out(cart) -> dict:
    return {**serialize_doc(cart), "item_count": carts.item_count(cart)}


# ----------------------- Errors -----------------------
ERROR_STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    AuthenticationError: 401,
    AuthorizationError: 403,
    StateError: 400,
    StockError: 400,
    CouponError: 400,
    CouponNotFoundError: 404,
    ServiceUnavailableError: 503,
}


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Map StoreError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(status_code=status_code, content={"success": False, "message": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "message": "Validation failed", "errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# ----------------------- Models -----------------------
class ApiBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupBody(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class InventoryBody(ApiBody):
    sku: str
    quantity: int = Field(0, ge=0)
    low_stock_threshold: int = 10
    variant_combination: Dict[str, str] = {}


class ProductCreateBody(ApiBody):
    name: str = Field(..., max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    category_id: Optional[str] = None
    images: List[ProductImage] = []
    inventory: List[InventoryBody] = []
    is_active: bool = True


class ProductUpdateBody(ApiBody):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[ProductImage]] = None
    is_active: Optional[bool] = None


class StockBody(ApiBody):
    quantity: int = Field(..., ge=0)


class CartItemBody(ApiBody):
    product_id: str
    sku: Optional[str] = None
    quantity: int = Field(1, ge=1)
    variant_details: Dict[str, str] = {}


class CartQuantityBody(ApiBody):
    quantity: int


class CouponCodeBody(ApiBody):
    code: str = Field(..., min_length=1)


class SyncItemBody(ApiBody):
    product_id: str
    sku: str
    quantity: int = 1
    variant_details: Dict[str, str] = {}


class CartSyncBody(ApiBody):
    items: List[SyncItemBody] = []


class CouponValidateBody(ApiBody):
    code: str = Field(..., min_length=1)
    subtotal: float = Field(..., ge=0)
    product_ids: List[str] = []
    category_ids: List[str] = []


class UsageLimitBody(ApiBody):
    total: Optional[int] = Field(None, ge=0)
    per_user: Optional[int] = Field(None, ge=0)


class CouponCreateBody(ApiBody):
    code: str = Field(..., min_length=1, max_length=20)
    description: str = ""
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    minimum_purchase: float = Field(0, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    usage_limit: UsageLimitBody = Field(default_factory=UsageLimitBody)
    applicable_products: List[str] = []
    applicable_categories: List[str] = []
    apply_to: CouponScope = "all"
    start_date: Optional[datetime] = None
    end_date: datetime


class CouponUpdateBody(ApiBody):
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    minimum_purchase: Optional[float] = Field(None, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[UsageLimitBody] = None
    applicable_products: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    apply_to: Optional[CouponScope] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class AddressBody(ApiBody):
    first_name: str
    last_name: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "USA"
    phone: Optional[str] = None

    def to_address(self) -> Address:
        return Address(**self.model_dump())


class OrderCreateBody(ApiBody):
    shipping_address: AddressBody
    billing_address: Optional[AddressBody] = None
    payment_method: PaymentMethod
    notes: Optional[str] = None


class CancelBody(ApiBody):
    reason: Optional[str] = None


class StatusBody(ApiBody):
    status: OrderStatus
    description: Optional[str] = None


class TrackingBody(ApiBody):
    carrier: str
    tracking_number: str
    estimated_delivery: Optional[datetime] = None


class RefundBody(ApiBody):
    amount: float
    reason: str = ""


class PaymentBody(ApiBody):
    status: PaymentStatus
    transaction_id: Optional[str] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/signup")
def signup(body: SignupBody, db=Depends(get_db)):
    existing = db["user"].find_one({"email": body.email})
    if existing:
        raise ValidationError("Email already registered", field="email")
    user = UserSchema(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password),
        is_admin=False,
    )
    user_id = create_document("user", user, database=db)
    token = create_token({"id": user_id, "email": body.email, "is_admin": False})
    return ok({"token": token, "user": {"id": user_id, "name": body.name, "email": body.email, "is_admin": False}})


@app.post("/auth/login")
def login(body: LoginBody, db=Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user or user.get("password_hash") != hash_password(body.password):
        raise AuthenticationError("Invalid credentials")
    suser = serialize_doc(user)
    token = create_token({"id": suser["id"], "email": suser["email"], "is_admin": suser.get("is_admin", False)})
    return ok({"token": token, "user": {"id": suser["id"], "name": suser["name"], "email": suser["email"], "is_admin": suser.get("is_admin", False)}})


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return ok(user)


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, db=Depends(get_db)):
    filt = {"is_active": True}
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    if category:
        filt["category_id"] = category
    items = get_documents("product", filt, limit=100, database=db)
    return ok([serialize_doc(i) for i in items])


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    doc = db["product"].find_one({"_id": parse_object_id(product_id)})
    if not doc:
        raise NotFoundError("Product not found")
    product = ProductSchema.model_validate(doc)
    return ok({**serialize_doc(doc), "in_stock": is_in_stock(product)})


@app.get("/products/{product_id}/stock/{sku}")
def get_stock(product_id: str, sku: str, db=Depends(get_db)):
    product = load_product(db, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    record = find_record(product, sku)
    if record is None:
        raise NotFoundError("Product variant not found")
    return ok({
        "sku": sku,
        "quantity": record.quantity,
        "in_stock": is_variant_in_stock(product, sku),
        "low_stock": is_low_stock(record),
    })


@app.post("/products", status_code=201)
def create_product(body: ProductCreateBody, user=Depends(get_admin_user), db=Depends(get_db)):
    product = ProductSchema(
        **body.model_dump(exclude={"inventory"}),
        inventory=[InventoryRecord(**i.model_dump()) for i in body.inventory],
    )
    recompute_total_quantity(product)
    pid = create_document("product", product, database=db)
    return ok({"id": pid}, "Product created")


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(get_admin_user), db=Depends(get_db)):
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = datetime.now(timezone.utc)
    res = db["product"].update_one({"_id": parse_object_id(product_id)}, {"$set": update})
    if res.matched_count == 0:
        raise NotFoundError("Product not found")
    return ok(message="Product updated")


@app.put("/products/{product_id}/inventory/{sku}")
def adjust_stock(product_id: str, sku: str, body: StockBody, user=Depends(get_admin_user), db=Depends(get_db)):
    product = load_product(db, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    set_quantity(product, sku, body.quantity)
    db["product"].update_one(
        {"_id": ObjectId(product_id)},
        {"$set": {
            "inventory": [r.model_dump() for r in product.inventory],
            "total_quantity": product.total_quantity,
            "updated_at": datetime.now(timezone.utc),
        }},
    )
    logger.info("stock for %s/%s set to %d by %s", product_id, sku, body.quantity, user["id"])
    return ok({"sku": sku, "quantity": body.quantity, "total_quantity": product.total_quantity}, "Stock updated")


# ----------------------- Cart -----------------------
def _require_cart(db, user_id: str):
    cart = load_cart(db, user_id)
    if cart is None:
        raise NotFoundError("Cart not found")
    return cart


@app.get("/cart")
def get_cart(user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    cart = load_cart(db, user["id"])
    if cart is None:
        cart = carts.recalculate(carts.new_cart(user["id"]), policy)
        save_cart(db, cart)
    return ok(cart_out(cart))


@app.post("/cart/items")
def add_cart_item(body: CartItemBody, user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    product = load_product(db, body.product_id)
    cart = load_or_create_cart(db, user["id"])
    carts.add_item(cart, body.product_id, product, body.sku, body.quantity, body.variant_details, policy)
    save_cart(db, cart)
    return ok(cart_out(cart), "Item added to cart")


@app.put("/cart/items/{item_id}")
def update_cart_item(item_id: str, body: CartQuantityBody, user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    cart = _require_cart(db, user["id"])
    item = carts.find_item(cart, item_id)
    product = load_product(db, item.product_id) if item else None
    carts.update_quantity(cart, item_id, body.quantity, product, policy)
    save_cart(db, cart)
    return ok(cart_out(cart), "Cart updated")


@app.delete("/cart/items/{item_id}")
def remove_cart_item(item_id: str, user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    cart = _require_cart(db, user["id"])
    carts.remove_item(cart, item_id, policy)
    save_cart(db, cart)
    return ok(cart_out(cart), "Item removed from cart")


@app.delete("/cart")
def clear_cart(user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    cart = _require_cart(db, user["id"])
    carts.clear(cart, policy)
    save_cart(db, cart)
    return ok(cart_out(cart), "Cart cleared")


@app.post("/cart/coupon")
def apply_cart_coupon(body: CouponCodeBody, user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    cart = _require_cart(db, user["id"])
    code = normalize_code(body.code)
    found = find_coupon(db, code)
    if found is None:
        raise CouponNotFoundError(code)
    _, coupon = found
    products = load_products(db, [item.product_id for item in cart.items])
    category_ids = [p.category_id for p in products.values() if p.category_id]
    discount = carts.apply_coupon(cart, coupon, user["id"], category_ids, policy)
    save_cart(db, cart)
    return ok({"cart": cart_out(cart), "discount": discount}, "Coupon applied successfully")


@app.delete("/cart/coupon")
def remove_cart_coupon(user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    cart = _require_cart(db, user["id"])
    carts.remove_coupon(cart, policy)
    save_cart(db, cart)
    return ok(cart_out(cart), "Coupon removed")


@app.post("/cart/sync")
def sync_cart(body: CartSyncBody, user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    cart = load_or_create_cart(db, user["id"])
    products = load_products(db, [i.product_id for i in body.items])
    carts.sync_items(cart, [i.model_dump() for i in body.items], products, policy)
    save_cart(db, cart)
    return ok(cart_out(cart), "Cart synced")


# ----------------------- Coupons -----------------------
def _load_coupon_doc(db, coupon_id: str) -> dict:
    doc = db["coupon"].find_one({"_id": parse_object_id(coupon_id)})
    if not doc:
        raise NotFoundError("Coupon not found")
    return doc


@app.get("/coupons")
def list_active_coupons(db=Depends(get_db)):
    now = utcnow()
    public = ("code", "description", "discount_type", "discount_value", "minimum_purchase", "maximum_discount", "end_date")
    active = []
    for doc in db["coupon"].find({"is_active": True}):
        if in_window(CouponSchema.model_validate(doc), now):
            active.append(serialize_doc({k: doc.get(k) for k in public}))
    return ok(active, count=len(active))


@app.post("/coupons/validate")
def validate_coupon(body: CouponValidateBody, user=Depends(get_current_user), db=Depends(get_db)):
    code = normalize_code(body.code)
    found = find_coupon(db, code)
    if found is None:
        raise CouponNotFoundError(code)
    _, coupon = found
    discount = evaluate(coupon, user["id"], body.subtotal, body.product_ids, body.category_ids)
    return ok({
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "discount": discount,
        "final_total": round(body.subtotal - discount, 2),
    }, "Coupon is valid")


@app.get("/coupons/admin/all")
def list_coupons(
    page: int = 1,
    limit: int = 20,
    is_active: Optional[bool] = None,
    discount_type: Optional[DiscountType] = None,
    user=Depends(get_admin_user),
    db=Depends(get_db),
):
    page, limit = max(page, 1), max(limit, 1)
    filt = {}
    if is_active is not None:
        filt["is_active"] = is_active
    if discount_type:
        filt["discount_type"] = discount_type
    total = db["coupon"].count_documents(filt)
    docs = db["coupon"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    data = [serialize_doc(d) for d in docs]
    return ok(data, count=len(data), total=total, total_pages=-(-total // limit), current_page=page)


@app.get("/coupons/admin/{coupon_id}")
def get_coupon(coupon_id: str, user=Depends(get_admin_user), db=Depends(get_db)):
    return ok(serialize_doc(_load_coupon_doc(db, coupon_id)))


@app.get("/coupons/admin/{coupon_id}/stats")
def get_coupon_stats(coupon_id: str, user=Depends(get_admin_user), db=Depends(get_db)):
    coupon = CouponSchema.model_validate(_load_coupon_doc(db, coupon_id))
    return ok(coupon_stats(coupon))


@app.post("/coupons/admin", status_code=201)
def create_coupon(body: CouponCreateBody, user=Depends(get_admin_user), db=Depends(get_db)):
    code = normalize_code(body.code)
    if db["coupon"].find_one({"code": code}):
        raise ValidationError("Coupon code already exists", field="code")
    data = body.model_dump(exclude={"start_date", "usage_limit"})
    data["code"] = code
    coupon = CouponSchema(
        **data,
        usage_limit=UsageLimit(**body.usage_limit.model_dump()),
        start_date=body.start_date or utcnow(),
        created_by=user["id"],
    )
    if as_utc(coupon.end_date) <= as_utc(coupon.start_date):
        raise ValidationError("End date must be after start date", field="end_date")
    coupon_id = create_document("coupon", coupon, database=db)
    logger.info("coupon %s created by %s", code, user["id"])
    return ok({"id": coupon_id, **serialize_doc(coupon)}, "Coupon created successfully")


@app.put("/coupons/admin/{coupon_id}")
def update_coupon(coupon_id: str, body: CouponUpdateBody, user=Depends(get_admin_user), db=Depends(get_db)):
    doc = _load_coupon_doc(db, coupon_id)
    update = body.model_dump(exclude_none=True)
    if body.usage_limit is not None:
        update["usage_limit"] = body.usage_limit.model_dump()
    # validate the merged document before writing it
    merged = CouponSchema.model_validate({**doc, **update})
    update["updated_at"] = datetime.now(timezone.utc)
    db["coupon"].update_one({"_id": doc["_id"]}, {"$set": update})
    return ok({"id": coupon_id, **serialize_doc(merged)}, "Coupon updated successfully")


@app.delete("/coupons/admin/{coupon_id}")
def deactivate_coupon(coupon_id: str, user=Depends(get_admin_user), db=Depends(get_db)):
    doc = _load_coupon_doc(db, coupon_id)
    db["coupon"].update_one({"_id": doc["_id"]}, {"$set": {"is_active": False, "updated_at": datetime.now(timezone.utc)}})
    return ok(message="Coupon deactivated successfully")


# ----------------------- Orders -----------------------
def _paged_orders(db, filt: dict, page: int, limit: int) -> dict:
    page, limit = max(page, 1), max(limit, 1)
    total = db["order"].count_documents(filt)
    docs = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    data = [serialize_doc(d) for d in docs]
    return ok(data, count=len(data), total=total, total_pages=-(-total // limit), current_page=page)


@app.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user), db=Depends(get_db), policy: PricingPolicy = Depends(get_policy)):
    order_id, order = place_order(
        db,
        user["id"],
        body.shipping_address.to_address(),
        body.billing_address.to_address() if body.billing_address else None,
        body.payment_method,
        policy,
        notes=body.notes,
    )
    return ok(order_out(order_id, order), "Order placed successfully")


@app.get("/orders")
def list_my_orders(page: int = 1, limit: int = 10, status: Optional[OrderStatus] = None, user=Depends(get_current_user), db=Depends(get_db)):
    filt = {"user_id": user["id"]}
    if status:
        filt["status"] = status
    return _paged_orders(db, filt, page, limit)


@app.get("/orders/number/{order_number}")
def get_order_by_number(order_number: str, user=Depends(get_current_user), db=Depends(get_db)):
    doc = db["order"].find_one({"order_number": order_number, "user_id": user["id"]})
    if not doc:
        raise NotFoundError("Order not found")
    return ok(serialize_doc(doc))


@app.get("/orders/admin/all")
def list_all_orders(
    page: int = 1,
    limit: int = 20,
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
    user=Depends(get_admin_user),
    db=Depends(get_db),
):
    filt = {}
    if status:
        filt["status"] = status
    if payment_status:
        filt["payment.status"] = payment_status
    if search:
        filt["$or"] = [
            {"order_number": {"$regex": search, "$options": "i"}},
            {"shipping_address.first_name": {"$regex": search, "$options": "i"}},
            {"shipping_address.last_name": {"$regex": search, "$options": "i"}},
        ]
    return _paged_orders(db, filt, page, limit)


@app.get("/orders/admin/{order_id}")
def get_order_admin(order_id: str, user=Depends(get_admin_user), db=Depends(get_db)):
    return ok(order_out(order_id, load_order(db, order_id)))


@app.get("/orders/{order_id}")
def get_my_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    order = load_order(db, order_id, user_id=user["id"])
    return ok({**order_out(order_id, order), "summary": serialize_doc(orders.order_summary(order))})


@app.put("/orders/{order_id}/cancel")
def cancel_my_order(order_id: str, body: Optional[CancelBody] = None, user=Depends(get_current_user), db=Depends(get_db)):
    reason = body.reason if body else None
    order = cancel_order(db, order_id, reason or "Cancelled by customer", actor=user["id"], user_id=user["id"])
    return ok(order_out(order_id, order), "Order cancelled successfully")


@app.put("/orders/admin/{order_id}/status")
def update_order_status(order_id: str, body: StatusBody, user=Depends(get_admin_user), db=Depends(get_db)):
    order = load_order(db, order_id)
    orders.update_status(order, body.status, body.description, actor=user["id"])
    save_order(db, order_id, order)
    logger.info("order %s status -> %s by %s", order.order_number, body.status, user["id"])
    return ok(order_out(order_id, order), "Order status updated")


@app.put("/orders/admin/{order_id}/tracking")
def add_order_tracking(order_id: str, body: TrackingBody, user=Depends(get_admin_user), db=Depends(get_db)):
    order = load_order(db, order_id)
    orders.add_tracking(order, body.carrier, body.tracking_number, body.estimated_delivery, actor=user["id"])
    save_order(db, order_id, order)
    return ok(order_out(order_id, order), "Tracking information added")


@app.put("/orders/admin/{order_id}/refund")
def refund_order(order_id: str, body: RefundBody, user=Depends(get_admin_user), db=Depends(get_db)):
    order = load_order(db, order_id)
    orders.process_refund(order, body.amount, body.reason, actor=user["id"])
    save_order(db, order_id, order)
    return ok(order_out(order_id, order), "Refund processed successfully")


@app.put("/orders/admin/{order_id}/payment")
def update_order_payment(order_id: str, body: PaymentBody, user=Depends(get_admin_user), db=Depends(get_db)):
    order = load_order(db, order_id)
    orders.update_payment(order, body.status, body.transaction_id)
    save_order(db, order_id, order)
    return ok(order_out(order_id, order), "Payment status updated")


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Classic Crew T-Shirt",
        "description": "Soft combed cotton tee.",
        "price": 20.0,
        "category_id": "apparel",
        "images": [{"url": "https://images.unsplash.com/photo-1521572163474-6864f9cf17ab", "is_primary": True}],
        "inventory": [
            {"sku": "TEE-S-BLK", "quantity": 25, "variant_combination": {"size": "S", "color": "black"}},
            {"sku": "TEE-M-BLK", "quantity": 30, "variant_combination": {"size": "M", "color": "black"}},
            {"sku": "TEE-L-BLK", "quantity": 5, "variant_combination": {"size": "L", "color": "black"}},
        ],
    },
    {
        "name": "Canvas Tote",
        "description": "Heavy canvas shopping tote.",
        "price": 15.0,
        "category_id": "accessories",
        "images": [{"url": "https://images.unsplash.com/photo-1544816155-12df9643f363", "is_primary": True}],
        "inventory": [{"sku": "TOTE-NAT", "quantity": 40}],
    },
    {
        "name": "Noise Cancelling Headphones",
        "description": "Immerse in music with ANC.",
        "price": 199.99,
        "category_id": "electronics",
        "images": [{"url": "https://images.unsplash.com/photo-1518443248587-30bdc8f94f04", "is_primary": True}],
        "inventory": [{"sku": "ANC-BLK", "quantity": 12}, {"sku": "ANC-SLV", "quantity": 3}],
    },
    {
        "name": "Mechanical Keyboard",
        "description": "Hot-swappable RGB keyboard.",
        "price": 79.99,
        "category_id": "electronics",
        "images": [{"url": "https://images.unsplash.com/photo-1516382799247-87df95d790b5", "is_primary": True}],
        "inventory": [{"sku": "KB-TKL", "quantity": 30}],
    },
]


@app.post("/seed")
def seed(db=Depends(get_db)):
    if db["product"].count_documents({}) > 0:
        return ok({"seeded": False}, "Products already exist")
    for p in DEMO_PRODUCTS:
        prod = ProductSchema(**p)
        recompute_total_quantity(prod)
        create_document("product", prod, database=db)
    if db["coupon"].count_documents({}) == 0:
        welcome = CouponSchema(
            code="WELCOME10",
            description="10% off your first order",
            discount_type="percentage",
            discount_value=10,
            usage_limit=UsageLimit(per_user=1),
            end_date=utcnow() + timedelta(days=365),
        )
        create_document("coupon", welcome, database=db)
    # create admin user if none
    if db["user"].count_documents({"is_admin": True}) == 0:
        admin = UserSchema(name="Admin", email="admin@shop.com", password_hash=hash_password("admin123"), is_admin=True)
        create_document("user", admin, database=db)
    return ok({"seeded": True, "products": db["product"].count_documents({})})


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
