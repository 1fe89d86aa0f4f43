"""
Database Schemas for the Storefront

Each top-level Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name. Embedded models
(line items, timeline events, addresses) live inside their parent document.
"""
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


DiscountType = Literal["percentage", "fixed"]
CouponScope = Literal["all", "products", "categories"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled", "refunded", "returned"]
PaymentMethod = Literal["card", "paypal", "cod", "bank_transfer"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded", "partially_refunded"]


# ----------------------- Users -----------------------
class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    is_admin: bool = False


# ----------------------- Catalog -----------------------
class InventoryRecord(BaseModel):
    sku: str
    quantity: int = Field(0, ge=0)
    low_stock_threshold: int = 10
    variant_combination: Dict[str, str] = {}


class ProductImage(BaseModel):
    url: str
    alt: str = ""
    is_primary: bool = False


class Product(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    category_id: Optional[str] = None
    images: List[ProductImage] = []
    inventory: List[InventoryRecord] = []
    total_quantity: int = Field(0, ge=0)
    sales_count: int = 0
    is_active: bool = True


# ----------------------- Cart -----------------------
class LineItem(BaseModel):
    id: str = Field(default_factory=new_id)
    product_id: str
    sku: str
    name: str = ""
    image: str = ""
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0, description="Price snapshot at add-time")
    variant_details: Dict[str, str] = {}
    added_at: datetime = Field(default_factory=utcnow)


class AppliedCoupon(BaseModel):
    code: str
    discount_value: float
    discount_type: DiscountType = "percentage"
    maximum_discount: Optional[float] = None


class Totals(BaseModel):
    subtotal: float = 0.0
    discount: float = 0.0
    tax: float = 0.0
    shipping: float = 0.0
    total: float = 0.0


class Cart(BaseModel):
    user_id: str
    items: List[LineItem] = []
    coupon: Optional[AppliedCoupon] = None
    totals: Totals = Field(default_factory=Totals)
    currency: str = "USD"
    updated_at: datetime = Field(default_factory=utcnow)


# ----------------------- Coupons -----------------------
class UsageLimit(BaseModel):
    total: Optional[int] = Field(None, ge=0)
    per_user: Optional[int] = Field(None, ge=0)


class CouponUsage(BaseModel):
    user_id: str
    count: int = 1
    last_used: datetime = Field(default_factory=utcnow)


class Coupon(BaseModel):
    code: str = Field(..., max_length=20)
    description: str = ""
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    minimum_purchase: float = Field(0, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    usage_limit: UsageLimit = Field(default_factory=UsageLimit)
    usage_count: int = 0
    used_by: List[CouponUsage] = []
    applicable_products: List[str] = []
    applicable_categories: List[str] = []
    apply_to: CouponScope = "all"
    start_date: datetime = Field(default_factory=utcnow)
    end_date: datetime
    is_active: bool = True
    created_by: Optional[str] = None


# ----------------------- Orders -----------------------
class Address(BaseModel):
    first_name: str
    last_name: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "USA"
    phone: Optional[str] = None


class OrderItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    product_id: str
    name: str
    sku: str
    image: str = ""
    unit_price: float
    quantity: int = Field(..., ge=1)
    variant_details: Dict[str, str] = {}


class PricingSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: float
    discount: float = 0.0
    coupon_code: Optional[str] = None
    tax: float = 0.0
    shipping: float = 0.0
    total: float


class Payment(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: float = 0.0


class TimelineEvent(BaseModel):
    id: str = Field(default_factory=new_id)
    status: str
    description: str
    timestamp: datetime = Field(default_factory=utcnow)
    updated_by: Optional[str] = None


class Tracking(BaseModel):
    carrier: str
    tracking_number: str
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class OrderNotes(BaseModel):
    customer: Optional[str] = None
    internal: Optional[str] = None


class Order(BaseModel):
    order_number: str
    user_id: str
    items: List[OrderItem]
    shipping_address: Address
    billing_address: Address
    payment: Payment
    pricing: PricingSnapshot
    status: OrderStatus = "pending"
    timeline: List[TimelineEvent] = []
    tracking: Optional[Tracking] = None
    notes: OrderNotes = Field(default_factory=OrderNotes)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
