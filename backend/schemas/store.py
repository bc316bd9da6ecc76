# schemas/store.py
# ============================================================================
# HANDMADE STORE BACKEND — DOMAIN + API SCHEMAS
# ============================================================================
# Wire format is camelCase (productId, shippingAddress, ...); Python code uses
# snake_case attributes. Money is Decimal end to end.
# ============================================================================

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


SLUG_PATTERN = r"^[a-z0-9-]+$"
URL_PATTERN = r"^https?://\S+$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Guarded lifecycle. PENDING is left only through payment reconciliation;
# the fulfillment steps after PROCESSING belong to the admin API.
ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ORDER_TRANSITIONS[current]


# ============================================================================
# SECTION 2: ADDRESSES
# ============================================================================

class Address(CamelModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    address: str = Field(min_length=5, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=2, max_length=50)
    zip_code: str = Field(pattern=r"^\d{5}(-\d{4})?$")
    country: str = Field(default="US", min_length=2, max_length=2)


# ============================================================================
# SECTION 3: CATALOG
# ============================================================================

class Category(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    product_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CategoryCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    slug: str = Field(min_length=1, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = Field(default=None, pattern=URL_PATTERN)


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, min_length=1, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = Field(default=None, pattern=URL_PATTERN)


class Product(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    slug: str
    description: str = ""
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    images: List[str] = Field(default_factory=list)
    category_id: Optional[str] = None
    stock: int = Field(default=0, ge=0)
    is_active: bool = True
    is_featured: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProductCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, pattern=SLUG_PATTERN)
    description: str = Field(min_length=10, max_length=5000)
    price: Decimal = Field(gt=0, le=999999)
    compare_at_price: Optional[Decimal] = Field(default=None, gt=0, le=999999)
    stock: int = Field(default=0, ge=0, le=999999)
    category_id: str
    images: List[str] = Field(min_length=1, max_length=10)
    is_active: bool = True
    is_featured: bool = False


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    slug: Optional[str] = Field(default=None, min_length=1, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(default=None, min_length=10, max_length=5000)
    price: Optional[Decimal] = Field(default=None, gt=0, le=999999)
    compare_at_price: Optional[Decimal] = Field(default=None, gt=0, le=999999)
    stock: Optional[int] = Field(default=None, ge=0, le=999999)
    category_id: Optional[str] = None
    images: Optional[List[str]] = Field(default=None, min_length=1, max_length=10)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class StockDecrement(BaseModel):
    """Outcome of one floor-clamped stock decrement"""
    product_id: str
    requested: int
    applied: int
    remaining: int

    @computed_field
    @property
    def oversold(self) -> int:
        return self.requested - self.applied


# ============================================================================
# SECTION 4: CART + CHECKOUT
# ============================================================================

class CartLine(CamelModel):
    """Untrusted client cart line. Anything besides id and quantity is dropped."""
    product_id: str = Field(min_length=1)
    quantity: int = Field(gt=0, le=100)


class CheckoutRequest(CamelModel):
    items: List[CartLine] = Field(default_factory=list)
    shipping_address: Address
    billing_address: Optional[Address] = None


class CheckoutResult(CamelModel):
    order_id: str
    session_id: str
    checkout_url: Optional[str] = None
    total: Decimal


# ============================================================================
# SECTION 5: ORDERS
# ============================================================================

class OrderItem(CamelModel):
    """Line of a persisted order. Price is the snapshot taken at checkout."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=new_id)
    order_id: str
    product_id: str
    product_name: str
    quantity: int = Field(gt=0)
    price: Decimal


class Order(CamelModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    payment_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    stock_committed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class OrderStatusUpdate(CamelModel):
    status: OrderStatus
