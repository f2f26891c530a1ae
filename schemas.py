"""
Database Schemas

Pydantic models that define MongoDB collections used by the app, plus the
request bodies the API accepts. Each collection class name (lowercased) maps
to a collection name.
"""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from errors import InvalidRoleError, InvalidStatusError


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidRoleError(value)


class OrderStatus(str, Enum):
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidStatusError(value)


# Statuses no transition may leave
TERMINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

# Statuses that prove a purchase for review gating. "completed" only appears
# on orders written before the status vocabulary was unified.
FULFILLED_STATUSES = (OrderStatus.DELIVERED.value, "completed")


def _normalize_role(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


# User collection
class User(BaseModel):
    first_name: str = Field(..., description="Given name")
    last_name: str = Field(..., description="Family name")
    email: EmailStr = Field(..., description="Login email, unique")
    password_hash: str = Field(..., description="bcrypt hash of the password")
    role: Role = Field(Role.BUYER, description="Access role")


# Product collection
class Product(BaseModel):
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: float = Field(..., ge=0, description="Unit price in dollars")
    category: Optional[str] = Field(None, description="Product category")
    image: Optional[str] = Field(None, description="Image URL")
    stock: int = Field(0, ge=0, description="Units in stock")
    seller: str = Field(..., description="Owning seller _id as string")
    average_rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)


# Line item (embedded in Order)
class OrderItem(BaseModel):
    product: str = Field(..., description="Referenced product _id as string")
    name: str = Field(..., description="Snapshot of product name at purchase time")
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    quantity: int = Field(..., ge=1, description="Quantity ordered")


# Shipping/contact details for checkout without an account
class GuestInfo(BaseModel):
    email: EmailStr
    first_name: str
    last_name: str
    address: str
    apartment: Optional[str] = None
    city: str
    governorate: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    payment_method: Optional[str] = None


# Order collection
class Order(BaseModel):
    user: Optional[str] = Field(None, description="Buyer _id, empty for guest checkout")
    guest: Optional[GuestInfo] = None
    items: List[OrderItem] = Field(..., description="List of purchased items")
    total: float = Field(..., ge=0)
    status: OrderStatus = Field(OrderStatus.PROCESSING, description="Order status")
    payment_reference: Optional[str] = Field(None, description="Payment processor reference")


# Review collection
class Review(BaseModel):
    product: str
    user: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    verified_purchase: bool = False


# Requests

class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = Role.BUYER

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value):
        return _normalize_role(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CreateProductRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category: Optional[str] = None
    image: Optional[str] = None
    stock: int = Field(0, ge=0)


class CartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class LineItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(BaseModel):
    items: Optional[List[LineItemRequest]] = Field(
        None, description="Explicit line items; omit to check out the caller's cart"
    )
    guest: Optional[GuestInfo] = None
    payment_reference: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    # Plain string so unknown values surface as InvalidStatus
    status: str


class CreateReviewRequest(BaseModel):
    product_id: str
    # Range and integrality are checked by the review service
    rating: Any
    comment: Optional[str] = Field(None, max_length=2000)


class UpdateRoleRequest(BaseModel):
    role: Role

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value):
        return _normalize_role(value)
