"""
Database Schemas for the Old Phone Deals marketplace

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
Review, CartItem, OrderItem and Address are embedded documents.

Money is stored as integer cents and exposed as a two-place Decimal.
"""
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field

CENT = Decimal("0.01")


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class PhoneBrand(str, Enum):
    SAMSUNG = "Samsung"
    APPLE = "Apple"
    HTC = "HTC"
    HUAWEI = "Huawei"
    NOKIA = "Nokia"
    LG = "LG"
    MOTOROLA = "Motorola"
    SONY = "Sony"
    BLACKBERRY = "BlackBerry"


class AdminAction(str, Enum):
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"
    DISABLE_USER = "DISABLE_USER"
    ENABLE_USER = "ENABLE_USER"
    CREATE_PHONE = "CREATE_PHONE"
    UPDATE_PHONE = "UPDATE_PHONE"
    DELETE_PHONE = "DELETE_PHONE"
    DISABLE_PHONE = "DISABLE_PHONE"
    ENABLE_PHONE = "ENABLE_PHONE"
    HIDE_REVIEW = "HIDE_REVIEW"
    SHOW_REVIEW = "SHOW_REVIEW"
    DELETE_REVIEW = "DELETE_REVIEW"
    EXPORT_ORDERS = "EXPORT_ORDERS"


class TargetType(str, Enum):
    USER = "User"
    PHONE = "Phone"
    REVIEW = "Review"
    ORDER = "Order"


def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class User(_Document):
    name: str = Field(..., min_length=1, description="Display name")
    email: EmailStr
    password_hash: str = Field(..., description="salt$hash")
    role: Role = Role.USER
    is_disabled: bool = False
    is_banned: bool = False
    is_verified: bool = False
    wishlist: List[str] = []
    last_login: Optional[datetime] = None


class Review(_Document):
    id: str = Field(default_factory=lambda: uuid4().hex)
    reviewer_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    is_hidden: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Phone(_Document):
    title: str = Field(..., min_length=1)
    brand: PhoneBrand
    image: str
    price_cents: int = Field(..., gt=0)
    stock: int = Field(..., ge=0)
    seller_id: str
    is_disabled: bool = False
    sales_count: int = Field(0, ge=0)
    reviews: List[Review] = []


class CartItem(_Document):
    phone_id: str
    title: str
    quantity: int = Field(..., ge=1)
    price_cents: int = Field(..., gt=0)


class Cart(_Document):
    user_id: str
    items: List[CartItem] = []


class OrderItem(_Document):
    phone_id: str
    title: str
    quantity: int = Field(..., ge=1)
    price_cents: int


class Address(_Document):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class Order(_Document):
    user_id: str
    items: List[OrderItem]
    total_cents: int = Field(..., ge=0)
    address: Address


class AdminLog(_Document):
    admin_user_id: str
    action: AdminAction
    target_type: TargetType
    target_id: str
    details: str = ""
