"""
Request schemas for the storefront API.

Documents live in MongoDB collections named after the lowercased type
(User -> "user", Order -> "order"). These models validate request bodies at
the boundary so malformed input never reaches the order or catalog logic.
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


# ------------ Auth & User ------------
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"


class RoleUpdate(BaseModel):
    role: Literal["user", "admin"]


# ------------ Categories ------------
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    image: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    image: Optional[str] = None


# ------------ Products ------------
class Specification(BaseModel):
    name: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0, le=100)
    images: List[str] = []
    category: str
    stock: int = Field(0, ge=0)
    specifications: List[Specification] = []
    featured: bool = False
    is_new: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    price: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0, le=100)
    images: Optional[List[str]] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    specifications: Optional[List[Specification]] = None
    featured: Optional[bool] = None
    is_new: Optional[bool] = None


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: str = Field(..., min_length=1)


class FlagUpdate(BaseModel):
    value: bool


# ------------ Orders ------------
class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderItem(BaseModel):
    product: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    state: Optional[str] = None


class OrderCreate(BaseModel):
    order_items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: str = "credit_card"
    subtotal: float = Field(..., ge=0)
    tax_price: float = Field(0, ge=0)
    shipping_price: float = Field(0, ge=0)
    total_price: Optional[float] = Field(None, ge=0)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


# ------------ Payment ------------
class PaymentIntentRequest(BaseModel):
    order_id: str


class PaymentSuccessRequest(BaseModel):
    order_id: str
    payment_intent_id: str
