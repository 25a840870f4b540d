"""
Database Schemas for the shop

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase of the class name.

- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"

Request bodies accepted by the API live at the bottom of this module, one
model per endpoint.
"""

import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

CATEGORIES = ("Electronics", "Clothing", "Books", "Home", "Sports", "Beauty", "Toys", "Other")
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
PAYMENT_METHODS = ("cod", "razorpay")

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
PaymentMethod = Literal["cod", "razorpay"]
Category = Literal["Electronics", "Clothing", "Books", "Home", "Sports", "Beauty", "Toys", "Other"]

PHONE_PATTERN = r"^\+?[\d\s\-\(\)]{10,}$"
POSTAL_CODE_PATTERN = r"^[1-9][0-9]{5}$"
PLACEHOLDER_IMAGE = "https://via.placeholder.com/300x300?text=No+Image"


class Address(BaseModel):
    street: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    postal_code: Optional[str] = Field(None, pattern=POSTAL_CODE_PATTERN)
    country: Optional[str] = Field(None, max_length=50)


class User(BaseModel):
    """Users collection schema"""
    name: str = Field(..., max_length=50, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password_hash: str = Field(..., description="Argon2 password hash")
    phone: Optional[str] = Field(None, description="Contact phone")
    address: Optional[Address] = Field(None, description="Default address")
    role: Literal["user", "admin"] = Field("user", description="Role: user or admin")
    is_active: bool = Field(True, description="Whether user is active")


class Ratings(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Product(BaseModel):
    """Products collection schema"""
    name: str = Field(..., max_length=100, description="Product name")
    description: str = Field(..., max_length=1000, description="Product description")
    price: float = Field(..., ge=0, description="List price")
    discount_price: Optional[float] = Field(None, ge=0, description="Price charged instead of list price when set")
    category: str = Field("Other", description="Product category")
    stock: int = Field(0, ge=0, description="Units available")
    image_url: str = Field(PLACEHOLDER_IMAGE, description="Primary image URL")
    images: List[str] = Field(default_factory=list, description="Gallery image URLs")
    ratings: Ratings = Field(default_factory=Ratings)
    is_active: bool = Field(True, description="Inactive products are hidden and cannot be bought")


class CartItem(BaseModel):
    product_id: str = Field(..., description="ID of the product")
    quantity: int = Field(1, ge=1, description="Quantity of the product")
    price: float = Field(..., ge=0, description="Effective price captured when the line was written")


class Cart(BaseModel):
    """Carts collection schema, one per user"""
    user_id: str = Field(..., description="Owner user id")
    items: List[CartItem] = Field(default_factory=list, description="List of cart items")


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    total: float = Field(..., ge=0)


class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=50)
    street: str = Field(..., min_length=5, max_length=100)
    city: str = Field(..., min_length=2, max_length=50)
    state: str = Field(..., min_length=2, max_length=50)
    postal_code: str = Field(..., pattern=POSTAL_CODE_PATTERN)
    country: str = Field("India", max_length=50)
    phone: str = Field(..., pattern=PHONE_PATTERN)


class PaymentInfo(BaseModel):
    method: PaymentMethod = Field("cod")
    razorpay_order_id: Optional[str] = Field(None, description="Gateway order reference")
    transaction_id: Optional[str] = Field(None, description="Gateway payment reference")
    status: PaymentStatus = Field("pending")


class Order(BaseModel):
    """Orders collection schema"""
    order_number: str
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_info: PaymentInfo = Field(default_factory=PaymentInfo)
    order_status: OrderStatus = Field("pending")
    subtotal: float = Field(0, ge=0)
    shipping_cost: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    total_amount: float = Field(0, ge=0)
    notes: Optional[str] = Field(None, max_length=500)
    tracking_number: Optional[str] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


# Request bodies

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be between 2 and 50 characters")
        return v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[Address] = None


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password(v)


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    category: Category
    stock: int = Field(..., ge=0)
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    is_active: bool = True


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    stock: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None


class CartAddRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=10)


class CartUpdateRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0, le=10)


class CheckoutRequest(BaseModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "cod"
    notes: Optional[str] = Field(None, max_length=500)


class BuyNowRequest(CheckoutRequest):
    product_id: str
    quantity: int = Field(..., ge=1, le=10)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    order_id: str


class PaymentConfirmRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class RefundRequest(BaseModel):
    order_id: str
    amount: Optional[float] = Field(None, gt=0, description="Partial refund amount; full refund when omitted")
    reason: Optional[str] = None


def _check_password(v: str) -> str:
    if not (re.search(r"[a-z]", v) and re.search(r"[A-Z]", v) and re.search(r"\d", v)):
        raise ValueError(
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    return v
