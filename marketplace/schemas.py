from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# JSON keys are camelCase on the wire; snake_case attributes in Python
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class MessageOut(BaseModel):
    message: str


# -----------------------------
# Users
# -----------------------------

class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=1, max_length=100)
    role: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserSummary(CamelModel):
    id: int
    name: str
    avatar: Optional[str] = None


class UserOut(UserSummary):
    email: EmailStr
    role: Role
    company: Optional[str] = None


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class AddressCreate(CamelModel):
    label: Optional[str] = None
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    is_default: bool = False


class AddressOut(AddressCreate):
    id: int
    label: str


class ProfileOut(CamelModel):
    id: int
    name: str
    role: Role
    avatar: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    created_at: Optional[datetime] = None
    # only present on the caller's own profile
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    addresses: Optional[List[AddressOut]] = None
    product_count: int = 0
    review_count: int = 0


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = Field(None, min_length=8, max_length=128)


# -----------------------------
# Catalog
# -----------------------------

class CategoryCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    parent_id: Optional[int] = None
    image: Optional[str] = None


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    parent_id: Optional[int] = None
    image: Optional[str] = None


class CategoryOut(CamelModel):
    id: int
    name: str
    slug: str
    image: Optional[str] = None
    parent_id: Optional[int] = None
    product_count: int = 0


class CategoryDetail(CategoryOut):
    parent: Optional[CategoryOut] = None
    children: List[CategoryOut] = []


class ProductSummary(CamelModel):
    id: int
    name: str
    slug: str
    price: Decimal
    images: List[str] = []
    stock: int


class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    compare_at: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    images: List[str] = []
    stock: int = Field(0, ge=0)
    min_order: int = Field(1, ge=1)
    sku: Optional[str] = None
    tags: List[str] = []
    category_id: int = Field(..., gt=0)


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    compare_at: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    images: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    min_order: Optional[int] = Field(None, ge=1)
    sku: Optional[str] = None
    tags: Optional[List[str]] = None
    category_id: Optional[int] = Field(None, gt=0)
    published: Optional[bool] = None


class ProductOut(CamelModel):
    id: int
    name: str
    slug: str
    description: str
    price: Decimal
    compare_at: Optional[Decimal] = None
    images: List[str] = []
    stock: int
    min_order: int
    sku: Optional[str] = None
    tags: List[str] = []
    published: bool
    seller_id: int
    category_id: int
    created_at: Optional[datetime] = None
    category: Optional[CategoryOut] = None
    seller: Optional[UserSummary] = None


class ReviewCreate(CamelModel):
    product_id: int = Field(..., gt=0)
    rating: int
    comment: Optional[str] = None


class ReviewOut(CamelModel):
    id: int
    product_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    user: Optional[UserSummary] = None


class ProductDetail(ProductOut):
    reviews: List[ReviewOut] = []


class ProductListResponse(BaseModel):
    products: List[ProductOut]
    total: int
    page: int
    limit: int
    totalPages: int


# -----------------------------
# Cart / wishlist
# -----------------------------

class CartItemAdd(CamelModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1, strict=True)


class CartItemSet(CamelModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., strict=True)


class CartItemOut(CamelModel):
    id: int
    product_id: int
    quantity: int
    product: Optional[ProductSummary] = None


class CartOut(CamelModel):
    id: int
    items: List[CartItemOut] = []


class WishlistAdd(CamelModel):
    product_id: int = Field(..., gt=0)


class WishlistItemOut(CamelModel):
    id: int
    product_id: int
    created_at: Optional[datetime] = None
    product: Optional[ProductSummary] = None


class WishlistOut(CamelModel):
    id: int
    items: List[WishlistItemOut] = []


# -----------------------------
# Orders
# -----------------------------

class OrderItemCreate(CamelModel):
    product_id: int = Field(..., gt=0, strict=True, description="Product ID")
    quantity: int = Field(..., gt=0, strict=True, description="Product quantity")


class OrderCreate(CamelModel):
    items: List[OrderItemCreate] = Field(..., min_length=1, description="List of order items")
    shipping_address: Optional[Dict[str, Any]] = None


class OrderStatusUpdate(CamelModel):
    # validated against the status vocabulary by the order lifecycle
    status: Optional[Any] = None


class OrderProductSummary(CamelModel):
    id: int
    name: str
    slug: str
    images: List[str] = []


class OrderItemOut(CamelModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    product: Optional[OrderProductSummary] = None


class OrderOut(CamelModel):
    id: int
    buyer_id: int
    total: Decimal
    status: OrderStatus
    shipping_address: Optional[Dict[str, Any]] = None
    payment_intent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = []


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    page: int
    limit: int


class CheckoutOut(CamelModel):
    session_id: str
    url: str
    order_id: int
