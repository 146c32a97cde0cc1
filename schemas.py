"""
Database Schemas for the shop API

Each document model maps to a MongoDB collection named after the snake_cased
class name (e.g. ProductVariant -> "product_variant"). Prices are integers in
minor currency units (cents). Request models reject unknown fields.

Collections:
- user
- category
- product
- product_variant
- product_image
- cart
- cart_item
- order (order items are embedded snapshots)
- payment
"""
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class UpdateModel(RequestModel):
    """Partial update. Only fields present in the body are applied; an explicit
    null clears a field listed in ``nullable`` and is ignored elsewhere."""
    nullable: ClassVar[FrozenSet[str]] = frozenset()

    def changes(self) -> Dict[str, Any]:
        return {
            k: v for k, v in self.model_dump(exclude_unset=True).items()
            if v is not None or k in self.nullable
        }


# ------------ Documents ------------

class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    email: EmailStr = Field(..., description="Unique login e-mail")
    password_hash: str = Field(..., description="BCrypt password hash")
    role: Role = Field(Role.USER, description="USER or ADMIN")


class Category(BaseModel):
    name: str
    slug: str = Field(..., description="URL-safe unique identifier")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str
    slug: str = Field(..., description="URL-safe unique identifier")
    description: Optional[str] = None
    price: int = Field(..., ge=0, description="Price in cents")
    is_active: bool = Field(True, description="Inactive products are hidden from listings")
    category_ids: List[str] = Field(default_factory=list)


class ProductVariant(BaseModel):
    product_id: str
    color: str
    size: str
    sku: str = Field(..., description="Stock keeping unit, globally unique")
    stock: int = Field(0, ge=0, description="Units available")


class ProductImage(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    url: str
    alt: Optional[str] = None
    position: int = 0


class Cart(BaseModel):
    user_id: str


class CartItem(BaseModel):
    cart_id: str
    variant_id: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    """Frozen copy of a cart line taken when the order is placed."""
    product_name: str
    price: int = Field(..., ge=0)
    color: str
    size: str
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    user_id: str
    items: List[OrderItem]
    total_amount: int = Field(..., ge=0, description="Sum of price * quantity in cents")
    status: OrderStatus = OrderStatus.PENDING


class Payment(BaseModel):
    order_id: str
    stripe_payment_intent_id: str
    amount: int = Field(..., ge=0)
    status: PaymentStatus = PaymentStatus.PENDING


# ------------ Requests ------------

class RegisterRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Optional[Role] = None


class LoginRequest(RequestModel):
    email: EmailStr
    password: str


class CategoryCreate(RequestModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)


class CategoryUpdate(UpdateModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1)


class ProductCreate(RequestModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    is_active: bool = True
    category_ids: List[str] = Field(default_factory=list)


class ProductUpdate(UpdateModel):
    nullable: ClassVar[FrozenSet[str]] = frozenset({"description"})

    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    category_ids: Optional[List[str]] = None


class VariantCreate(RequestModel):
    color: str
    size: str
    sku: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)


class VariantUpdate(UpdateModel):
    color: Optional[str] = None
    size: Optional[str] = None
    sku: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)


class ImageCreate(RequestModel):
    url: str = Field(..., min_length=1)
    alt: Optional[str] = None
    position: int = Field(0, ge=0)
    variant_id: Optional[str] = None


class AddToCartRequest(RequestModel):
    variant_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartItemRequest(RequestModel):
    quantity: int = Field(..., ge=1)


class CreatePaymentIntentRequest(RequestModel):
    order_id: str
