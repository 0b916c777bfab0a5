"""
Database Schemas

Pydantic models for the documents the storefront reads and writes, and for the
forms it accepts. Python attributes are snake_case; stored documents and JSON
payloads use camelCase (e.g. ``total_amount`` <-> ``totalAmount``).

Collections:
- "users"    -> UserProfile (keyed by identity id)
- "products" -> Product
- "orders"   -> Order
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Stored form of the model, without the backend-assigned id."""
        return self.model_dump(by_alias=True, exclude={"id"}, mode="python")


class UserProfile(Document):
    """
    Application-level user record
    Collection: "users" (document id == identity id)
    """
    id: str = Field(..., description="Identity id issued by the identity provider")
    name: str = ""
    username: str = ""
    email: str = ""
    age: int = Field(0, ge=0)
    address: str = ""
    city: str = ""
    state: str = ""
    zipcode: str = ""

    def to_document(self) -> dict:
        data = super().to_document()
        data["displayName"] = self.name
        return data

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "UserProfile":
        return cls(
            id=doc_id,
            name=data.get("name") or data.get("displayName") or "",
            username=data.get("username") or "",
            email=data.get("email") or "",
            age=int(data.get("age") or 0),
            address=data.get("address") or "",
            city=data.get("city") or "",
            state=data.get("state") or "",
            zipcode=data.get("zipcode") or "",
        )


class Rating(Document):
    rate: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Product(Document):
    """
    Product catalog schema
    Collection: "products"
    """
    id: Optional[str] = None
    title: str = Field(..., description="Product title")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="Price in dollars")
    stock: int = Field(0, ge=0, description="Units in stock")
    category: str = Field(..., description="Product category")
    image: str = Field("", description="Image URL")
    rating: Rating = Field(default_factory=Rating)


class ProductCreate(Document):
    """Administrative product form. The image URL is checked by products.add_product."""
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    rating: Rating = Field(default_factory=Rating)


class CartItem(Document):
    product_id: str
    title: str
    price: float = Field(..., ge=0, description="Unit price snapshot")
    image: str = ""
    quantity: int = Field(1, ge=1)


class ShippingAddress(Document):
    address: str
    city: str
    state: str
    zip: str


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(Document):
    """
    Completed checkout
    Collection: "orders"

    ``user_id`` is None for guest checkouts.
    """
    id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: str
    user_email: str
    shipping_address: ShippingAddress
    items: List[CartItem]
    total_amount: float
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime
    updated_at: datetime

    def to_document(self) -> dict:
        data = super().to_document()
        data["status"] = self.status.value
        return data


class OrderSummary(Document):
    order_id: str
    date: datetime
    total_amount: float
    status: OrderStatus
    item_count: int


class CheckoutForm(Document):
    name: str = Field(..., min_length=1)
    email: EmailStr
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., min_length=1)

    @field_validator("name", "address", "city", "state", "zip")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("field is required")
        return value.strip()


class SignupRequest(Document):
    email: EmailStr
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    age: int = Field(..., ge=0)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zipcode: str = Field(..., min_length=1)


class LoginRequest(Document):
    email: EmailStr
    password: str = Field(..., min_length=1)


class CartView(Document):
    items: List[CartItem]
    item_count: int
    total: float


class CartAddRequest(Document):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartQuantityRequest(Document):
    quantity: int


class AuthState(Document):
    user: Optional[UserProfile] = None
    loading: bool = True
