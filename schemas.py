"""
Database Schemas for the shop admin backend

Each Pydantic model corresponds to one MongoDB collection. Field names are the
camelCase names used on the wire and in the stored documents.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from config import ORDER_STATUS_PROCESSING, ORDER_STATUSES


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr
    password: str = Field(..., description="Hashed password")
    phone: Optional[str] = None
    role: Literal["admin", "user"] = "user"


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    image: Optional[str] = None
    countInStock: int = Field(0, ge=0)
    categoryName: str = Field(..., min_length=1, description="Category name, copied")
    brandName: str = Field(..., min_length=1, description="Brand name, copied")


class Brand(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class Category(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class PaymentMethod(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class OrderItem(BaseModel):
    """Snapshot of a product at order time."""
    product: str
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    qty: int = Field(..., ge=1)


def check_order_status(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in ORDER_STATUSES:
        raise ValueError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    return value


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    user: str
    orderItems: List[OrderItem] = Field(..., min_length=1)
    totalPrice: Optional[float] = Field(None, ge=0)
    paymentMethod: str = Field(..., min_length=1)
    status: str = ORDER_STATUS_PROCESSING

    @field_validator("status")
    @classmethod
    def status_known(cls, value):
        return check_order_status(value)


class Shipping(BaseModel):
    """
    Shipping collection schema
    Collection name: "shipping"
    """
    order: str
    receiverName: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None
    shippingStatus: Literal["Pending", "Shipping", "Delivered"] = "Pending"
