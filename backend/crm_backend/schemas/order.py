from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderItem(BaseModel):
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    discount: float = 0


class ShippingAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class OrderCreate(BaseModel):
    order_id: Optional[str] = Field(None, max_length=64)
    customer_id: int
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: Optional[float] = None
    tax: float = 0
    shipping: float = 0
    total: float = Field(..., gt=0)
    status: OrderStatus = OrderStatus.PENDING
    payment_method: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    notes: Optional[str] = None


class OrderUpdate(BaseModel):
    """Editable order fields; identity and ownership fields are not listed."""

    items: Optional[List[OrderItem]] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    shipping: Optional[float] = None
    status: Optional[OrderStatus] = None
    payment_method: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    notes: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: str
    customer_id: int
    items: List[OrderItem]
    subtotal: float
    tax: float
    shipping: float
    total: float
    status: OrderStatus
    payment_method: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
