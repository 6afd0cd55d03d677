from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic.alias_generators import to_camel

from .models import OrderStatus, PaymentProvider, PaymentStatus, ShippingStatus


class CamelModel(BaseModel):
    """API payloads use camelCase on the wire, snake_case in Python."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class CartLine(CamelModel):
    # Shop front-ends have sent the product id under several names over time
    product_id: int = Field(validation_alias=AliasChoices("productId", "product_id", "id"))
    quantity: int
    # Any client-side price (unitPrice, priceMinor, ...) is ignored: prices come from the catalog.


class OrderCreate(CamelModel):
    items: List[CartLine] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "cartItems", "lines"),
    )
    customer_name: Optional[str] = None
    shipping_address: Optional[str] = None
    notes: Optional[str] = None


class OrderItemResponse(CamelModel):
    id: int
    product_id: int
    quantity: int
    unit_price_minor: int
    line_total_minor: int
    product_name_snapshot: str
    product_slug_snapshot: str


class OrderResponse(CamelModel):
    id: str
    created_at: datetime
    email: str
    customer_name: Optional[str]
    total_minor: int
    status: OrderStatus
    shipping_status: ShippingStatus
    payment_status: PaymentStatus
    payment_provider: Optional[PaymentProvider]
    payment_method: Optional[str]
    paid_at: Optional[datetime]
    shipping_address: Optional[str]
    notes: Optional[str]
    items: List[OrderItemResponse] = []


class AdminOrderUpdate(CamelModel):
    # Validated by the admin service so unknown values map to specific error codes
    status: Optional[str] = None
    shipping_status: Optional[str] = None
    notes: Optional[str] = None
    shipping_address: Optional[str] = None
