"""Immutable value records the order core reasons about.

The repository maps ORM rows into these at its boundary; transition logic
never looks at a row or an untyped mapping.
"""
from dataclasses import dataclass
from datetime import datetime

from .models import OrderStatus, PaymentStatus, ShippingStatus


@dataclass(frozen=True)
class OrderItemRecord:
    product_id: int
    quantity: int
    unit_price_minor: int
    line_total_minor: int
    product_name_snapshot: str
    product_slug_snapshot: str

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError("quantity must be positive")
        if self.unit_price_minor < 0:
            raise ValueError("unit price must not be negative")
        if self.line_total_minor != self.quantity * self.unit_price_minor:
            raise ValueError("line total must equal quantity x unit price")


@dataclass(frozen=True)
class OrderState:
    id: str
    email: str
    status: OrderStatus
    shipping_status: ShippingStatus
    payment_status: PaymentStatus
    total_minor: int
    items: tuple[OrderItemRecord, ...] = ()
    paid_at: datetime | None = None

    def __post_init__(self):
        if self.total_minor != sum(item.line_total_minor for item in self.items):
            raise ValueError(f"Order {self.id} total does not match its lines")

    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID


@dataclass(frozen=True)
class PricedLine:
    """A cart line priced from the catalog, ready to be reserved."""

    product_id: int
    quantity: int
    unit_price_minor: int
    product_name: str
    product_slug: str

    @property
    def line_total_minor(self) -> int:
        return self.quantity * self.unit_price_minor


@dataclass(frozen=True)
class PricedCart:
    lines: tuple[PricedLine, ...]

    @property
    def total_minor(self) -> int:
        return sum(line.line_total_minor for line in self.lines)


@dataclass(frozen=True)
class CustomerInfo:
    email: str
    customer_name: str | None = None
    shipping_address: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class OrderProjection:
    """What every reconciliation channel reports back after applying an event."""

    order_id: str
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_status: ShippingStatus
    payment_method: str | None
    paid_at: datetime | None
    changed: bool = False
