import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from shared.config.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class ShippingStatus(str, enum.Enum):
    PREPARATION = "PREPARATION"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RECEIVED = "RECEIVED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentProvider(str, enum.Enum):
    CINETPAY = "CINETPAY"
    PAYDUNYA = "PAYDUNYA"
    FAKE = "FAKE"


def _enum_column(enum_cls, name: str, **kwargs):
    return Column(Enum(enum_cls, name=name, native_enum=False, length=32), **kwargs)


def _new_order_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_minor >= 0", name="ck_orders_total_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=_new_order_id)
    email = Column(String(255), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    total_minor = Column(Integer, nullable=False)

    status = _enum_column(OrderStatus, "order_status", nullable=False, default=OrderStatus.PENDING)
    shipping_status = _enum_column(
        ShippingStatus, "shipping_status", nullable=False, default=ShippingStatus.PREPARATION
    )
    payment_status = _enum_column(
        PaymentStatus, "payment_status", nullable=False, default=PaymentStatus.PENDING
    )

    payment_provider = _enum_column(PaymentProvider, "payment_provider", nullable=True)
    # Provider-side invoice / transaction id; the join key for asynchronous payment events
    payment_provider_ref = Column(String(255), nullable=True, unique=True, index=True)
    payment_method = Column(String(64), nullable=True)
    payment_checkout_url = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    shipping_address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    """Snapshot of a cart line at order time; never updated afterwards."""

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_minor = Column(Integer, nullable=False)
    line_total_minor = Column(Integer, nullable=False)
    product_name_snapshot = Column(String(255), nullable=False)
    product_slug_snapshot = Column(String(255), nullable=False)

    order = relationship("Order", back_populates="items")
