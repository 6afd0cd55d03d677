from datetime import datetime
from typing import Optional

from services.order_service.domain import OrderProjection
from services.order_service.models import ShippingStatus
from services.order_service.schemas import CamelModel, OrderCreate


class CheckoutRequest(OrderCreate):
    """Same payload as a plain order; the provider comes from the path."""


class CheckoutResponse(CamelModel):
    order_id: str
    provider: str
    transaction_id: str
    payment_url: str
    total_minor: int


class PaymentStatusResponse(CamelModel):
    # status / payment_status are plain strings: an unknown reference reports "UNKNOWN"
    order_id: Optional[str] = None
    status: str
    payment_status: str
    shipping_status: Optional[ShippingStatus] = None
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None

    @classmethod
    def unknown(cls) -> "PaymentStatusResponse":
        return cls(status="UNKNOWN", payment_status="UNKNOWN")

    @classmethod
    def from_projection(cls, projection: OrderProjection) -> "PaymentStatusResponse":
        return cls(
            order_id=projection.order_id,
            status=projection.status.value,
            payment_status=projection.payment_status.value,
            shipping_status=projection.shipping_status,
            payment_method=projection.payment_method,
            paid_at=projection.paid_at,
        )


class NotificationAck(CamelModel):
    ok: bool = True
