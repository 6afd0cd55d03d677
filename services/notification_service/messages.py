from dataclasses import dataclass

from services.order_service.domain import OrderItemRecord, OrderState
from services.order_service.models import Order, ShippingStatus


@dataclass(frozen=True)
class OrderPaidNotification:
    kind = "order_paid"

    order_id: str
    email: str
    customer_name: str | None
    total_minor: int
    items: tuple[OrderItemRecord, ...]
    shipping_address: str | None = None


@dataclass(frozen=True)
class ShippingStatusNotification:
    kind = "shipping_update"

    order_id: str
    email: str
    customer_name: str | None
    shipping_status: ShippingStatus


Notification = OrderPaidNotification | ShippingStatusNotification


def order_paid(order: Order, state: OrderState) -> OrderPaidNotification:
    return OrderPaidNotification(
        order_id=state.id,
        email=state.email,
        customer_name=order.customer_name,
        total_minor=state.total_minor,
        items=state.items,
        shipping_address=order.shipping_address,
    )


def shipping_update(order: Order) -> ShippingStatusNotification:
    return ShippingStatusNotification(
        order_id=order.id,
        email=order.email,
        customer_name=order.customer_name,
        shipping_status=order.shipping_status,
    )
