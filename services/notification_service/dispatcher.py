"""
Best-effort customer notifications.

State transitions hand their notifications to ``dispatch_after_commit`` once
the database transaction has committed. Delivery is attempted exactly once;
a failure is logged and counted, never raised, so a broken mail provider
cannot turn a confirmed payment into a failed request.
"""
from abc import ABC, abstractmethod
from typing import Iterable

import httpx
import structlog

from shared.observability import ecomm_notification_failures_total
from services.order_service.models import ShippingStatus
from .messages import Notification, OrderPaidNotification, ShippingStatusNotification

logger = structlog.get_logger(__name__)

RESEND_ENDPOINT = "https://api.resend.com/emails"

_SHIPPING_LABELS = {
    ShippingStatus.PREPARATION: "being prepared",
    ShippingStatus.SHIPPED: "on its way",
    ShippingStatus.DELIVERED: "delivered",
    ShippingStatus.RECEIVED: "marked as received",
}


def format_amount(amount_minor: int) -> str:
    major, minor = divmod(amount_minor, 100)
    return f"{major:,}.{minor:02d}".replace(",", " ")


def render(notification: Notification, shop_url: str) -> tuple[str, str]:
    """Return (subject, plain-text body)."""
    order_url = f"{shop_url}/compte/commandes/{notification.order_id}"
    greeting = f"Hello {notification.customer_name}," if notification.customer_name else "Hello,"

    if isinstance(notification, OrderPaidNotification):
        lines = [
            f"- {item.product_name_snapshot} x{item.quantity}: {format_amount(item.line_total_minor)}"
            for item in notification.items
        ]
        body = "\n".join(
            [
                greeting,
                "",
                f"We received your payment for order {notification.order_id}.",
                "",
                *lines,
                "",
                f"Total: {format_amount(notification.total_minor)}",
                *([f"Shipping to: {notification.shipping_address}"] if notification.shipping_address else []),
                "",
                f"Follow your order: {order_url}",
            ]
        )
        return f"Payment confirmed - order {notification.order_id}", body

    if isinstance(notification, ShippingStatusNotification):
        label = _SHIPPING_LABELS[notification.shipping_status]
        body = "\n".join(
            [
                greeting,
                "",
                f"Your order {notification.order_id} is {label}.",
                "",
                f"Follow your order: {order_url}",
            ]
        )
        return f"Order {notification.order_id}: {label}", body

    raise TypeError(f"Unsupported notification {type(notification).__name__}")


class NotificationDispatcher(ABC):
    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver one notification; may raise, callers isolate failures."""
        ...


class LoggingDispatcher(NotificationDispatcher):
    """Used when no mail provider is configured: the notification only shows up in the logs."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "notification_skipped_no_provider",
            kind=notification.kind,
            order_id=notification.order_id,
            to=notification.email,
        )


class ResendEmailDispatcher(NotificationDispatcher):
    def __init__(
        self,
        api_key: str,
        sender: str,
        shop_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.shop_url = shop_url
        self.timeout = timeout
        self._transport = transport

    async def send(self, notification: Notification) -> None:
        subject, text = render(notification, self.shop_url)
        payload = {"from": self.sender, "to": [notification.email], "subject": subject, "text": text}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(
                RESEND_ENDPOINT,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
        logger.info("notification_sent", kind=notification.kind, order_id=notification.order_id)


def build_dispatcher(settings) -> NotificationDispatcher:
    if settings.resend_api_key and settings.resend_from:
        return ResendEmailDispatcher(
            api_key=settings.resend_api_key,
            sender=settings.resend_from,
            shop_url=settings.shop_url,
        )
    return LoggingDispatcher()


async def dispatch_after_commit(
    dispatcher: NotificationDispatcher, notifications: Iterable[Notification]
) -> None:
    for notification in notifications:
        try:
            await dispatcher.send(notification)
        except Exception:
            # A failing notification MUST NOT fail the transition that triggered it
            ecomm_notification_failures_total.labels(kind=notification.kind).inc()
            logger.exception(
                "notification_failed",
                kind=notification.kind,
                order_id=notification.order_id,
            )
