from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from services.notification_service import messages
from services.notification_service.dispatcher import NotificationDispatcher, dispatch_after_commit
from services.product_service.service import CatalogReader
from shared.errors import ConcurrentUpdate, OrderNotFound, ValidationError
from shared.observability import ecomm_stock_recredit_total
from .lifecycle import AdminUpdate, plan_admin_update, transition_values
from .models import Order, OrderStatus, ShippingStatus, utcnow
from .repository import OrderRepository, to_state
from .schemas import AdminOrderUpdate

logger = structlog.get_logger(__name__)

# Re-reads allowed when a concurrent writer wins the compare-and-set
MAX_ATTEMPTS = 3


def parse_admin_update(data: AdminOrderUpdate) -> AdminUpdate:
    status = shipping_status = None

    if data.status is not None:
        try:
            status = OrderStatus(data.status.strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown order status {data.status!r}", code="INVALID_STATUS") from None

    if data.shipping_status is not None:
        try:
            shipping_status = ShippingStatus(data.shipping_status.strip().upper())
        except ValueError:
            raise ValidationError(
                f"Unknown shipping status {data.shipping_status!r}", code="INVALID_SHIPPING_STATUS"
            ) from None

    return AdminUpdate(status=status, shipping_status=shipping_status)


class OrderAdminService:
    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def update_order(self, db: AsyncSession, order_id: str, data: AdminOrderUpdate) -> Order:
        """Apply an administrator's partial update in one transaction, then notify."""
        provided = data.model_fields_set
        update = parse_admin_update(data)
        touches_text = "notes" in provided or "shipping_address" in provided
        if update.status is None and update.shipping_status is None and not touches_text:
            raise ValidationError("No update provided", code="EMPTY_UPDATE")

        pending_notifications = []
        async with db.begin():
            for _ in range(MAX_ATTEMPTS):
                order = await OrderRepository.get_for_update(db, order_id)
                if order is None:
                    raise OrderNotFound(order_id)

                state = to_state(order)
                # Raises PaymentNotConfirmed / InvalidTransition before anything is written
                transition = plan_admin_update(state, update)

                now = utcnow()
                values = transition_values(state, transition, now)
                if "notes" in provided:
                    values["notes"] = data.notes
                if "shipping_address" in provided:
                    values["shipping_address"] = data.shipping_address
                values["updated_at"] = now

                if await OrderRepository.compare_and_set(db, state, values):
                    break
                logger.info("admin_order_update_conflict", order_id=order_id)
            else:
                raise ConcurrentUpdate(f"Order {order_id} kept changing; retry the update")

            if transition.recredit_stock:
                await CatalogReader.recredit_items(db, state.items, reason="admin_cancel")
            await db.refresh(order)

            if transition.notify_paid:
                pending_notifications.append(messages.order_paid(order, to_state(order)))
            if transition.notify_shipping:
                pending_notifications.append(messages.shipping_update(order))

        if transition.recredit_stock:
            ecomm_stock_recredit_total.labels(reason="admin_cancel").inc()
        logger.info(
            "admin_order_updated",
            order_id=order.id,
            from_status=state.status.value,
            status=order.status.value,
            payment_status=order.payment_status.value,
            shipping_status=order.shipping_status.value,
            recredited=transition.recredit_stock,
        )

        await dispatch_after_commit(self.dispatcher, pending_notifications)
        return order
