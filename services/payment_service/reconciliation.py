"""
Payment reconciliation.

The provider webhook, the browser status poll and (indirectly) the admin
confirm all end up here with "provider reference X is now in state Y".
Whatever the channel, and however many times the same event arrives, the
order ends up in the same state with stock recredited at most once and the
payment email sent at most once.
"""
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from services.notification_service import messages
from services.notification_service.dispatcher import NotificationDispatcher, dispatch_after_commit
from services.order_service.domain import OrderProjection
from services.order_service.lifecycle import PaymentEvent, plan_payment_event, transition_values
from services.order_service.models import utcnow
from services.order_service.repository import OrderRepository, to_projection, to_state
from services.product_service.service import CatalogReader
from shared.errors import ConcurrentUpdate
from shared.observability import ecomm_payment_events_total, ecomm_stock_recredit_total
from .gateways import ProviderStatus, StatusReport

logger = structlog.get_logger(__name__)


def map_provider_status(status: ProviderStatus) -> PaymentEvent:
    if status is ProviderStatus.ACCEPTED:
        return PaymentEvent.PAID
    if status is ProviderStatus.REFUSED:
        return PaymentEvent.FAILED
    if status is ProviderStatus.CANCELLED:
        return PaymentEvent.CANCELLED
    if status is ProviderStatus.WAITING:
        return PaymentEvent.WAITING
    if status is ProviderStatus.UNKNOWN:
        return PaymentEvent.PENDING
    raise ValueError(f"Unhandled provider status {status!r}")


# Re-reads allowed when a concurrent writer wins the compare-and-set
MAX_ATTEMPTS = 3


class ReconciliationEngine:
    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def apply_payment_event(
        self,
        db: AsyncSession,
        provider_ref: str,
        event: PaymentEvent,
        payment_method: str | None = None,
        channel: str = "webhook",
    ) -> OrderProjection | None:
        """Apply one payment event to the order owning ``provider_ref``.

        Returns ``None`` when no order carries that reference. The write is a
        compare-and-set on the statuses the decision was made from, so when two
        channels deliver the same event at once only one of them changes the
        row, recredits stock and queues the email; the other re-reads and finds
        nothing left to do.
        """
        pending_notifications = []
        transition = None
        changed = False

        async with db.begin():
            for _ in range(MAX_ATTEMPTS):
                order = await OrderRepository.get_by_provider_ref_for_update(db, provider_ref)
                if order is None:
                    ecomm_payment_events_total.labels(
                        channel=channel, event=event.value, outcome="unknown_order"
                    ).inc()
                    logger.warning("payment_event_unknown_reference", provider_ref=provider_ref, channel=channel)
                    return None

                state = to_state(order)
                transition = plan_payment_event(state, event)
                if transition is None:
                    break

                now = utcnow()
                values = transition_values(state, transition, now)
                if payment_method and order.payment_method != payment_method:
                    values["payment_method"] = payment_method
                if not values:
                    break
                values["updated_at"] = now

                if not await OrderRepository.compare_and_set(db, state, values):
                    logger.info("payment_event_conflict", provider_ref=provider_ref, channel=channel)
                    continue

                changed = True
                if transition.recredit_stock:
                    await CatalogReader.recredit_items(db, state.items, reason="payment_failed")
                await db.refresh(order)
                if transition.notify_paid:
                    pending_notifications.append(messages.order_paid(order, to_state(order)))
                break
            else:
                raise ConcurrentUpdate(f"Order for {provider_ref} kept changing; retry the event")

            projection = to_projection(order, changed=changed)

        outcome = "applied" if changed else "noop"
        ecomm_payment_events_total.labels(channel=channel, event=event.value, outcome=outcome).inc()
        if changed and transition.recredit_stock:
            ecomm_stock_recredit_total.labels(reason="payment_failed").inc()
        logger.info(
            "payment_event_applied",
            order_id=projection.order_id,
            provider_ref=provider_ref,
            channel=channel,
            payment_event=event.value,
            outcome=outcome,
            from_status=state.status.value,
            status=projection.status.value,
            payment_status=projection.payment_status.value,
        )

        await dispatch_after_commit(self.dispatcher, pending_notifications)
        return projection

    async def apply_status_report(
        self, db: AsyncSession, provider_ref: str, report: StatusReport, channel: str
    ) -> OrderProjection | None:
        if report.status is ProviderStatus.UNKNOWN:
            logger.warning(
                "payment_status_unrecognized",
                provider_ref=provider_ref,
                channel=channel,
                provider_status=report.raw_status,
            )
        return await self.apply_payment_event(
            db,
            provider_ref,
            map_provider_status(report.status),
            payment_method=report.payment_method,
            channel=channel,
        )
