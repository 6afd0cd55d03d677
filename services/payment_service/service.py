from dataclasses import dataclass
from typing import Mapping

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from services.order_service.domain import OrderProjection
from services.order_service.models import Order, OrderStatus, PaymentStatus, PaymentProvider, utcnow
from services.order_service.repository import OrderRepository, to_projection
from services.order_service.service import OrderService, customer_from_request
from services.product_service.service import CatalogReader
from shared.errors import Forbidden, ProviderCommunicationError, SignatureInvalid, UnsupportedProvider
from shared.observability import (
    ecomm_checkout_compensation_total,
    ecomm_checkout_duration_seconds,
    ecomm_stock_recredit_total,
)
from shared.security import Principal
from .gateways import GatewayRegistry, Invoice
from .reconciliation import ReconciliationEngine
from .schemas import CheckoutRequest

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    invoice: Invoice


class PaymentService:
    """Checkout plus the two inbound reconciliation channels (provider webhook, browser poll)."""

    def __init__(self, gateways: GatewayRegistry, engine: ReconciliationEngine):
        self.gateways = gateways
        self.engine = engine

    async def start_checkout(
        self, db: AsyncSession, principal: Principal, provider: str, data: CheckoutRequest
    ) -> CheckoutResult:
        """Price, reserve, persist, then open the payment at the provider.

        The order and its stock reservation are committed before the provider
        is called. If the provider call fails, a compensating transaction gives
        the stock back and closes the order before the error is surfaced.
        """
        gateway = self.gateways.get(provider)

        with ecomm_checkout_duration_seconds.time():
            cart = await OrderService.price_cart(db, data.items)
            gateway.validate_amount(cart.total_minor)
            order = await OrderService.place_order(
                db, cart, customer_from_request(principal, data), provider=gateway.provider
            )

            try:
                invoice = await gateway.create_invoice(order)
            except Exception as exc:
                await self._compensate(db, order.id, gateway.provider)
                if isinstance(exc, ProviderCommunicationError):
                    raise
                raise ProviderCommunicationError(
                    f"Could not start payment with {gateway.provider.value}"
                ) from exc

            async with db.begin():
                order = await OrderRepository.get_for_update(db, order.id)
                OrderRepository.attach_invoice(order, invoice.provider_ref, invoice.checkout_url)
                order.updated_at = utcnow()

        logger.info(
            "checkout_started",
            order_id=order.id,
            provider=gateway.provider.value,
            provider_ref=invoice.provider_ref,
            total_minor=order.total_minor,
        )
        return CheckoutResult(order=order, invoice=invoice)

    async def _compensate(self, db: AsyncSession, order_id: str, provider: PaymentProvider) -> None:
        async with db.begin():
            order = await OrderRepository.get_for_update(db, order_id)
            if order is None or order.status is OrderStatus.CANCELLED:
                return
            await CatalogReader.recredit_items(db, order.items, reason="checkout_failed")
            order.status = OrderStatus.CANCELLED
            order.payment_status = PaymentStatus.FAILED
            order.updated_at = utcnow()

        ecomm_checkout_compensation_total.labels(provider=provider.value.lower()).inc()
        ecomm_stock_recredit_total.labels(reason="checkout_failed").inc()
        logger.error("checkout_compensated", order_id=order_id, provider=provider.value)

    async def handle_notification(
        self,
        db: AsyncSession,
        provider: str,
        fields: Mapping[str, str],
        headers: Mapping[str, str],
    ) -> OrderProjection | None:
        """Authenticate a provider notification, re-check the status at the source and apply it.

        The notification body is never trusted for the status itself. A failed
        re-check is logged and swallowed: the provider will retry and the
        customer's status poll re-checks independently.
        """
        try:
            gateway = self.gateways.get(provider)
        except UnsupportedProvider:
            # Only a signature failure is answered with non-200
            logger.warning("payment_notification_unknown_provider", provider=provider)
            return None

        if not gateway.verify_notification(fields, headers):
            logger.warning("payment_notification_rejected", provider=gateway.provider.value)
            raise SignatureInvalid("Notification signature does not match")

        provider_ref = gateway.notification_reference(fields)
        if not provider_ref:
            logger.warning("payment_notification_without_reference", provider=gateway.provider.value)
            return None

        try:
            report = await gateway.check_status(provider_ref)
        except ProviderCommunicationError as exc:
            logger.error(
                "payment_notification_recheck_failed",
                provider=gateway.provider.value,
                provider_ref=provider_ref,
                error=exc.message,
            )
            return None

        return await self.engine.apply_status_report(db, provider_ref, report, channel="webhook")

    async def poll_status(
        self, db: AsyncSession, principal: Principal, provider_ref: str
    ) -> OrderProjection | None:
        """Status for the customer's return page; re-checks the provider while payment is pending."""
        async with db.begin():
            order = await OrderRepository.find_by_provider_ref(db, provider_ref)
        if order is None:
            return None
        if order.email != principal.email and not principal.is_admin:
            raise Forbidden("This order belongs to another customer")

        if order.payment_status is not PaymentStatus.PENDING or order.payment_provider not in self.gateways:
            return to_projection(order)

        gateway = self.gateways.get(order.payment_provider)
        try:
            report = await gateway.check_status(provider_ref)
        except ProviderCommunicationError as exc:
            logger.warning(
                "payment_status_recheck_failed",
                provider=gateway.provider.value,
                provider_ref=provider_ref,
                error=exc.message,
            )
            return to_projection(order)

        projection = await self.engine.apply_status_report(db, provider_ref, report, channel="poll")
        return projection or to_projection(order)
