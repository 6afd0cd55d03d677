"""Checkout: order + reservation, invoice at the provider, compensation when the provider fails."""

import httpx
import pytest

from services.order_service.models import OrderStatus, PaymentProvider, PaymentStatus
from services.order_service.schemas import CartLine
from services.order_service.service import OrderService
from services.payment_service.gateways import CinetPayGateway, GatewayRegistry
from services.payment_service.reconciliation import ReconciliationEngine
from services.payment_service.schemas import CheckoutRequest
from services.payment_service.service import PaymentService
from shared.errors import InsufficientStock, ProviderCommunicationError, UnsupportedProvider, ValidationError


def _request(product_id, quantity=1):
    return CheckoutRequest(items=[CartLine(product_id=product_id, quantity=quantity)])


@pytest.fixture
def service(gateways, dispatcher):
    return PaymentService(gateways, ReconciliationEngine(dispatcher))


class TestStartCheckout:
    async def test_success_stores_provider_reference(
        self, session, service, gateway, customer, seed_product, stock_of, load_order
    ):
        pid = await seed_product(stock=4)

        result = await service.start_checkout(session, customer, "fake", _request(pid, 2))

        order = await load_order(result.order.id)
        assert order.payment_provider is PaymentProvider.FAKE
        assert order.payment_provider_ref == result.invoice.provider_ref
        assert order.payment_checkout_url == result.invoice.checkout_url
        assert order.status is OrderStatus.PENDING
        assert order.payment_status is PaymentStatus.PENDING
        assert await stock_of(pid) == 2
        assert gateway.calls[0] == {
            "method": "create_invoice",
            "order_id": order.id,
            "amount": order.total_minor,
        }

    async def test_provider_failure_rolls_back_reservation(
        self, session, service, gateway, customer, seed_product, stock_of
    ):
        pid = await seed_product(stock=3)
        gateway.configure(should_succeed=False, failure_reason="CinetPay down")

        with pytest.raises(ProviderCommunicationError):
            await service.start_checkout(session, customer, "fake", _request(pid, 2))

        assert await stock_of(pid) == 3
        [order] = await OrderService.list_orders_for(session, customer)
        assert order.status is OrderStatus.CANCELLED
        assert order.payment_status is PaymentStatus.FAILED
        assert order.payment_provider_ref is None

    async def test_stock_failure_never_reaches_provider(
        self, session, service, gateway, customer, seed_product
    ):
        pid = await seed_product(stock=1)

        with pytest.raises(InsufficientStock):
            await service.start_checkout(session, customer, "fake", _request(pid, 2))

        assert gateway.calls == []

    async def test_unknown_provider(self, session, service, customer, seed_product):
        pid = await seed_product()
        with pytest.raises(UnsupportedProvider):
            await service.start_checkout(session, customer, "paypal", _request(pid))

    async def test_unconfigured_provider(self, session, service, customer, seed_product):
        pid = await seed_product()
        with pytest.raises(UnsupportedProvider):
            await service.start_checkout(session, customer, "cinetpay", _request(pid))

    async def test_amount_rejected_before_reservation(
        self, session, dispatcher, customer, seed_product, stock_of
    ):
        def handler(request):
            raise AssertionError("the provider must not be called")

        cinetpay = CinetPayGateway(
            apikey="key",
            site_id="site",
            secret_key="secret",
            app_url="https://api.example.test",
            transport=httpx.MockTransport(handler),
        )
        service = PaymentService(GatewayRegistry([cinetpay]), ReconciliationEngine(dispatcher))
        # 1 003 XOF is not a multiple of 5
        pid = await seed_product(price_minor=100_300, stock=2)

        with pytest.raises(ValidationError) as exc_info:
            await service.start_checkout(session, customer, "cinetpay", _request(pid))

        assert exc_info.value.code == "INVALID_AMOUNT"
        assert await stock_of(pid) == 2
        assert await OrderService.list_orders_for(session, customer) == []
