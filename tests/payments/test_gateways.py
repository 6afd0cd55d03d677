"""Provider adapters against stubbed HTTP transports."""

import hashlib
import hmac
import json
from types import SimpleNamespace

import httpx
import pytest

from services.order_service.models import PaymentProvider
from services.payment_service.gateways import (
    CinetPayGateway,
    FakeGateway,
    GatewayRegistry,
    PayDunyaGateway,
    ProviderStatus,
    build_gateways,
)
from services.payment_service.gateways.paydunya import LIVE_BASE_URL, SANDBOX_BASE_URL
from shared.config.settings import Settings
from shared.errors import ProviderCommunicationError, UnsupportedProvider, ValidationError

ORDER_ID = "3f2a9c1e-0b7d-4e55-9a61-2c8e4f1d7b90"


def _order(total_minor=500_000):
    item = SimpleNamespace(
        product_name_snapshot="Wax fabric 6 yards",
        quantity=2,
        unit_price_minor=total_minor // 2,
        line_total_minor=total_minor,
    )
    return SimpleNamespace(
        id=ORDER_ID,
        email="awa@example.test",
        customer_name="Awa Kone",
        total_minor=total_minor,
        items=[item],
    )


def _cinetpay(handler):
    return CinetPayGateway(
        apikey="cp-key",
        site_id="445566",
        secret_key="cp-secret",
        app_url="https://api.example.test/",
        transport=httpx.MockTransport(handler),
    )


def _paydunya(handler, mode="test"):
    return PayDunyaGateway(
        master_key="pd-master",
        private_key="pd-private",
        token="pd-token",
        app_url="https://api.example.test",
        mode=mode,
        transport=httpx.MockTransport(handler),
    )


class TestCinetPay:
    async def test_create_invoice(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                201, json={"code": "201", "data": {"payment_url": "https://checkout.cinetpay.com/pay/abc"}}
            )

        invoice = await _cinetpay(handler).create_invoice(_order())

        assert invoice.provider_ref == "SHOP3f2a9c1e0b7d4e559a612c8e4f1d7b90"
        assert invoice.checkout_url == "https://checkout.cinetpay.com/pay/abc"
        assert seen["url"] == "https://api-checkout.cinetpay.com/v2/payment"
        assert seen["body"]["amount"] == 5000
        assert seen["body"]["transaction_id"] == invoice.provider_ref
        assert seen["body"]["notify_url"] == "https://api.example.test/payments/cinetpay/notify"

    async def test_create_invoice_without_payment_url_fails(self):
        def handler(request):
            return httpx.Response(400, json={"code": "608", "description": "MINIMUM_REQUIRED_FIELDS"})

        with pytest.raises(ProviderCommunicationError):
            await _cinetpay(handler).create_invoice(_order())

    async def test_network_error_becomes_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderCommunicationError):
            await _cinetpay(handler).create_invoice(_order())

    async def test_check_status_accepted(self):
        def handler(request):
            assert json.loads(request.content)["transaction_id"] == "SHOP123"
            return httpx.Response(
                200, json={"code": "00", "data": {"status": "ACCEPTED", "payment_method": "OMCI"}}
            )

        report = await _cinetpay(handler).check_status("SHOP123")

        assert report.status is ProviderStatus.ACCEPTED
        assert report.payment_method == "OMCI"

    async def test_check_status_refused_with_error_code(self):
        def handler(request):
            return httpx.Response(400, json={"code": "627", "data": {"status": "REFUSED"}})

        report = await _cinetpay(handler).check_status("SHOP123")

        assert report.status is ProviderStatus.REFUSED

    async def test_check_status_unrecognised_value_is_unknown(self):
        def handler(request):
            return httpx.Response(200, json={"code": "00", "data": {"status": "SOMETHING_NEW"}})

        report = await _cinetpay(handler).check_status("SHOP123")

        assert report.status is ProviderStatus.UNKNOWN
        assert report.raw_status == "SOMETHING_NEW"

    async def test_check_status_without_status_fails(self):
        def handler(request):
            return httpx.Response(500, text="upstream error")

        with pytest.raises(ProviderCommunicationError):
            await _cinetpay(handler).check_status("SHOP123")

    def test_notification_signature(self):
        gateway = _cinetpay(lambda request: httpx.Response(200))
        fields = {
            "cpm_site_id": "445566",
            "cpm_trans_id": "SHOP123",
            "cpm_trans_date": "2024-05-01 10:00:00",
            "cpm_amount": "5000",
            "cpm_currency": "XOF",
            "payment_method": "OMCI",
        }
        message = "445566SHOP1232024-05-01 10:00:005000XOFOMCI"
        token = hmac.new(b"cp-secret", message.encode(), hashlib.sha256).hexdigest()

        assert gateway.verify_notification(fields, {"x-token": token}) is True
        assert gateway.verify_notification(fields, {"x-token": "0" * 64}) is False
        assert gateway.verify_notification(fields, {}) is False
        assert gateway.notification_reference(fields) == "SHOP123"

    @pytest.mark.parametrize("total_minor", [500_000, 500, 1_000])
    def test_amount_multiple_of_five_accepted(self, total_minor):
        _cinetpay(lambda request: httpx.Response(200)).validate_amount(total_minor)

    @pytest.mark.parametrize("total_minor", [100_300, 0, 40])
    def test_amount_not_multiple_of_five_rejected(self, total_minor):
        with pytest.raises(ValidationError) as exc_info:
            _cinetpay(lambda request: httpx.Response(200)).validate_amount(total_minor)
        assert exc_info.value.code == "INVALID_AMOUNT"


class TestPayDunya:
    async def test_create_invoice(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "response_code": "00",
                    "response_text": "https://app.paydunya.com/sandbox-checkout/invoice/tok_123",
                    "token": "tok_123",
                },
            )

        invoice = await _paydunya(handler).create_invoice(_order())

        assert invoice.provider_ref == "tok_123"
        assert invoice.checkout_url.endswith("/tok_123")
        assert seen["url"] == f"{SANDBOX_BASE_URL}/v1/checkout-invoice/create"
        assert seen["headers"]["PAYDUNYA-MASTER-KEY"] == "pd-master"
        assert seen["body"]["invoice"]["total_amount"] == 5000
        assert seen["body"]["custom_data"] == {"orderId": ORDER_ID}
        assert seen["body"]["actions"]["callback_url"] == "https://api.example.test/payments/paydunya/notify"

    async def test_error_response_code_fails(self):
        def handler(request):
            return httpx.Response(200, json={"response_code": "1001", "response_text": "Invalid keys"})

        with pytest.raises(ProviderCommunicationError):
            await _paydunya(handler).create_invoice(_order())

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("completed", ProviderStatus.ACCEPTED),
            ("cancelled", ProviderStatus.CANCELLED),
            ("failed", ProviderStatus.REFUSED),
            ("pending", ProviderStatus.WAITING),
            ("expired", ProviderStatus.UNKNOWN),
        ],
    )
    async def test_check_status(self, raw, expected):
        def handler(request):
            assert request.url.path.endswith("/v1/checkout-invoice/confirm/tok_123")
            return httpx.Response(200, json={"response_code": "00", "status": raw})

        report = await _paydunya(handler).check_status("tok_123")

        assert report.status is expected

    def test_live_mode_uses_live_api(self):
        assert _paydunya(lambda request: httpx.Response(200), mode="live").base_url == LIVE_BASE_URL

    def test_ipn_hash(self):
        gateway = _paydunya(lambda request: httpx.Response(200))
        good = hashlib.sha512(b"pd-master").hexdigest()
        fields = {"data[hash]": good, "data[invoice][token]": "tok_123"}

        assert gateway.verify_notification(fields, {}) is True
        assert gateway.verify_notification({"data[hash]": good.upper()}, {}) is True
        assert gateway.verify_notification({"data[hash]": "deadbeef"}, {}) is False
        assert gateway.notification_reference(fields) == "tok_123"


class TestRegistry:
    def test_lookup_is_case_insensitive(self):
        fake = FakeGateway()
        registry = GatewayRegistry([fake])
        assert registry.get("fake") is fake
        assert registry.get(PaymentProvider.FAKE) is fake

    def test_unknown_and_unconfigured_providers(self):
        registry = GatewayRegistry([FakeGateway()])
        with pytest.raises(UnsupportedProvider):
            registry.get("stripe")
        with pytest.raises(UnsupportedProvider):
            registry.get("paydunya")

    def test_only_configured_providers_are_built(self):
        registry = build_gateways(
            Settings(cinetpay_apikey="k", cinetpay_site_id="s", cinetpay_secret_key="x")
        )
        assert PaymentProvider.CINETPAY in registry
        assert PaymentProvider.PAYDUNYA not in registry
