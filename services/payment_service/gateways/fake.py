"""Configurable in-process gateway for development and tests.

No network: invoices get a generated reference, statuses are whatever the
test configured for that reference, and the only valid notification
signature is ``"test-signature"``.
"""
from typing import Mapping
from uuid import uuid4

from services.order_service.models import Order, PaymentProvider
from shared.errors import ProviderCommunicationError
from .base import Invoice, PaymentGateway, ProviderStatus, StatusReport

VALID_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    provider = PaymentProvider.FAKE

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Provider unavailable"
        self.statuses: dict[str, StatusReport] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Provider unavailable") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def set_status(self, provider_ref: str, status: ProviderStatus, payment_method: str | None = None) -> None:
        self.statuses[provider_ref] = StatusReport(status=status, payment_method=payment_method)

    async def create_invoice(self, order: Order) -> Invoice:
        self.calls.append({"method": "create_invoice", "order_id": order.id, "amount": order.total_minor})
        if not self.should_succeed:
            raise ProviderCommunicationError(self.failure_reason)
        provider_ref = f"fake_{uuid4().hex[:12]}"
        return Invoice(checkout_url=f"https://pay.example.test/{provider_ref}", provider_ref=provider_ref)

    async def check_status(self, provider_ref: str) -> StatusReport:
        self.calls.append({"method": "check_status", "provider_ref": provider_ref})
        if not self.should_succeed:
            raise ProviderCommunicationError(self.failure_reason)
        return self.statuses.get(provider_ref, StatusReport(status=ProviderStatus.WAITING))

    def verify_notification(self, fields: Mapping[str, str], headers: Mapping[str, str]) -> bool:
        return headers.get("x-signature") == VALID_SIGNATURE

    def notification_reference(self, fields: Mapping[str, str]) -> str | None:
        return fields.get("provider_ref") or None
