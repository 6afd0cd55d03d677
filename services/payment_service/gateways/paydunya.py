"""PayDunya adapter: hosted invoice, confirmed by pulling the invoice status.

PayDunya also posts an IPN; it is authenticated by the SHA-512 of our master
key and, like every notification, only triggers a fresh confirm call.
"""
from typing import Mapping
from urllib.parse import quote

import httpx
import structlog

from services.order_service.models import Order, PaymentProvider
from shared.errors import ProviderCommunicationError
from shared.security import constant_time_equals, sha512_hex
from .base import Invoice, PaymentGateway, ProviderStatus, StatusReport, minor_to_major

logger = structlog.get_logger(__name__)

SANDBOX_BASE_URL = "https://app.paydunya.com/sandbox-api"
LIVE_BASE_URL = "https://app.paydunya.com/api"

MOBILE_MONEY_CHANNELS = ["orange-money-ci", "mtn-ci", "moov-ci", "wave-ci"]

_STATUS_MAP = {
    "completed": ProviderStatus.ACCEPTED,
    "cancelled": ProviderStatus.CANCELLED,
    "failed": ProviderStatus.REFUSED,
    "pending": ProviderStatus.WAITING,
}


def base_url_for(mode: str) -> str:
    return LIVE_BASE_URL if mode.lower() in ("live", "production") else SANDBOX_BASE_URL


class PayDunyaGateway(PaymentGateway):
    provider = PaymentProvider.PAYDUNYA

    def __init__(
        self,
        master_key: str,
        private_key: str,
        token: str,
        app_url: str,
        mode: str = "test",
        store_name: str = "Storefront",
        store_website: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.master_key = master_key
        self.private_key = private_key
        self.token = token
        self.app_url = app_url.rstrip("/")
        self.base_url = base_url_for(mode)
        self.store_name = store_name
        self.store_website = store_website or self.app_url
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "PAYDUNYA-MASTER-KEY": self.master_key,
            "PAYDUNYA-PRIVATE-KEY": self.private_key,
            "PAYDUNYA-TOKEN": self.token,
        }

    def _invoice_payload(self, order: Order) -> dict:
        amount = minor_to_major(order.total_minor)
        items = {
            f"item_{idx}": {
                "name": item.product_name_snapshot,
                "quantity": item.quantity,
                "unit_price": str(minor_to_major(item.unit_price_minor)),
                "total_price": str(minor_to_major(item.line_total_minor)),
                "description": "",
            }
            for idx, item in enumerate(order.items)
        }
        return_url = f"{self.app_url}/payments/paydunya/return"
        return {
            "invoice": {
                "total_amount": amount,
                "description": f"Payment of {amount} FCFA for order {order.id}",
                "customer": {
                    "name": order.customer_name or order.email,
                    "email": order.email,
                    "phone": "",
                },
                "channels": MOBILE_MONEY_CHANNELS,
                "items": items,
            },
            "store": {"name": self.store_name, "website_url": self.store_website},
            "custom_data": {"orderId": order.id},
            "actions": {
                "cancel_url": return_url,
                "return_url": return_url,
                "callback_url": f"{self.app_url}/payments/paydunya/notify",
            },
        }

    async def create_invoice(self, order: Order) -> Invoice:
        data = await self._request("POST", "/v1/checkout-invoice/create", json=self._invoice_payload(order))
        checkout_url, invoice_token = data.get("response_text"), data.get("token")
        if not checkout_url or not invoice_token:
            raise ProviderCommunicationError("PayDunya returned an invoice without token or URL")
        return Invoice(checkout_url=checkout_url, provider_ref=invoice_token)

    async def check_status(self, provider_ref: str) -> StatusReport:
        data = await self._request("GET", f"/v1/checkout-invoice/confirm/{quote(provider_ref, safe='')}")
        raw_status = (data.get("status") or "").lower()
        return StatusReport(
            status=_STATUS_MAP.get(raw_status, ProviderStatus.UNKNOWN),
            payment_method=data.get("mode") or None,
            raw_status=raw_status or None,
        )

    def verify_notification(self, fields: Mapping[str, str], headers: Mapping[str, str]) -> bool:
        provided = fields.get("data[hash]") or fields.get("hash") or ""
        return constant_time_equals(provided.lower(), sha512_hex(self.master_key).lower())

    def notification_reference(self, fields: Mapping[str, str]) -> str | None:
        return (
            fields.get("data[invoice][token]")
            or fields.get("invoice[token]")
            or fields.get("token")
            or None
        )

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.error("paydunya_unreachable", path=path, error=str(exc))
            raise ProviderCommunicationError("PayDunya is unreachable") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400 or not isinstance(data, dict) or data.get("response_code") != "00":
            message = (data or {}).get("response_text") if isinstance(data, dict) else None
            raise ProviderCommunicationError(f"PayDunya error: {message or resp.status_code}")
        return data
