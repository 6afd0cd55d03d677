"""CinetPay adapter: mobile-money checkout confirmed by a signed server notification.

The notification only tells us *that* something happened to a transaction;
the status always comes from a fresh call to the check endpoint.
"""
import re
from typing import Mapping

import httpx
import structlog

from services.order_service.models import Order, PaymentProvider
from shared.errors import ProviderCommunicationError, ValidationError
from shared.security import constant_time_equals, hmac_sha256_hex
from .base import Invoice, PaymentGateway, ProviderStatus, StatusReport, minor_to_major

logger = structlog.get_logger(__name__)

CINETPAY_PAYMENT_ENDPOINT = "https://api-checkout.cinetpay.com/v2/payment"
CINETPAY_CHECK_ENDPOINT = "https://api-checkout.cinetpay.com/v2/payment/check"

# Concatenation order of the x-token HMAC, as documented by CinetPay
SIGNED_FIELDS = (
    "cpm_site_id",
    "cpm_trans_id",
    "cpm_trans_date",
    "cpm_amount",
    "cpm_currency",
    "signature",
    "payment_method",
    "cel_phone_num",
    "cpm_phone_prefixe",
    "cpm_language",
    "cpm_version",
    "cpm_payment_config",
    "cpm_page_action",
    "cpm_custom",
    "cpm_designation",
    "cpm_error_message",
)

_STATUS_MAP = {
    "ACCEPTED": ProviderStatus.ACCEPTED,
    "REFUSED": ProviderStatus.REFUSED,
    "WAITING_FOR_CUSTOMER": ProviderStatus.WAITING,
}


def notification_token(fields: Mapping[str, str], secret_key: str) -> str:
    message = "".join(fields.get(name) or "" for name in SIGNED_FIELDS)
    return hmac_sha256_hex(secret_key, message)


class CinetPayGateway(PaymentGateway):
    provider = PaymentProvider.CINETPAY

    def __init__(
        self,
        apikey: str,
        site_id: str,
        secret_key: str,
        app_url: str,
        transaction_prefix: str = "SHOP",
        currency: str = "XOF",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.apikey = apikey
        self.site_id = site_id
        self.secret_key = secret_key
        self.app_url = app_url.rstrip("/")
        self.transaction_prefix = transaction_prefix
        self.currency = currency
        self.timeout = timeout
        self._transport = transport

    def transaction_id_for(self, order_id: str) -> str:
        # CinetPay rejects special characters in transaction ids
        return f"{self.transaction_prefix}{re.sub(r'[^a-zA-Z0-9]', '', order_id)}"

    def validate_amount(self, total_minor: int) -> None:
        amount = minor_to_major(total_minor)
        if amount <= 0 or amount % 5 != 0:
            raise ValidationError(
                f"CinetPay only accepts amounts that are a positive multiple of 5 {self.currency}",
                code="INVALID_AMOUNT",
            )

    async def create_invoice(self, order: Order) -> Invoice:
        transaction_id = self.transaction_id_for(order.id)
        payload = {
            "apikey": self.apikey,
            "site_id": self.site_id,
            "transaction_id": transaction_id,
            "amount": minor_to_major(order.total_minor),
            "currency": self.currency,
            "description": f"Order {order.id}",
            "notify_url": f"{self.app_url}/payments/cinetpay/notify",
            "return_url": f"{self.app_url}/payments/cinetpay/return",
            "channels": "MOBILE_MONEY",
            "metadata": order.id,
            "lang": "fr",
        }
        resp, data = await self._post(CINETPAY_PAYMENT_ENDPOINT, payload)
        payment_url = (data.get("data") or {}).get("payment_url") if data else None
        if resp.status_code >= 400 or not payment_url:
            detail = (data or {}).get("description") or (data or {}).get("message") or resp.status_code
            raise ProviderCommunicationError(f"CinetPay refused the payment initialisation: {detail}")
        return Invoice(checkout_url=payment_url, provider_ref=transaction_id)

    async def check_status(self, provider_ref: str) -> StatusReport:
        payload = {"apikey": self.apikey, "site_id": self.site_id, "transaction_id": provider_ref}
        resp, data = await self._post(CINETPAY_CHECK_ENDPOINT, payload)
        # Refused payments come back with a 4xx code but still carry data.status
        details = (data or {}).get("data") or {}
        raw_status = details.get("status")
        if not raw_status:
            raise ProviderCommunicationError(
                f"CinetPay status check for {provider_ref} failed (HTTP {resp.status_code})"
            )
        return StatusReport(
            status=_STATUS_MAP.get(raw_status, ProviderStatus.UNKNOWN),
            payment_method=details.get("payment_method"),
            raw_status=raw_status,
        )

    def verify_notification(self, fields: Mapping[str, str], headers: Mapping[str, str]) -> bool:
        expected = notification_token(fields, self.secret_key)
        return constant_time_equals(headers.get("x-token"), expected)

    def notification_reference(self, fields: Mapping[str, str]) -> str | None:
        return fields.get("cpm_trans_id") or None

    async def _post(self, url: str, payload: dict) -> tuple[httpx.Response, dict | None]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.error("cinetpay_unreachable", url=url, error=str(exc))
            raise ProviderCommunicationError("CinetPay is unreachable") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None
        return resp, data if isinstance(data, dict) else None
