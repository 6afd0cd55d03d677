"""Payment gateway port.

Every provider integration exposes the same small capability set so checkout,
the webhook handler and the browser poll never branch on which provider is
behind an order. Providers differ in how confirmation reaches us (pushed
notification vs. pulled status), not in what we do with it.
"""
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping

from services.order_service.models import Order, PaymentProvider
from shared.errors import ValidationError


class ProviderStatus(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"
    CANCELLED = "CANCELLED"
    WAITING = "WAITING"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Invoice:
    checkout_url: str
    provider_ref: str


@dataclass(frozen=True)
class StatusReport:
    status: ProviderStatus
    payment_method: str | None = None
    raw_status: str | None = None


def minor_to_major(amount_minor: int) -> int:
    """Whole currency units, rounded half up (providers only accept integers)."""
    return (amount_minor + 50) // 100


class PaymentGateway(ABC):
    provider: PaymentProvider

    def validate_amount(self, total_minor: int) -> None:
        """Reject totals the provider would refuse, before any stock is reserved."""
        if minor_to_major(total_minor) <= 0:
            raise ValidationError("Order total is too small to be paid online", code="INVALID_AMOUNT")

    @abstractmethod
    async def create_invoice(self, order: Order) -> Invoice:
        """Open a payment at the provider and return where to send the customer."""
        ...

    @abstractmethod
    async def check_status(self, provider_ref: str) -> StatusReport:
        """Ask the provider for the authoritative status of a payment."""
        ...

    @abstractmethod
    def verify_notification(self, fields: Mapping[str, str], headers: Mapping[str, str]) -> bool:
        """Check that an inbound notification really comes from the provider."""
        ...

    @abstractmethod
    def notification_reference(self, fields: Mapping[str, str]) -> str | None:
        """Extract the provider reference an inbound notification is about."""
        ...
