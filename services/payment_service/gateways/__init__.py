"""Payment gateway registry.

Maps each configured provider to its adapter. Only providers whose
credentials are present in Settings are registered; tests inject a
registry holding a FakeGateway instead.
"""
from services.order_service.models import PaymentProvider
from shared.config.settings import Settings
from shared.errors import UnsupportedProvider
from .base import Invoice, PaymentGateway, ProviderStatus, StatusReport, minor_to_major
from .cinetpay import CinetPayGateway
from .fake import FakeGateway
from .paydunya import PayDunyaGateway


class GatewayRegistry:
    def __init__(self, gateways: list[PaymentGateway] | None = None):
        self._gateways: dict[PaymentProvider, PaymentGateway] = {}
        for gateway in gateways or []:
            self.register(gateway)

    def register(self, gateway: PaymentGateway) -> None:
        self._gateways[gateway.provider] = gateway

    def get(self, provider: str | PaymentProvider) -> PaymentGateway:
        try:
            key = provider if isinstance(provider, PaymentProvider) else PaymentProvider(provider.upper())
        except ValueError:
            raise UnsupportedProvider(f"Unknown payment provider {provider!r}") from None
        gateway = self._gateways.get(key)
        if gateway is None:
            raise UnsupportedProvider(f"Payment provider {key.value} is not configured")
        return gateway

    def __contains__(self, provider: PaymentProvider) -> bool:
        return provider in self._gateways


def build_gateways(settings: Settings) -> GatewayRegistry:
    registry = GatewayRegistry()
    if settings.cinetpay_configured:
        registry.register(
            CinetPayGateway(
                apikey=settings.cinetpay_apikey,
                site_id=settings.cinetpay_site_id,
                secret_key=settings.cinetpay_secret_key,
                app_url=settings.app_url,
                transaction_prefix=settings.cinetpay_transaction_prefix,
                timeout=settings.provider_timeout_seconds,
            )
        )
    if settings.paydunya_configured:
        registry.register(
            PayDunyaGateway(
                master_key=settings.paydunya_master_key,
                private_key=settings.paydunya_private_key,
                token=settings.paydunya_token,
                app_url=settings.app_url,
                mode=settings.paydunya_mode,
                store_name=settings.paydunya_store_name,
                store_website=settings.shop_url,
                timeout=settings.provider_timeout_seconds,
            )
        )
    return registry


__all__ = [
    "CinetPayGateway",
    "FakeGateway",
    "GatewayRegistry",
    "Invoice",
    "PayDunyaGateway",
    "PaymentGateway",
    "ProviderStatus",
    "StatusReport",
    "build_gateways",
    "minor_to_major",
]
