"""Выбор платежного шлюза по способу оплаты."""
from functools import lru_cache

from storefront.core.cache import cache_service
from storefront.core.exceptions import BadRequestError
from storefront.models.payment import PaymentProvider
from storefront.services.currency import ExchangeRateCache
from storefront.services.gateways.base import PaymentGateway
from storefront.services.gateways.checkout_preference import CheckoutPreferenceGateway
from storefront.services.gateways.redirect_link import RedirectLinkGateway


class GatewayRegistry:
    """Шлюзы, доступные сервисам оплаты, по значению PaymentProvider."""

    def __init__(self, gateways: dict[str, PaymentGateway]):
        self._gateways = {PaymentProvider(key).value: gateway for key, gateway in gateways.items()}

    def has(self, provider: PaymentProvider | str) -> bool:
        return PaymentProvider(provider).value in self._gateways

    def get(self, provider: PaymentProvider | str) -> PaymentGateway:
        gateway = self._gateways.get(PaymentProvider(provider).value)
        if gateway is None:
            raise BadRequestError(f"Способ оплаты {PaymentProvider(provider).value} не использует платежный шлюз")
        return gateway


@lru_cache
def get_exchange_rate_cache() -> ExchangeRateCache:
    """Кэш курса создается один раз на процесс."""
    return ExchangeRateCache(cache_service=cache_service)


def build_default_registry() -> GatewayRegistry:
    return GatewayRegistry(
        {
            PaymentProvider.REDIRECT_LINK_GATEWAY: RedirectLinkGateway(),
            PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY: CheckoutPreferenceGateway(get_exchange_rate_cache()),
        }
    )


@lru_cache
def get_gateway_registry() -> GatewayRegistry:
    """Dependency для получения реестра шлюзов."""
    return build_default_registry()
