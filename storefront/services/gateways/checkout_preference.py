"""Checkout-Preference Gateway (Mercado Pago Checkout Pro)."""
import logging
from decimal import Decimal
from typing import Any

import httpx

from storefront.config import settings
from storefront.core.exceptions import GatewayError
from storefront.models.payment import PaymentProvider
from storefront.services.currency import ExchangeRateCache
from storefront.services.gateways.base import (
    GatewayPaymentStatus,
    PaymentConfirmResult,
    PaymentInitResult,
    read_gateway_json,
    send_gateway_request,
)

logger = logging.getLogger(__name__)

SETTLEMENT_CURRENCY = "ARS"


class CheckoutPreferenceGateway:
    """Клиент Mercado Pago REST API: preference для оплаты и чтение платежа для сверки."""

    provider = PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY.value

    def __init__(
        self,
        exchange_rates: ExchangeRateCache,
        access_token: str | None = None,
        base_url: str | None = None,
        frontend_url: str | None = None,
        backend_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.exchange_rates = exchange_rates
        self.access_token = access_token if access_token is not None else settings.mercadopago_access_token
        self.base_url = (base_url or settings.mercadopago_base_url).rstrip("/")
        self.frontend_url = frontend_url or settings.resolved_frontend_url
        self.backend_url = backend_url or settings.resolved_backend_url
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.access_token:
            logger.error("MERCADOPAGO_ACCESS_TOKEN is not configured")
            raise GatewayError("Платежный шлюз не настроен", provider=self.provider)
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    @property
    def return_url(self) -> str:
        return f"{self.frontend_url}/pay-response?from=mercadopago"

    @property
    def notification_url(self) -> str:
        return f"{self.backend_url}/api/v1/payments/webhooks/mercadopago"

    async def initiate_payment(
        self,
        amount: Decimal,
        client_transaction_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentInitResult:
        """
        Создать preference.

        Сумма переводится в ARS по текущему курсу и округляется до целого.
        """
        metadata = metadata or {}
        headers = self._headers()

        amount_ars = await self.exchange_rates.convert(amount)
        exchange_rate = await self.exchange_rates.get()
        logger.info(
            f"Currency conversion for {client_transaction_id}: "
            f"{amount} USD -> {amount_ars} {SETTLEMENT_CURRENCY} (rate {exchange_rate})"
        )

        body = {
            "items": [
                {
                    "id": f"item-{client_transaction_id}",
                    "title": str(metadata.get("reference") or settings.payment_reference),
                    "quantity": 1,
                    "unit_price": amount_ars,
                    "currency_id": SETTLEMENT_CURRENCY,
                }
            ],
            "back_urls": {
                "success": self.return_url,
                "failure": self.return_url,
                "pending": self.return_url,
            },
            "notification_url": self.notification_url,
            "external_reference": client_transaction_id,
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await send_gateway_request(
                client,
                "POST",
                f"{self.base_url}/checkout/preferences",
                self.provider,
                json=body,
                headers=headers,
            )
        data = read_gateway_json(response, self.provider)

        preference_id = data.get("id")
        init_point = data.get("init_point") or data.get("sandbox_init_point")
        if not preference_id:
            logger.error(f"❌ Mercado Pago response has no preference id: {data}")
            raise GatewayError(provider=self.provider)

        logger.info(f"✅ Preference created: id={preference_id}, init_point={init_point}")

        return PaymentInitResult(
            payment_id=str(preference_id),
            redirect_url=init_point,
            payment_data={
                "preferenceId": str(preference_id),
                "initPoint": init_point,
                "amountUsd": str(amount),
                "amountArs": amount_ars,
                "exchangeRate": str(exchange_rate),
                "currency": SETTLEMENT_CURRENCY,
            },
        )

    async def confirm_payment(self, payment_id: str, client_transaction_id: str) -> PaymentConfirmResult:
        """Синхронного подтверждения нет: статус приходит через webhook или проверку."""
        return PaymentConfirmResult(
            status_code=2,
            status="pending",
            data={"note": "Mercado Pago: confirmation via webhook or redirect only"},
        )

    async def fetch_payment_status(
        self,
        payment_id: str,
        client_transaction_id: str | None = None,
    ) -> GatewayPaymentStatus:
        """Прочитать статус и external_reference платежа."""
        headers = self._headers()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await send_gateway_request(
                client,
                "GET",
                f"{self.base_url}/v1/payments/{payment_id}",
                self.provider,
                headers=headers,
            )
        data = read_gateway_json(response, self.provider)

        external_reference = data.get("external_reference")
        return GatewayPaymentStatus(
            status=data.get("status"),
            external_reference=str(external_reference) if external_reference else None,
        )
