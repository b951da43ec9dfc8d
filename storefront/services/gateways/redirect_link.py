"""Redirect-Link Gateway (Payphone): платежная страница по ссылке."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

import httpx

from storefront.config import settings
from storefront.core.exceptions import GatewayError
from storefront.models.payment import PaymentProvider
from storefront.services.gateways.base import (
    GatewayPaymentStatus,
    PaymentConfirmResult,
    PaymentInitResult,
    read_gateway_json,
    send_gateway_request,
)

logger = logging.getLogger(__name__)

# statusCode в ответе Confirm
STATUS_CODE_PENDING = 2
STATUS_CODE_APPROVED = 3

CONFIRM_STATUS_TO_GATEWAY = {
    "completed": "approved",
    "pending": "pending",
    "failed": "rejected",
}


def to_minor_units(amount: Decimal) -> int:
    """Сумма в центах, округленная до целого."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RedirectLinkGateway:
    """Клиент Payphone Button API."""

    provider = PaymentProvider.REDIRECT_LINK_GATEWAY.value

    def __init__(
        self,
        token: str | None = None,
        store_id: str | None = None,
        base_url: str | None = None,
        frontend_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token if token is not None else settings.payphone_token
        self.store_id = store_id if store_id is not None else settings.payphone_store_id
        self.base_url = (base_url or settings.payphone_base_url).rstrip("/")
        self.frontend_url = frontend_url or settings.resolved_frontend_url
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.token:
            logger.error("PAYPHONE_TOKEN is not configured")
            raise GatewayError("Платежный шлюз не настроен", provider=self.provider)
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _require_store_id(self) -> str:
        if not self.store_id:
            logger.error("PAYPHONE_STORE_ID is not configured")
            raise GatewayError("Платежный шлюз не настроен", provider=self.provider)
        return self.store_id

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = self._headers()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await send_gateway_request(
                client,
                "POST",
                f"{self.base_url}{path}",
                self.provider,
                json=payload,
                headers=headers,
            )
        return read_gateway_json(response, self.provider)

    async def initiate_payment(
        self,
        amount: Decimal,
        client_transaction_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentInitResult:
        """Получить ссылку на платежную страницу."""
        metadata = metadata or {}
        minor_amount = to_minor_units(amount)
        payload = {
            "clientTransactionId": client_transaction_id,
            "reference": metadata.get("reference") or settings.payment_reference,
            "amount": minor_amount,
            "amountWithoutTax": minor_amount,
            "storeId": self._require_store_id(),
            "responseUrl": (
                f"{self.frontend_url}/pay-response"
                f"?id={client_transaction_id}&clientTransactionId={client_transaction_id}"
            ),
        }

        logger.info(f"Creating Payphone button for {client_transaction_id}: amount={minor_amount}")
        data = await self._post("/api/button/V2/GetButton", payload)

        return PaymentInitResult(
            payment_id=str(data.get("paymentId")) if data.get("paymentId") is not None else None,
            redirect_url=data.get("payWithCard"),
            payment_data=data,
        )

    async def confirm_payment(self, payment_id: str, client_transaction_id: str) -> PaymentConfirmResult:
        """Запросить итог оплаты по paymentId."""
        data = await self._post(
            "/api/button/V2/Confirm",
            {"id": payment_id, "clientTxId": client_transaction_id},
        )

        status_code = int(data.get("statusCode") or 0)
        if status_code == STATUS_CODE_APPROVED:
            status = "completed"
        elif status_code == STATUS_CODE_PENDING:
            status = "pending"
        else:
            status = "failed"

        logger.info(f"Payphone confirm {client_transaction_id}: statusCode={status_code} -> {status}")
        return PaymentConfirmResult(status_code=status_code, status=status, data=data)

    async def fetch_payment_status(
        self,
        payment_id: str,
        client_transaction_id: str | None = None,
    ) -> GatewayPaymentStatus:
        if not client_transaction_id:
            raise GatewayError("Для проверки платежа нужен clientTransactionId", provider=self.provider)

        result = await self.confirm_payment(payment_id, client_transaction_id)
        return GatewayPaymentStatus(
            status=CONFIRM_STATUS_TO_GATEWAY[result.status],
            external_reference=client_transaction_id,
        )

    async def initiate_phone_charge(
        self,
        phone_number: str,
        amount: Decimal,
        client_transaction_id: str,
    ) -> dict[str, Any]:
        """Отправить запрос на оплату в приложение покупателя по номеру телефона."""
        minor_amount = to_minor_units(amount)
        payload = {
            "clientTransactionId": client_transaction_id,
            "phoneNumber": phone_number,
            "reference": f"{settings.payment_reference} - Transaction {client_transaction_id[:8]}",
            "amount": minor_amount,
            "amountWithoutTax": minor_amount,
            "storeId": self._require_store_id(),
        }

        logger.info(f"Creating Payphone phone sale for {client_transaction_id}: amount={minor_amount}")
        return await self._post("/api/Sale", payload)
