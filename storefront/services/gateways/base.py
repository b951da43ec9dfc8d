"""Общий контракт платежных шлюзов."""
import logging
from decimal import Decimal
from typing import Any, Literal, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from storefront.core.exceptions import DuplicateTransactionIdError, GatewayAuthError, GatewayError

logger = logging.getLogger(__name__)

# Значения paymentMethodId, которые фронтенд шлет вместо отсутствующей карты
PAYMENT_METHOD_SENTINELS = {"", "payphone-default"}

DUPLICATE_MARKERS = ("ya existe", "already", "duplic", "exist")


class PaymentInitResult(BaseModel):
    payment_id: str | None = None
    redirect_url: str | None = None
    payment_data: dict[str, Any] | None = None


class PaymentConfirmResult(BaseModel):
    status_code: int
    status: Literal["pending", "completed", "failed"]
    data: dict[str, Any] | None = None


class GatewayPaymentStatus(BaseModel):
    """Состояние платежа на стороне шлюза в терминах approved / pending / rejected / ..."""

    status: str | None = None
    external_reference: str | None = None


@runtime_checkable
class PaymentGateway(Protocol):
    provider: str

    async def initiate_payment(
        self,
        amount: Decimal,
        client_transaction_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentInitResult: ...

    async def confirm_payment(self, payment_id: str, client_transaction_id: str) -> PaymentConfirmResult: ...

    async def fetch_payment_status(
        self,
        payment_id: str,
        client_transaction_id: str | None = None,
    ) -> GatewayPaymentStatus: ...


@runtime_checkable
class PhoneChargeGateway(Protocol):
    async def initiate_phone_charge(
        self,
        phone_number: str,
        amount: Decimal,
        client_transaction_id: str,
    ) -> dict[str, Any]: ...


def normalize_payment_method_id(payment_method_id: str | None) -> str | None:
    """Заменить служебные значения фронтенда на None."""
    if payment_method_id is None:
        return None
    if payment_method_id.strip() in PAYMENT_METHOD_SENTINELS:
        return None
    return payment_method_id


def is_duplicate_transaction_message(message: str) -> bool:
    lowered = message.lower()
    return "clienttransactionid" in lowered and any(marker in lowered for marker in DUPLICATE_MARKERS)


def extract_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text

    if isinstance(body, dict):
        for key in ("message", "Message", "error", "errorMessage"):
            if body.get(key):
                return str(body[key])
        errors = body.get("errors")
        if errors:
            return str(errors)
    return response.text


def raise_for_gateway_response(response: httpx.Response, provider: str) -> None:
    """Перевести HTTP-ошибку шлюза в типизированное исключение."""
    if response.is_success:
        return

    message = extract_error_message(response)
    logger.error(f"❌ {provider} responded {response.status_code}: {message}")

    if response.status_code == 401:
        raise GatewayAuthError(provider=provider)

    if is_duplicate_transaction_message(message):
        raise DuplicateTransactionIdError(provider=provider)

    raise GatewayError(provider=provider)


async def send_gateway_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    **kwargs: Any,
) -> httpx.Response:
    """Выполнить запрос к шлюзу; сетевые ошибки и таймауты становятся GatewayError."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        logger.error(f"❌ {provider} request timed out: {url}")
        raise GatewayError(provider=provider) from e
    except httpx.RequestError as e:
        logger.error(f"❌ {provider} request failed: {e}")
        raise GatewayError(provider=provider) from e

    raise_for_gateway_response(response, provider)
    return response


def read_gateway_json(response: httpx.Response, provider: str) -> dict[str, Any]:
    """Тело успешного ответа шлюза; не-JSON (например, страница техработ) становится GatewayError."""
    try:
        data = response.json()
    except ValueError as e:
        logger.error(f"❌ {provider} returned non-JSON body ({response.status_code}): {response.text[:200]}")
        raise GatewayError(provider=provider) from e

    if not isinstance(data, dict):
        logger.error(f"❌ {provider} returned unexpected body: {data!r}")
        raise GatewayError(provider=provider)
    return data
