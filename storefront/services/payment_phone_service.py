"""Оплата по номеру телефона через Redirect-Link Gateway."""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import BadRequestError, GatewayError, NotFoundError
from storefront.models.order import Order, OrderStatus
from storefront.models.payment import PaymentTransaction, PaymentStatus
from storefront.services.address_service import AddressService
from storefront.services.gateways.base import PhoneChargeGateway, normalize_payment_method_id
from storefront.services.gateways.registry import GatewayRegistry
from storefront.services.payment_order_service import PaymentOrderService

logger = logging.getLogger(__name__)


@dataclass
class ClientSuppliedResult:
    """Ответ шлюза, который фронтенд уже получил сам."""

    response: dict[str, Any]


@dataclass
class ServerFetchedResult:
    """Ответ шлюза, полученный сервером по номеру телефона."""

    phone_number: str


PhoneChargeSource = Union[ClientSuppliedResult, ServerFetchedResult]


@dataclass
class PhonePaymentResult:
    transaction: PaymentTransaction
    gateway_response: dict[str, Any]
    order: Order | None = None


def unwrap_gateway_response(response: dict[str, Any]) -> dict[str, Any]:
    """Шлюз иногда заворачивает ответ в `data`."""
    data = response.get("data") if isinstance(response, dict) else None
    return data if isinstance(data, dict) else response


class PaymentPhoneService:
    """Сервис оплаты по телефону."""

    def __init__(
        self,
        db: AsyncSession,
        gateways: GatewayRegistry,
        payment_order_service: PaymentOrderService | None = None,
    ):
        self.db = db
        self.gateways = gateways
        self.payment_order_service = payment_order_service or PaymentOrderService(db)

    async def _get_user_transaction(self, client_transaction_id: str, user_id: uuid.UUID) -> PaymentTransaction:
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.client_transaction_id == client_transaction_id,
            PaymentTransaction.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise NotFoundError("Транзакция не найдена")
        return transaction

    async def _charge(self, transaction: PaymentTransaction, source: PhoneChargeSource) -> dict[str, Any]:
        if isinstance(source, ClientSuppliedResult):
            logger.info(f"Using client-supplied phone charge result for {transaction.client_transaction_id}")
            return source.response

        gateway = self.gateways.get(transaction.payment_provider)
        if not isinstance(gateway, PhoneChargeGateway):
            raise BadRequestError("Этот способ оплаты не поддерживает оплату по телефону")

        return await gateway.initiate_phone_charge(
            source.phone_number,
            transaction.amount,
            transaction.client_transaction_id,
        )

    async def process_phone_payment(
        self,
        user_id: uuid.UUID,
        client_transaction_id: str,
        source: PhoneChargeSource,
        address_id: uuid.UUID | None = None,
        payment_method_id: str | None = None,
    ) -> PhonePaymentResult:
        """
        Провести оплату по телефону.

        Транзакция остается pending до подтверждения. Если заказа еще нет, он создается
        сразу в статусе processing. При ошибке шлюза транзакция переводится в failed.
        """
        transaction = await self._get_user_transaction(client_transaction_id, user_id)

        if transaction.status != PaymentStatus.PENDING.value:
            raise BadRequestError(f"Транзакция уже в статусе {transaction.status}")

        if address_id and not transaction.address_id:
            await AddressService(self.db).validate_ownership(address_id, user_id)
            transaction.address_id = address_id
        payment_method_id = normalize_payment_method_id(payment_method_id)
        if payment_method_id and not transaction.payment_method_id:
            transaction.payment_method_id = payment_method_id
        await self.db.commit()

        try:
            response = await self._charge(transaction, source)
        except GatewayError:
            logger.error(f"❌ Phone charge failed for {client_transaction_id}, marking transaction failed")
            await self.payment_order_service.update_payment_status(client_transaction_id, PaymentStatus.FAILED)
            raise

        gateway_response = unwrap_gateway_response(response or {})
        transaction.gateway_response_data = gateway_response
        await self.db.commit()

        order = None
        if not transaction.order_id and transaction.address_id:
            order = await self.payment_order_service.create_order_from_transaction(
                client_transaction_id,
                OrderStatus.PROCESSING,
            )
        elif transaction.order_id:
            order = await self.payment_order_service.order_service.get_by_id(transaction.order_id)

        transaction = await self.payment_order_service.get_transaction(client_transaction_id)
        return PhonePaymentResult(transaction=transaction, gateway_response=gateway_response, order=order)
