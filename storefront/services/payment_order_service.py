"""Связь платежных транзакций с заказами."""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import BadRequestError, NotFoundError
from storefront.models.order import Order, OrderStatus
from storefront.models.payment import PaymentTransaction, PaymentStatus, PaymentProvider
from storefront.services.address_service import AddressService
from storefront.services.order_service import OrderService
from storefront.services.payment_transaction_service import transaction_query

logger = logging.getLogger(__name__)

# Какой статус получает заказ, когда оплата подтверждена
ORDER_STATUS_ON_COMPLETION = {
    PaymentProvider.REDIRECT_LINK_GATEWAY.value: OrderStatus.PROCESSING,
    PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY.value: OrderStatus.PROCESSING,
    PaymentProvider.CASH_DEPOSIT.value: OrderStatus.PAID_PENDING_REVIEW,
}


def order_status_for_provider(provider: str) -> OrderStatus:
    """Целевой статус заказа; неизвестные способы оплаты уходят на ручную проверку."""
    return ORDER_STATUS_ON_COMPLETION.get(provider, OrderStatus.PAID_PENDING_REVIEW)


class PaymentOrderService:
    """Создание заказа из транзакции и перенос статуса оплаты на заказ."""

    def __init__(self, db: AsyncSession, order_service: OrderService | None = None):
        self.db = db
        self.order_service = order_service or OrderService(db)

    async def _load(self, client_transaction_id: str) -> PaymentTransaction | None:
        result = await self.db.execute(
            transaction_query().where(PaymentTransaction.client_transaction_id == client_transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_transaction(self, client_transaction_id: str) -> PaymentTransaction:
        transaction = await self._load(client_transaction_id)
        if not transaction:
            raise NotFoundError(f"Транзакция с clientTransactionId '{client_transaction_id}' не найдена")
        return transaction

    async def create_order_from_transaction(
        self,
        client_transaction_id: str,
        initial_status: OrderStatus | str = OrderStatus.PENDING,
    ) -> Order:
        """
        Создать заказ для транзакции из корзины владельца.

        Повторный вызов возвращает уже связанный заказ.
        """
        transaction = await self.get_transaction(client_transaction_id)

        if not transaction.address_id:
            raise BadRequestError("У транзакции нет адреса доставки")

        if transaction.order_id:
            return await self.order_service.get_by_id(transaction.order_id)

        await AddressService(self.db).validate_ownership(transaction.address_id, transaction.user_id)
        order = await self.order_service.create_from_cart(
            transaction.user_id,
            transaction.address_id,
            initial_status,
        )

        transaction.order_id = order.id
        await self.db.commit()
        logger.info(f"Order {order.id} linked to transaction {client_transaction_id}")

        return order

    async def update_payment_status(
        self,
        client_transaction_id: str,
        status: PaymentStatus | str,
        gateway_data: dict[str, Any] | None = None,
    ) -> PaymentTransaction:
        """
        Изменить статус транзакции.

        Повторная установка того же статуса ничего не меняет и не шлет писем.
        Завершенная транзакция больше не меняет статус.
        При completed заказ переводится в статус по способу оплаты.
        """
        new_status = PaymentStatus(status).value
        transaction = await self.get_transaction(client_transaction_id)

        if transaction.status == new_status:
            logger.info(f"Transaction {client_transaction_id} already {new_status}, skipping")
            return transaction

        if transaction.status == PaymentStatus.COMPLETED.value:
            logger.warning(
                f"⚠️ Transaction {client_transaction_id} is completed, ignoring change to {new_status}"
            )
            return transaction

        completing =new_status == PaymentStatus.COMPLETED.value
        if completing and not transaction.order_id:
            raise BadRequestError("У транзакции нет связанного заказа. Обратитесь в поддержку.")

        previous_status = transaction.status
        transaction.status = new_status
        if gateway_data is not None:
            transaction.gateway_response_data = gateway_data
        await self.db.commit()
        logger.info(f"Transaction {client_transaction_id}: {previous_status} -> {new_status}")

        if completing:
            target = order_status_for_provider(transaction.payment_provider)
            await self.order_service.update_status(transaction.order_id, target)

        return await self.get_transaction(client_transaction_id)
