"""Сервис для работы с платежными транзакциями."""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.config import settings
from storefront.core.exceptions import BadRequestError, DuplicateTransactionIdError, NotFoundError
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.payment import PaymentTransaction, PaymentStatus, PaymentProvider
from storefront.services.address_service import AddressService
from storefront.services.cart_service import CartService
from storefront.services.gateways.base import PaymentInitResult, normalize_payment_method_id
from storefront.services.gateways.registry import GatewayRegistry
from storefront.services.order_service import OrderService

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    """Результат оформления: транзакция, заказ и данные шлюза для редиректа."""

    transaction: PaymentTransaction
    order: Order | None = None
    preference_id: str | None = None
    init_point: str | None = None


def transaction_query():
    """SELECT транзакции вместе с заказом и его позициями."""
    return (
        select(PaymentTransaction)
        .options(selectinload(PaymentTransaction.order).selectinload(Order.items).selectinload(OrderItem.product))
        .execution_options(populate_existing=True)
    )


def new_client_transaction_id() -> str:
    return uuid.uuid4().hex


class PaymentTransactionService:
    """Сервис для создания, чтения и удаления платежных транзакций."""

    def __init__(self, db: AsyncSession, gateways: GatewayRegistry):
        self.db = db
        self.gateways = gateways

    async def _reload(self, transaction_id: uuid.UUID) -> PaymentTransaction:
        result = await self.db.execute(transaction_query().where(PaymentTransaction.id == transaction_id))
        return result.scalar_one()

    async def save_new(self, *objects) -> None:
        """Сохранить новые записи; повтор clientTransactionId превращается в 409."""
        self.db.add_all(objects)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"⚠️ Duplicate clientTransactionId rejected by database: {e.orig}")
            raise DuplicateTransactionIdError() from e

    async def _request_preference(self, amount: Decimal, transaction: PaymentTransaction) -> PaymentInitResult:
        """Запросить preference у Checkout-Preference Gateway и сохранить ответ в транзакции."""
        gateway = self.gateways.get(PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY)
        result = await gateway.initiate_payment(
            amount,
            transaction.client_transaction_id,
            {"reference": settings.payment_reference},
        )
        transaction.gateway_response_data = result.payment_data
        await self.db.commit()
        return result

    async def _get_user_order(self, order_id: uuid.UUID, user_id: uuid.UUID) -> Order:
        stmt = select(Order).where(Order.id == order_id, Order.user_id == user_id)
        result = await self.db.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Заказ не найден")
        return order

    async def create_transaction(
        self,
        user_id: uuid.UUID,
        client_transaction_id: str,
        order_id: uuid.UUID | None = None,
        address_id: uuid.UUID | None = None,
        payment_method_id: str | None = None,
        payment_provider: PaymentProvider | str = PaymentProvider.REDIRECT_LINK_GATEWAY,
        provider_data: dict[str, Any] | None = None,
    ) -> CheckoutResult:
        """
        Создать транзакцию.

        С order_id: для существующего заказа пользователя на сумму заказа.
        Без order_id: на сумму корзины, заказ будет создан позже.
        """
        provider = PaymentProvider(payment_provider)
        payment_method_id = normalize_payment_method_id(payment_method_id)

        if order_id:
            return await self._create_for_existing_order(
                user_id, order_id, client_transaction_id, provider, payment_method_id, provider_data
            )

        if not address_id:
            raise BadRequestError("addressId обязателен")

        if not provider.is_gateway and not payment_method_id:
            raise BadRequestError("paymentMethodId обязателен для этого способа оплаты")

        await AddressService(self.db).validate_ownership(address_id, user_id)
        cart = await CartService(self.db).get_cart_total(user_id)

        transaction = PaymentTransaction(
            user_id=user_id,
            client_transaction_id=client_transaction_id,
            amount=cart.total,
            status=PaymentStatus.PENDING.value,
            payment_provider=provider.value,
            address_id=address_id,
            payment_method_id=payment_method_id,
            gateway_response_data=provider_data,
        )
        await self.save_new(transaction)
        logger.info(f"Transaction {client_transaction_id} created without order: amount={cart.total}, provider={provider.value}")

        result = CheckoutResult(transaction=transaction)
        if provider == PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY:
            init = await self._request_preference(cart.total, transaction)
            result.preference_id = init.payment_id
            result.init_point = init.redirect_url

        result.transaction = await self._reload(transaction.id)
        return result

    async def _create_for_existing_order(
        self,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        client_transaction_id: str,
        provider: PaymentProvider,
        payment_method_id: str | None,
        provider_data: dict[str, Any] | None,
    ) -> CheckoutResult:
        order = await self._get_user_order(order_id, user_id)

        transaction = PaymentTransaction(
            user_id=user_id,
            order_id=order.id,
            client_transaction_id=client_transaction_id,
            amount=order.total,
            status=PaymentStatus.PENDING.value,
            payment_provider=provider.value,
            address_id=order.address_id,
            payment_method_id=payment_method_id,
            gateway_response_data=provider_data,
        )
        await self.save_new(transaction)
        logger.info(f"Transaction {client_transaction_id} created for order {order.id}: amount={order.total}")

        result = CheckoutResult(transaction=transaction)
        if provider == PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY:
            init = await self._request_preference(order.total, transaction)
            result.preference_id = init.payment_id
            result.init_point = init.redirect_url

        result.transaction = await self._reload(transaction.id)
        result.order = result.transaction.order
        return result

    async def create_transaction_and_order(
        self,
        user_id: uuid.UUID,
        client_transaction_id: str,
        address_id: uuid.UUID | None = None,
        order_id: uuid.UUID | None = None,
        payment_method_id: str | None = None,
        payment_provider: PaymentProvider | str = PaymentProvider.REDIRECT_LINK_GATEWAY,
        provider_data: dict[str, Any] | None = None,
    ) -> CheckoutResult:
        """
        Создать заказ (pending) и связанную транзакцию (pending) из корзины.

        Корзина очищается после создания, кроме повторной оплаты существующего заказа.
        """
        provider = PaymentProvider(payment_provider)

        if order_id:
            return await self.create_transaction(
                user_id,
                client_transaction_id,
                order_id=order_id,
                payment_method_id=payment_method_id,
                payment_provider=provider,
                provider_data=provider_data,
            )

        if not address_id:
            raise BadRequestError("addressId обязателен")

        await AddressService(self.db).validate_ownership(address_id, user_id)
        cart_service = CartService(self.db)
        cart = await cart_service.get_cart_total(user_id)

        order_service = OrderService(self.db)
        order = order_service.add_order(user_id, address_id, cart, OrderStatus.PENDING)
        await self.db.flush()

        transaction = PaymentTransaction(
            user_id=user_id,
            order_id=order.id,
            client_transaction_id=client_transaction_id,
            amount=cart.total,
            status=PaymentStatus.PENDING.value,
            payment_provider=provider.value,
            address_id=address_id,
            payment_method_id=normalize_payment_method_id(payment_method_id),
            gateway_response_data=provider_data,
        )
        await self.save_new(transaction)
        logger.info(
            f"Order {order.id} and transaction {client_transaction_id} created: "
            f"total={cart.total}, provider={provider.value}"
        )

        result = CheckoutResult(transaction=transaction)
        if provider == PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY:
            init = await self._request_preference(cart.total, transaction)
            result.preference_id = init.payment_id
            result.init_point = init.redirect_url

        await cart_service.clear_cart(user_id)

        result.transaction = await self._reload(transaction.id)
        result.order = result.transaction.order
        return result

    async def get_by_client_transaction_id(self, client_transaction_id: str) -> PaymentTransaction:
        result = await self.db.execute(
            transaction_query().where(PaymentTransaction.client_transaction_id == client_transaction_id)
        )
        transaction = result.scalar_one_or_none()

        if not transaction:
            raise NotFoundError(f"Транзакция с clientTransactionId '{client_transaction_id}' не найдена")

        return transaction

    async def get_user_pending_payments(self, user_id: uuid.UUID) -> list[PaymentTransaction]:
        """Ожидающие оплаты пользователя, новые первыми."""
        stmt = (
            transaction_query()
            .where(
                PaymentTransaction.user_id == user_id,
                PaymentTransaction.status == PaymentStatus.PENDING.value,
            )
            .order_by(PaymentTransaction.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_user_pending_payment(self, user_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.id == transaction_id,
            PaymentTransaction.user_id == user_id,
            PaymentTransaction.status == PaymentStatus.PENDING.value,
        )
        result = await self.db.execute(stmt)
        transaction = result.scalar_one_or_none()

        if not transaction:
            raise NotFoundError(
                f"Ожидающая транзакция '{transaction_id}' не найдена или не принадлежит пользователю"
            )

        await self.db.delete(transaction)
        await self.db.commit()
        logger.info(f"Pending transaction {transaction_id} deleted by user {user_id}")

    async def delete_pending_for_order(self, order_id: uuid.UUID, user_id: uuid.UUID) -> int:
        """Удалить ожидающие транзакции заказа. Ноль удаленных строк не ошибка."""
        stmt = delete(PaymentTransaction).where(
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.user_id == user_id,
            PaymentTransaction.status == PaymentStatus.PENDING.value,
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Deleted {result.rowcount} pending transactions for order {order_id}")
        return result.rowcount or 0

    async def get_pending_order(self, order_id: uuid.UUID, user_id: uuid.UUID) -> Order:
        stmt = select(Order).where(
            Order.id == order_id,
            Order.user_id == user_id,
            Order.status == OrderStatus.PENDING.value,
        )
        result = await self.db.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Заказ не найден или не в статусе pending")
        return order

    async def regenerate_for_order(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
        payment_provider: PaymentProvider | str = PaymentProvider.REDIRECT_LINK_GATEWAY,
        payment_method_id: str | None = None,
        provider_data: dict[str, Any] | None = None,
    ) -> CheckoutResult:
        """
        Пересоздать транзакцию для заказа в статусе pending.

        Старые ожидающие транзакции заказа удаляются, новая получает новый clientTransactionId.
        """
        provider = PaymentProvider(payment_provider)
        order = await self.get_pending_order(order_id, user_id)

        await self.delete_pending_for_order(order.id, user_id)

        transaction = PaymentTransaction(
            user_id=user_id,
            order_id=order.id,
            client_transaction_id=new_client_transaction_id(),
            amount=order.total,
            status=PaymentStatus.PENDING.value,
            payment_provider=provider.value,
            address_id=order.address_id,
            payment_method_id=normalize_payment_method_id(payment_method_id),
            gateway_response_data=provider_data,
        )
        await self.save_new(transaction)
        logger.info(f"Transaction regenerated for order {order.id}: {transaction.client_transaction_id}")

        result = CheckoutResult(transaction=transaction)
        if provider == PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY:
            init = await self._request_preference(order.total, transaction)
            result.preference_id = init.payment_id
            result.init_point = init.redirect_url

        result.transaction = await self._reload(transaction.id)
        result.order = result.transaction.order
        return result

    async def verify_multiple(self, client_transaction_ids: list[str], user_id: uuid.UUID) -> list[PaymentTransaction]:
        """Транзакции пользователя по списку clientTransactionId; чужие не возвращаются."""
        if not client_transaction_ids:
            return []

        stmt = transaction_query().where(
            PaymentTransaction.client_transaction_id.in_(client_transaction_ids),
            PaymentTransaction.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_payment_link(self, order_id: uuid.UUID, user_id: uuid.UUID, is_admin: bool = False) -> dict:
        """
        Ссылка на платежную страницу Redirect-Link Gateway для заказа в статусе pending.

        Если в последней транзакции ссылки нет, она запрашивается у шлюза и сохраняется.
        """
        stmt = select(Order).where(Order.id == order_id)
        if not is_admin:
            stmt = stmt.where(Order.user_id == user_id)
        result = await self.db.execute(stmt)
        order = result.scalar_one_or_none()

        if not order:
            raise NotFoundError("Заказ не найден")

        if order.status != OrderStatus.PENDING.value:
            raise BadRequestError("Ссылка на оплату доступна только для заказов в статусе pending")

        stmt = (
            select(PaymentTransaction)
            .where(
                PaymentTransaction.order_id == order.id,
                PaymentTransaction.payment_provider == PaymentProvider.REDIRECT_LINK_GATEWAY.value,
            )
            .order_by(PaymentTransaction.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        transaction = result.scalar_one_or_none()

        if not transaction:
            raise NotFoundError("Транзакция для этого заказа не найдена")

        data = dict(transaction.gateway_response_data or {})
        if not data.get("payWithCard"):
            gateway = self.gateways.get(PaymentProvider.REDIRECT_LINK_GATEWAY)
            init = await gateway.initiate_payment(
                order.total,
                transaction.client_transaction_id,
                {"reference": f"Order {order.id}"},
            )
            if not init.redirect_url:
                raise BadRequestError("Платежный шлюз не вернул ссылку на оплату")

            data.update(init.payment_data or {})
            data["payWithCard"] = init.redirect_url
            data["paymentId"] = init.payment_id
            transaction.gateway_response_data = data
            await self.db.commit()

        return {
            "payment_link": data["payWithCard"],
            "order_id": order.id,
            "total": order.total,
        }
