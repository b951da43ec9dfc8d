"""Оплата депозитом (наличные, криптовалюта) с ручной проверкой."""
import logging
import uuid
from dataclasses import dataclass

from fastapi import UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.order import Order, OrderStatus
from storefront.models.payment import PaymentTransaction, PaymentStatus, PaymentProvider
from storefront.services.address_service import AddressService
from storefront.services.cart_service import CartService
from storefront.services.gateways.registry import GatewayRegistry
from storefront.services.image_storage import ImageStorageService
from storefront.services.order_service import OrderService
from storefront.services.payment_order_service import PaymentOrderService
from storefront.services.payment_transaction_service import PaymentTransactionService

logger = logging.getLogger(__name__)


@dataclass
class DepositResult:
    transaction: PaymentTransaction
    order: Order
    deposit_image_url: str


class PaymentDepositService:
    """
    Депозит с фото подтверждения.

    Шлюз не участвует: заказ уходит в paid_pending_review, дальше его проверяет администратор.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: PaymentProvider,
        image_storage: ImageStorageService | None = None,
        order_service: OrderService | None = None,
    ):
        if provider.is_gateway:
            raise ValueError(f"{provider.value} is not a deposit provider")
        self.db = db
        self.provider = provider
        self.image_storage = image_storage or ImageStorageService()
        self.order_service = order_service or OrderService(db)
        self.payment_order_service = PaymentOrderService(db, self.order_service)
        self.transactions = PaymentTransactionService(db, GatewayRegistry({}))

    async def _deposit_for_existing_order(
        self,
        user_id: uuid.UUID,
        address_id: uuid.UUID,
        client_transaction_id: str,
        order_id: uuid.UUID,
    ) -> tuple[PaymentTransaction, Order]:
        order = await self.transactions.get_pending_order(order_id, user_id)
        await self.transactions.delete_pending_for_order(order.id, user_id)

        transaction = PaymentTransaction(
            user_id=user_id,
            order_id=order.id,
            client_transaction_id=client_transaction_id,
            amount=order.total,
            status=PaymentStatus.PENDING.value,
            payment_provider=self.provider.value,
            address_id=address_id,
        )
        await self.transactions.save_new(transaction)
        return transaction, order

    async def _deposit_for_new_order(
        self,
        user_id: uuid.UUID,
        address_id: uuid.UUID,
        client_transaction_id: str,
    ) -> tuple[PaymentTransaction, Order]:
        cart = await CartService(self.db).get_cart_total(user_id)

        transaction = PaymentTransaction(
            user_id=user_id,
            client_transaction_id=client_transaction_id,
            amount=cart.total,
            status=PaymentStatus.PENDING.value,
            payment_provider=self.provider.value,
            address_id=address_id,
        )
        await self.transactions.save_new(transaction)

        order = await self.payment_order_service.create_order_from_transaction(
            client_transaction_id,
            OrderStatus.PENDING,
        )
        return transaction, order

    async def process_deposit(
        self,
        user_id: uuid.UUID,
        address_id: uuid.UUID,
        client_transaction_id: str,
        proof_image: UploadFile,
        existing_order_id: uuid.UUID | None = None,
    ) -> DepositResult:
        """
        Зарегистрировать депозит.

        Ошибка загрузки фото прерывает операцию; созданные транзакция и заказ остаются pending.
        """
        await AddressService(self.db).validate_ownership(address_id, user_id)

        if existing_order_id:
            transaction, order = await self._deposit_for_existing_order(
                user_id, address_id, client_transaction_id, existing_order_id
            )
        else:
            transaction, order = await self._deposit_for_new_order(user_id, address_id, client_transaction_id)

        deposit_image_url = await self.image_storage.upload(proof_image)

        await self.order_service.set_deposit_image(order.id, deposit_image_url)
        order = await self.order_service.update_status(order.id, OrderStatus.PAID_PENDING_REVIEW)
        logger.info(
            f"✅ {self.provider.value} registered: transaction={client_transaction_id}, "
            f"order={order.id}, image={deposit_image_url}"
        )

        transaction = await self.payment_order_service.get_transaction(client_transaction_id)
        return DepositResult(transaction=transaction, order=order, deposit_image_url=deposit_image_url)


class CashDepositService(PaymentDepositService):
    def __init__(self, db: AsyncSession, **kwargs):
        super().__init__(db, PaymentProvider.CASH_DEPOSIT, **kwargs)


class CryptoDepositService(PaymentDepositService):
    def __init__(self, db: AsyncSession, **kwargs):
        super().__init__(db, PaymentProvider.CRYPTO_DEPOSIT, **kwargs)
