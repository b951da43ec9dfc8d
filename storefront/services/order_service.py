"""Сервис для работы с заказами."""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import BadRequestError, NotFoundError
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.services.cart_service import CartService, CartTotal
from storefront.services.order_notification_service import OrderNotificationService

logger = logging.getLogger(__name__)

# Порядок статусов: заказ двигается только вперед (cancelled обрабатывается отдельно)
STATUS_RANKS = {
    OrderStatus.CREATED.value: 0,
    OrderStatus.PENDING.value: 0,
    OrderStatus.PROCESSING.value: 1,
    OrderStatus.PAID_PENDING_REVIEW.value: 1,
    OrderStatus.SHIPPING.value: 2,
    OrderStatus.DELIVERED.value: 3,
}

TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}


def check_transition(current: str, new: str) -> None:
    """Проверить, что переход статуса заказа допустим."""
    if current in TERMINAL_STATUSES:
        raise BadRequestError(f"Заказ в статусе '{current}' нельзя изменить")

    if new == OrderStatus.CANCELLED.value:
        return

    if STATUS_RANKS[new] < STATUS_RANKS[current]:
        raise BadRequestError(f"Недопустимый переход статуса заказа: {current} -> {new}")


class OrderService:
    """Сервис для работы с заказами."""

    def __init__(self, db: AsyncSession, notifier: OrderNotificationService | None = None):
        self.db = db
        self.notifier = notifier or OrderNotificationService()

    async def get_by_id(self, order_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Order:
        """
        Получить заказ с позициями и покупателем.

        Если передан user_id, заказ должен принадлежать пользователю.
        """
        stmt = (
            select(Order)
            .options(
                selectinload(Order.items).selectinload(OrderItem.product),
                selectinload(Order.user),
            )
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)

        result = await self.db.execute(stmt)
        order = result.scalar_one_or_none()

        if not order:
            raise NotFoundError("Заказ не найден")

        return order

    async def get_for_user(self, order_id: uuid.UUID, user_id: uuid.UUID) -> Order:
        return await self.get_by_id(order_id, user_id)

    def add_order(
        self,
        user_id: uuid.UUID,
        address_id: uuid.UUID,
        cart: CartTotal,
        status: OrderStatus | str = OrderStatus.PENDING,
    ) -> Order:
        """Добавить заказ в сессию без коммита. Цены позиций берутся из корзины."""
        order = Order(
            user_id=user_id,
            address_id=address_id,
            total=cart.total,
            status=OrderStatus(status).value,
        )
        for position, line in enumerate(cart.lines):
            order.items.append(
                OrderItem(
                    product_id=line.product_id,
                    position=position,
                    quantity=line.quantity,
                    price=line.price,
                )
            )
        self.db.add(order)
        return order

    async def create_from_cart(
        self,
        user_id: uuid.UUID,
        address_id: uuid.UUID,
        initial_status: OrderStatus | str = OrderStatus.PENDING,
        clear_cart: bool = True,
    ) -> Order:
        """
        Создать заказ из текущей корзины пользователя.

        Адрес должен быть проверен вызывающим кодом. После создания корзина очищается.
        """
        cart_service = CartService(self.db)
        cart = await cart_service.get_cart_total(user_id)

        order = self.add_order(user_id, address_id, cart, initial_status)
        await self.db.commit()
        logger.info(f"Order {order.id} created from cart: user={user_id}, total={cart.total}, status={order.status}")

        if clear_cart:
            await cart_service.clear_cart(user_id)

        return await self.get_by_id(order.id)

    async def update_status(
        self,
        order_id: uuid.UUID,
        status: OrderStatus | str,
        user_id: uuid.UUID | None = None,
    ) -> Order:
        """
        Изменить статус заказа и уведомить покупателя.

        Повторная установка текущего статуса ничего не делает.
        Ошибка отправки письма логируется и не влияет на результат.
        """
        new_status = OrderStatus(status).value
        order = await self.get_by_id(order_id, user_id)
        previous_status = order.status

        if previous_status == new_status:
            return order

        check_transition(previous_status, new_status)

        order.status = new_status
        await self.db.commit()
        logger.info(f"Order {order.id} status: {previous_status} -> {new_status}")

        order = await self.get_by_id(order.id)

        try:
            await self.notifier.send_status_change_email(order, new_status, previous_status)
        except Exception as e:
            logger.error(f"❌ Error sending status email for order {order.id}: {e}", exc_info=True)

        return order

    async def set_deposit_image(self, order_id: uuid.UUID, image_url: str) -> Order:
        """Сохранить ссылку на фото подтверждения депозита."""
        order = await self.get_by_id(order_id)
        order.deposit_image_url = image_url
        await self.db.commit()
        return order

    async def cancel_order(self, order_id: uuid.UUID) -> Order:
        """Отменить заказ (действие администратора)."""
        return await self.update_status(order_id, OrderStatus.CANCELLED)
