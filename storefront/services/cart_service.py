"""Сервис для чтения корзины пользователя."""
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import BadRequestError
from storefront.models.cart import CartItem

CENT = Decimal("0.01")


def calculate_final_price(price: Decimal, discount: Decimal | None) -> Decimal:
    """Цена за единицу с учетом процентной скидки, округленная до копеек."""
    discount = Decimal(discount or 0)
    final_price = Decimal(price) * (Decimal("1") - discount / Decimal("100"))
    return final_price.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CartLine:
    product_id: uuid.UUID
    quantity: int
    price: Decimal  # Цена за единицу после скидки
    name: str = ""


@dataclass
class CartTotal:
    total: Decimal
    lines: list[CartLine] = field(default_factory=list)


class CartService:
    """Сервис для работы с корзиной (только то, что нужно оплате)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_cart_total(self, user_id: uuid.UUID) -> CartTotal:
        """
        Посчитать итог корзины.

        Raises:
            BadRequestError: корзина пуста
        """
        stmt = (
            select(CartItem)
            .options(selectinload(CartItem.product))
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.created_at)
        )
        result = await self.db.execute(stmt)
        items = list(result.scalars().all())

        if not items:
            raise BadRequestError("Корзина пуста")

        total = Decimal("0")
        lines = []
        for item in items:
            price = calculate_final_price(item.product.price, item.product.discount)
            total += price * item.quantity
            lines.append(
                CartLine(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=price,
                    name=item.product.name,
                )
            )

        return CartTotal(total=total, lines=lines)

    async def clear_cart(self, user_id: uuid.UUID) -> None:
        """Удалить все позиции корзины пользователя."""
        await self.db.execute(delete(CartItem).where(CartItem.user_id == user_id))
        await self.db.commit()
