"""Сервис для работы с сохраненными способами оплаты."""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import NotFoundError
from storefront.models.payment_method import PaymentMethod

logger = logging.getLogger(__name__)


class PaymentMethodService:
    """Сервис для работы со способами оплаты пользователя."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _unset_default(self, user_id: uuid.UUID) -> None:
        await self.db.execute(
            update(PaymentMethod)
            .where(PaymentMethod.user_id == user_id, PaymentMethod.is_default == True)  # noqa: E712
            .values(is_default=False)
        )

    async def _get_owned(self, user_id: uuid.UUID, payment_method_id: uuid.UUID) -> PaymentMethod:
        stmt = select(PaymentMethod).where(
            PaymentMethod.id == payment_method_id,
            PaymentMethod.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        payment_method = result.scalar_one_or_none()
        if not payment_method:
            raise NotFoundError("Способ оплаты не найден")
        return payment_method

    async def create(
        self,
        user_id: uuid.UUID,
        gateway_token: str,
        card_brand: str,
        last4_digits: str,
        expiration_month: int,
        expiration_year: int,
        is_default: bool = False,
    ) -> PaymentMethod:
        """Сохранить карту. Новая карта по умолчанию снимает флаг с остальных."""
        if is_default:
            await self._unset_default(user_id)

        payment_method = PaymentMethod(
            user_id=user_id,
            gateway_token=gateway_token,
            card_brand=card_brand,
            last4_digits=last4_digits,
            expiration_month=expiration_month,
            expiration_year=expiration_year,
            is_default=is_default,
        )
        self.db.add(payment_method)
        await self.db.commit()
        await self.db.refresh(payment_method)
        return payment_method

    async def list_for_user(self, user_id: uuid.UUID) -> list[PaymentMethod]:
        """Карты пользователя: сначала карта по умолчанию, затем новые."""
        stmt = (
            select(PaymentMethod)
            .where(PaymentMethod.user_id == user_id)
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def set_default(self, user_id: uuid.UUID, payment_method_id: uuid.UUID) -> PaymentMethod:
        payment_method = await self._get_owned(user_id, payment_method_id)

        await self._unset_default(user_id)
        payment_method.is_default = True
        await self.db.commit()
        await self.db.refresh(payment_method)
        return payment_method

    async def delete(self, user_id: uuid.UUID, payment_method_id: uuid.UUID) -> None:
        payment_method = await self._get_owned(user_id, payment_method_id)
        await self.db.delete(payment_method)
        await self.db.commit()
        logger.info(f"Payment method {payment_method_id} deleted by user {user_id}")
