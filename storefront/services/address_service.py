"""Сервис для работы с адресами доставки."""
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import NotFoundError
from storefront.models.address import Address


class AddressService:
    """Сервис для проверки адресов пользователя."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def validate_ownership(self, address_id: uuid.UUID, user_id: uuid.UUID) -> Address:
        """Вернуть адрес, если он существует и принадлежит пользователю."""
        stmt = select(Address).where(Address.id == address_id, Address.user_id == user_id)
        result = await self.db.execute(stmt)
        address = result.scalar_one_or_none()

        if not address:
            raise NotFoundError("Адрес не найден")

        return address
