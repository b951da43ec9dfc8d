"""Payment methods API."""
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import get_current_user_id
from storefront.database import get_db
from storefront.services.payment_method_service import PaymentMethodService

router = APIRouter()


class CreatePaymentMethodRequest(BaseModel):
    """Запрос на сохранение карты."""

    gateway_token: str = Field(..., min_length=1)
    card_brand: str = Field(..., min_length=1)
    last4_digits: str = Field(..., pattern=r"^\d{4}$")
    expiration_month: int = Field(..., ge=1, le=12)
    expiration_year: int = Field(..., ge=2024)
    is_default: bool = False


class PaymentMethodResponse(BaseModel):
    """Ответ с информацией о сохраненной карте (без токена шлюза)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    card_brand: str
    last4_digits: str
    expiration_month: int
    expiration_year: int
    is_default: bool
    created_at: datetime


@router.post("", response_model=PaymentMethodResponse)
async def create_payment_method(
    request: CreatePaymentMethodRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Сохранить карту."""
    service = PaymentMethodService(db)
    return await service.create(user_id, **request.model_dump())


@router.get("", response_model=list[PaymentMethodResponse])
async def list_payment_methods(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Список своих карт."""
    service = PaymentMethodService(db)
    return await service.list_for_user(user_id)


@router.patch("/{payment_method_id}/default", response_model=PaymentMethodResponse)
async def set_default_payment_method(
    payment_method_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Сделать карту основной."""
    service = PaymentMethodService(db)
    return await service.set_default(user_id, payment_method_id)


@router.delete("/{payment_method_id}")
async def delete_payment_method(
    payment_method_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Удалить карту."""
    service = PaymentMethodService(db)
    await service.delete(user_id, payment_method_id)
    return {"message": "Способ оплаты удален"}
