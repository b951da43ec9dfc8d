"""Orders API."""
import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import get_current_admin, get_current_user_id
from storefront.database import get_db
from storefront.models.order import OrderStatus
from storefront.services.gateways.registry import GatewayRegistry, get_gateway_registry
from storefront.services.order_service import OrderService
from storefront.services.payment_transaction_service import PaymentTransactionService

router = APIRouter()


class OrderItemResponse(BaseModel):
    """Позиция заказа."""

    model_config = ConfigDict(from_attributes=True)

    product_id: uuid.UUID
    quantity: int
    price: Decimal


class OrderResponse(BaseModel):
    """Ответ с информацией о заказе."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    address_id: uuid.UUID
    total: Decimal
    status: str
    deposit_image_url: str | None = None
    items: list[OrderItemResponse] = []
    created_at: datetime


class UpdateOrderStatusRequest(BaseModel):
    """Запрос на смену статуса заказа."""

    status: OrderStatus


class PaymentLinkResponse(BaseModel):
    payment_link: str
    order_id: uuid.UUID
    total: Decimal


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Получить свой заказ."""
    service = OrderService(db)
    return await service.get_for_user(order_id, user_id)


@router.get("/{order_id}/payment-link", response_model=PaymentLinkResponse)
async def get_payment_link(
    order_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """
    Ссылка на оплату заказа в статусе pending.

    Если ссылки еще нет, она запрашивается у Redirect-Link Gateway.
    """
    service = PaymentTransactionService(db, gateways)
    return await service.get_payment_link(order_id, user_id)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    request: UpdateOrderStatusRequest,
    admin: dict = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Изменить статус заказа (только администратор). Покупатель получает письмо."""
    service = OrderService(db)
    return await service.update_status(order_id, request.status)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    admin: dict = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Отменить заказ (только администратор)."""
    service = OrderService(db)
    return await service.cancel_order(order_id)
