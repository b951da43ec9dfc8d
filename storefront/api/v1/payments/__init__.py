"""Payments API."""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.v1.orders import OrderResponse
from storefront.core.auth import get_current_admin, get_current_user_id
from storefront.core.exceptions import BadRequestError, NotFoundError
from storefront.database import get_db
from storefront.models.order import OrderStatus
from storefront.models.payment import PaymentProvider, PaymentStatus
from storefront.services.gateways.registry import GatewayRegistry, get_gateway_registry
from storefront.services.image_storage import ImageStorageService, get_image_storage
from storefront.services.payment_deposit_service import CashDepositService, CryptoDepositService, DepositResult
from storefront.services.payment_order_service import PaymentOrderService
from storefront.services.payment_phone_service import (
    ClientSuppliedResult,
    PaymentPhoneService,
    ServerFetchedResult,
)
from storefront.services.payment_transaction_service import CheckoutResult, PaymentTransactionService
from storefront.services.payment_webhook_service import PaymentWebhookService

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateTransactionRequest(BaseModel):
    """Запрос на создание транзакции."""

    client_transaction_id: str
    order_id: uuid.UUID | None = None
    address_id: uuid.UUID | None = None
    payment_method_id: str | None = None
    payment_provider: PaymentProvider = PaymentProvider.REDIRECT_LINK_GATEWAY
    provider_data: dict[str, Any] | None = None


class TransactionResponse(BaseModel):
    """Ответ с информацией о транзакции."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_transaction_id: str
    user_id: uuid.UUID
    order_id: uuid.UUID | None = None
    address_id: uuid.UUID | None = None
    payment_method_id: str | None = None
    amount: Decimal
    status: str
    payment_provider: str
    gateway_response_data: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime
    order: OrderResponse | None = None


class CheckoutResponse(BaseModel):
    """Транзакция, заказ и данные для перехода на страницу шлюза."""

    transaction: TransactionResponse
    order: OrderResponse | None = None
    preference_id: str | None = None
    init_point: str | None = None


class CreateOrderFromTransactionRequest(BaseModel):
    client_transaction_id: str


class UpdateStatusRequest(BaseModel):
    """Запрос на обновление статуса оплаты."""

    client_transaction_id: str
    status: PaymentStatus
    provider_data: dict[str, Any] | None = None


class RegenerateTransactionRequest(BaseModel):
    order_id: uuid.UUID
    payment_provider: PaymentProvider = PaymentProvider.REDIRECT_LINK_GATEWAY
    payment_method_id: str | None = None
    provider_data: dict[str, Any] | None = None


class VerifyMultipleRequest(BaseModel):
    client_transaction_ids: list[str]


class VerifyPaymentRequest(BaseModel):
    """Проверка платежа после возврата со страницы шлюза."""

    payment_id: str
    client_transaction_id: str
    payment_provider: PaymentProvider = PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY


class VerifyPaymentResponse(BaseModel):
    status: str
    updated: bool
    message: str | None = None


class PhonePaymentRequest(BaseModel):
    """Запрос на оплату по телефону."""

    client_transaction_id: str
    address_id: uuid.UUID | None = None
    payment_method_id: str | None = None
    phone_number: str | None = None
    provider_response: dict[str, Any] | None = None  # Ответ шлюза, уже полученный фронтендом


class PhonePaymentResponse(BaseModel):
    transaction: TransactionResponse
    gateway_response: dict[str, Any]
    order: OrderResponse | None = None


class DepositResponse(BaseModel):
    transaction: TransactionResponse
    order: OrderResponse
    deposit_image_url: str


class MessageResponse(BaseModel):
    message: str


def checkout_response(result: CheckoutResult) -> CheckoutResponse:
    return CheckoutResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        order=OrderResponse.model_validate(result.order) if result.order else None,
        preference_id=result.preference_id,
        init_point=result.init_point,
    )


def deposit_response(result: DepositResult) -> DepositResponse:
    return DepositResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        order=OrderResponse.model_validate(result.order),
        deposit_image_url=result.deposit_image_url,
    )


@router.post("/create-transaction", response_model=CheckoutResponse)
async def create_transaction(
    request: CreateTransactionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """
    Создать транзакцию.

    Для существующего заказа (order_id) или из корзины (address_id).
    Для Checkout-Preference Gateway сразу возвращается preference_id и init_point.
    """
    service = PaymentTransactionService(db, gateways)
    result = await service.create_transaction(user_id, **request.model_dump())
    return checkout_response(result)


@router.post("/create-transaction-and-order", response_model=CheckoutResponse)
async def create_transaction_and_order(
    request: CreateTransactionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Создать заказ и транзакцию из корзины. Корзина очищается."""
    service = PaymentTransactionService(db, gateways)
    result = await service.create_transaction_and_order(user_id, **request.model_dump())
    return checkout_response(result)


@router.post("/create-order-from-transaction", response_model=OrderResponse)
async def create_order_from_transaction(
    request: CreateOrderFromTransactionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Создать заказ для своей транзакции. Повторный вызов вернет тот же заказ."""
    service = PaymentOrderService(db)
    transaction = await service.get_transaction(request.client_transaction_id)
    if transaction.user_id != user_id:
        raise NotFoundError("Транзакция не найдена")

    return await service.create_order_from_transaction(request.client_transaction_id, OrderStatus.PENDING)


@router.get("/transaction/{client_transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    client_transaction_id: str,
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Получить транзакцию (публично, для страницы возврата после оплаты)."""
    service = PaymentTransactionService(db, gateways)
    return await service.get_by_client_transaction_id(client_transaction_id)


@router.get("/my-pending-payments", response_model=list[TransactionResponse])
async def get_my_pending_payments(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Ожидающие оплаты текущего пользователя, новые первыми."""
    service = PaymentTransactionService(db, gateways)
    return await service.get_user_pending_payments(user_id)


@router.delete("/my-pending-payments/{transaction_id}", response_model=MessageResponse)
async def delete_my_pending_payment(
    transaction_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Удалить свою ожидающую транзакцию."""
    service = PaymentTransactionService(db, gateways)
    await service.delete_user_pending_payment(user_id, transaction_id)
    return MessageResponse(message="Ожидающая транзакция удалена")


@router.post("/update-status", response_model=TransactionResponse)
async def update_payment_status(
    request: UpdateStatusRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Обновить статус оплаты (публично).

    Вызывается страницей возврата как запасной путь к webhook; повторный вызов безопасен.
    """
    service = PaymentOrderService(db)
    return await service.update_payment_status(
        request.client_transaction_id,
        request.status,
        request.provider_data,
    )


@router.post("/regenerate-transaction", response_model=CheckoutResponse)
async def regenerate_transaction(
    request: RegenerateTransactionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Пересоздать транзакцию для заказа в статусе pending."""
    service = PaymentTransactionService(db, gateways)
    result = await service.regenerate_for_order(
        request.order_id,
        user_id,
        request.payment_provider,
        request.payment_method_id,
        request.provider_data,
    )
    return checkout_response(result)


@router.post("/verify-multiple-transactions", response_model=list[TransactionResponse])
async def verify_multiple_transactions(
    request: VerifyMultipleRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Статусы нескольких своих транзакций."""
    service = PaymentTransactionService(db, gateways)
    return await service.verify_multiple(request.client_transaction_ids, user_id)


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """
    Сверить платеж со шлюзом (публично).

    Всегда отвечает 200: ошибки возвращаются как status="error".
    """
    service = PaymentWebhookService(db, gateways)
    return await service.verify_and_update(
        request.payment_id,
        request.client_transaction_id,
        request.payment_provider,
    )


@router.post("/phone-payment", response_model=PhonePaymentResponse)
async def phone_payment(
    request: PhonePaymentRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Оплата по номеру телефона."""
    if request.provider_response is not None:
        source = ClientSuppliedResult(response=request.provider_response)
    elif request.phone_number:
        source = ServerFetchedResult(phone_number=request.phone_number)
    else:
        raise BadRequestError("Нужен phone_number или provider_response")

    service = PaymentPhoneService(db, gateways)
    result = await service.process_phone_payment(
        user_id,
        request.client_transaction_id,
        source,
        address_id=request.address_id,
        payment_method_id=request.payment_method_id,
    )
    return PhonePaymentResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        gateway_response=result.gateway_response,
        order=OrderResponse.model_validate(result.order) if result.order else None,
    )


@router.post("/cash-deposit", response_model=DepositResponse)
async def cash_deposit(
    address_id: uuid.UUID = Form(...),
    client_transaction_id: str = Form(...),
    existing_order_id: uuid.UUID | None = Form(None),
    file: UploadFile = File(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    image_storage: ImageStorageService = Depends(get_image_storage),
):
    """Оплата наличными: фото квитанции о депозите, заказ уходит на проверку."""
    service = CashDepositService(db, image_storage=image_storage)
    result = await service.process_deposit(user_id, address_id, client_transaction_id, file, existing_order_id)
    return deposit_response(result)


@router.post("/crypto-deposit", response_model=DepositResponse)
async def crypto_deposit(
    address_id: uuid.UUID = Form(...),
    client_transaction_id: str = Form(...),
    existing_order_id: uuid.UUID | None = Form(None),
    file: UploadFile = File(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    image_storage: ImageStorageService = Depends(get_image_storage),
):
    """Оплата криптовалютой: скриншот перевода, заказ уходит на проверку."""
    service = CryptoDepositService(db, image_storage=image_storage)
    result = await service.process_deposit(user_id, address_id, client_transaction_id, file, existing_order_id)
    return deposit_response(result)


@router.post("/webhooks/mercadopago")
async def mercadopago_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """
    Webhook Checkout-Preference Gateway.

    Всегда отвечает 200, иначе шлюз будет повторять доставку.
    """
    logger.info("=== Mercado Pago Webhook received ===")

    body = None
    raw = await request.body()
    if raw:
        try:
            body = await request.json()
        except ValueError:
            logger.warning("⚠️ Webhook body is not valid JSON")

    service = PaymentWebhookService(db, gateways)
    return await service.process_notification(dict(request.query_params), body, request.headers)


@router.post("/admin/verify", response_model=VerifyPaymentResponse)
async def admin_verify_payment(
    request: VerifyPaymentRequest,
    admin: dict = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
):
    """Ручная сверка платежа администратором (если webhook потерялся)."""
    logger.info(f"Manual verification by admin {admin.get('sub')}: {request.client_transaction_id}")
    service = PaymentWebhookService(db, gateways)
    return await service.verify_and_update(
        request.payment_id,
        request.client_transaction_id,
        request.payment_provider,
    )
