"""Webhook и ручная сверка платежей со шлюзом."""
import hashlib
import hmac
import logging
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.models.payment import PaymentTransaction, PaymentStatus, PaymentProvider
from storefront.services.gateways.registry import GatewayRegistry
from storefront.services.payment_order_service import PaymentOrderService

logger = logging.getLogger(__name__)

PENDING_GATEWAY_STATUSES = {"pending", "in_process"}
FAILED_GATEWAY_STATUSES = {"rejected", "cancelled", "refunded"}


def parse_signature_header(header: str) -> dict[str, str]:
    """Разобрать x-signature вида `ts=...,v1=...`."""
    parts = {}
    for chunk in header.split(","):
        key, sep, value = chunk.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_signature(
    signature_header: str | None,
    request_id: str | None,
    data_id: str,
    secret: str,
) -> bool:
    """Проверить HMAC-SHA256 подпись уведомления Mercado Pago."""
    if not signature_header:
        return False

    parts = parse_signature_header(signature_header)
    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        return False

    manifest = f"id:{data_id.lower()};request-id:{request_id or ''};ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


def extract_payment_id(query: Mapping[str, str], body: Any) -> str | None:
    """ID платежа из query (`data.id` или `id`) или из тела (`data.id`)."""
    payment_id = query.get("data.id") or query.get("id")
    if not payment_id and isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, dict) and data.get("id") is not None:
            payment_id = data["id"]
    return str(payment_id) if payment_id else None


def extract_topic(query: Mapping[str, str], body: Any) -> str | None:
    topic = query.get("type") or query.get("topic")
    if not topic and isinstance(body, dict):
        topic = body.get("type") or body.get("topic")
    return topic


class PaymentWebhookService:
    """Сверка локальных транзакций с состоянием на стороне шлюза."""

    def __init__(
        self,
        db: AsyncSession,
        gateways: GatewayRegistry,
        payment_order_service: PaymentOrderService | None = None,
        webhook_secret: str | None = None,
    ):
        self.db = db
        self.gateways = gateways
        self.payment_order_service = payment_order_service or PaymentOrderService(db)
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.mercadopago_webhook_secret

    async def _find_transaction(self, client_transaction_id: str) -> PaymentTransaction | None:
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.client_transaction_id == client_transaction_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def handle_webhook(self, gateway_payment_id: str) -> None:
        """
        Обработать push-уведомление Checkout-Preference Gateway.

        Только approved переводит транзакцию в completed, остальные статусы игнорируются.
        """
        gateway = self.gateways.get(PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY)
        payment = await gateway.fetch_payment_status(gateway_payment_id)
        logger.info(
            f"Webhook payment {gateway_payment_id}: status={payment.status}, "
            f"external_reference={payment.external_reference}"
        )

        if not payment.external_reference:
            logger.info(f"Payment {gateway_payment_id} has no external_reference, skipping")
            return

        transaction = await self._find_transaction(payment.external_reference)
        if not transaction:
            logger.warning(f"⚠️ Transaction not found for external_reference: {payment.external_reference}")
            return

        if payment.status == "approved":
            await self.payment_order_service.update_payment_status(
                payment.external_reference,
                PaymentStatus.COMPLETED,
            )
            logger.info(f"✅ Transaction {payment.external_reference} completed via webhook")
        else:
            # TODO: решить, должен ли rejected из webhook переводить транзакцию в failed, как при ручной сверке
            logger.info(f"Webhook status '{payment.status}' ignored for {payment.external_reference}")

    async def process_notification(
        self,
        query: Mapping[str, str],
        body: Any,
        headers: Mapping[str, str],
    ) -> dict[str, Any]:
        """
        Разобрать уведомление и обработать его. Никогда не выбрасывает исключений.

        Returns:
            {"received": True, "processed": bool}
        """
        try:
            topic = extract_topic(query, body)
            if topic and topic != "payment":
                logger.info(f"Webhook topic '{topic}' ignored")
                return {"received": True, "processed": False}

            payment_id = extract_payment_id(query, body)
            if not payment_id:
                logger.warning("⚠️ Webhook without payment id")
                return {"received": True, "processed": False}

            if self.webhook_secret:
                if not verify_signature(
                    headers.get("x-signature"),
                    headers.get("x-request-id"),
                    payment_id,
                    self.webhook_secret,
                ):
                    logger.error(f"❌ Invalid webhook signature for payment {payment_id}")
                    return {"received": True, "processed": False}
            else:
                logger.warning("⚠️ Webhook secret not configured - skipping signature validation")

            await self.handle_webhook(payment_id)
            return {"received": True, "processed": True}
        except Exception as e:
            await self.db.rollback()
            logger.error(f"❌ Error processing webhook: {e}", exc_info=True)
            return {"received": True, "processed": False}

    async def verify_and_update(
        self,
        gateway_payment_id: str,
        client_transaction_id: str,
        provider: PaymentProvider | str = PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY,
    ) -> dict[str, Any]:
        """
        Сверить платеж со шлюзом и обновить транзакцию. Никогда не выбрасывает исключений.

        Returns:
            {"status": ..., "updated": bool, "message": ...}
        """
        try:
            gateway = self.gateways.get(provider)
            payment = await gateway.fetch_payment_status(gateway_payment_id, client_transaction_id)
            logger.info(f"Verify {client_transaction_id}: gateway status={payment.status}")

            transaction = await self._find_transaction(client_transaction_id)
            if not transaction:
                return {"status": "not_found", "updated": False, "message": "Транзакция не найдена"}

            if transaction.status == PaymentStatus.COMPLETED.value:
                return {
                    "status": "already_completed",
                    "updated": False,
                    "message": "Платеж уже был обработан",
                }

            if payment.status == "approved":
                await self.payment_order_service.update_payment_status(client_transaction_id, PaymentStatus.COMPLETED)
                return {"status": "approved", "updated": True, "message": "Платеж подтвержден"}

            if payment.status in PENDING_GATEWAY_STATUSES:
                return {"status": "pending", "updated": False, "message": "Платеж ожидает подтверждения"}

            if payment.status in FAILED_GATEWAY_STATUSES:
                await self.payment_order_service.update_payment_status(client_transaction_id, PaymentStatus.FAILED)
                return {"status": payment.status, "updated": True, "message": "Платеж отклонен или отменен"}

            return {"status": "unknown", "updated": False, "message": "Неизвестный статус платежа"}
        except Exception as e:
            await self.db.rollback()
            logger.error(f"❌ Error verifying payment {gateway_payment_id}: {e}", exc_info=True)
            return {"status": "error", "updated": False, "message": str(e)}
