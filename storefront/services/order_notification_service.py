"""Email-уведомления о смене статуса заказа."""
import logging
from decimal import Decimal
from typing import Protocol

import httpx

from storefront.config import settings
from storefront.models.order import Order, OrderStatus

logger = logging.getLogger(__name__)

STATUS_SUBJECTS = {
    OrderStatus.PROCESSING.value: "Ваш заказ собирается!",
    OrderStatus.PAID_PENDING_REVIEW.value: "Ваш платеж на проверке",
    OrderStatus.SHIPPING.value: "Ваш заказ в пути!",
    OrderStatus.DELIVERED.value: "Ваш заказ доставлен!",
    OrderStatus.CANCELLED.value: "Ваш заказ отменен",
}


class EmailSender(Protocol):
    async def send(self, to_email: str, subject: str, text: str) -> None: ...


class MailgunEmailSender:
    """Отправка писем через Mailgun HTTP API."""

    def __init__(
        self,
        api_key: str | None = None,
        domain: str | None = None,
        from_email: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.mailgun_api_key
        self.domain = domain if domain is not None else settings.mailgun_domain
        self.from_email = from_email or settings.mailgun_from_email
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.domain)

    async def send(self, to_email: str, subject: str, text: str) -> None:
        if not self.is_configured:
            logger.info(f"Mailgun not configured, skipping email '{subject}' to {to_email}")
            return

        async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
            response = await client.post(
                f"https://api.mailgun.net/v3/{self.domain}/messages",
                auth=("api", self.api_key),
                data={
                    "from": self.from_email,
                    "to": to_email,
                    "subject": subject,
                    "text": text,
                },
            )
            response.raise_for_status()

        logger.info(f"Email '{subject}' sent to {to_email}")


class OrderNotificationService:
    """Сервис уведомлений покупателя о статусе заказа."""

    def __init__(self, sender: EmailSender | None = None, frontend_url: str | None = None):
        self.sender = sender or MailgunEmailSender()
        self.frontend_url = frontend_url or settings.resolved_frontend_url

    @staticmethod
    def format_items(order: Order) -> str:
        lines = []
        for item in order.items:
            name = item.product.name if item.product else str(item.product_id)
            lines.append(f"• {name} x{item.quantity} - ${Decimal(item.price):.2f}")
        return "\n".join(lines)

    def render(self, order: Order, status: str) -> str:
        short_id = str(order.id)[:8].upper()
        name = order.user.first_name or ""
        return (
            f"Здравствуйте, {name}!\n\n"
            f"Заказ #{short_id}: {STATUS_SUBJECTS[status]}\n\n"
            f"{self.format_items(order)}\n\n"
            f"Итого: ${Decimal(order.total):.2f}\n"
            f"Подробнее: {self.frontend_url}/orders/{order.id}\n"
        )

    async def send_status_change_email(
        self,
        order: Order,
        new_status: str,
        previous_status: str | None = None,
    ) -> bool:
        """
        Отправить письмо о новом статусе заказа.

        Returns:
            True, если письмо ушло отправителю; False, если для статуса письма нет
        """
        new_status = OrderStatus(new_status).value
        if previous_status is not None and OrderStatus(previous_status).value == new_status:
            return False

        if new_status not in STATUS_SUBJECTS:
            logger.info(f"No email configured for order status: {new_status}")
            return False

        await self.sender.send(order.user.email, STATUS_SUBJECTS[new_status], self.render(order, new_status))
        return True
