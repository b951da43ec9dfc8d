"""Модель платежной транзакции."""
import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import String, Numeric, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database import Base

if TYPE_CHECKING:
    from storefront.models.order import Order


class PaymentStatus(str, enum.Enum):
    """Статусы платежной транзакции."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentProvider(str, enum.Enum):
    """Способы оплаты."""

    REDIRECT_LINK_GATEWAY = "REDIRECT_LINK_GATEWAY"  # Payphone: ссылка на платежную страницу
    CHECKOUT_PREFERENCE_GATEWAY = "CHECKOUT_PREFERENCE_GATEWAY"  # Mercado Pago: preference + webhook
    CASH_DEPOSIT = "CASH_DEPOSIT"
    CRYPTO_DEPOSIT = "CRYPTO_DEPOSIT"

    @property
    def is_gateway(self) -> bool:
        return self in (PaymentProvider.REDIRECT_LINK_GATEWAY, PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY)


class PaymentTransaction(Base):
    """Одна попытка оплаты, идентифицируется clientTransactionId."""

    __tablename__ = "payment_transactions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    client_transaction_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    order_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("orders.id"), nullable=True, index=True)
    address_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    payment_method_id: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=PaymentStatus.PENDING.value)
    payment_provider: Mapped[str] = mapped_column(
        String, nullable=False, default=PaymentProvider.REDIRECT_LINK_GATEWAY.value
    )
    gateway_response_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # Последний ответ шлюза
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order: Mapped["Order | None"] = relationship("Order")
