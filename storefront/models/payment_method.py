"""Модель сохраненного способа оплаты."""
import uuid
from datetime import datetime

from sqlalchemy import String, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database import Base


class PaymentMethod(Base):
    """Сохраненная карта пользователя (токен шлюза, без номера карты)."""

    __tablename__ = "payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    gateway_token: Mapped[str] = mapped_column(String, nullable=False)
    card_brand: Mapped[str] = mapped_column(String, nullable=False)
    last4_digits: Mapped[str] = mapped_column(String(4), nullable=False)
    expiration_month: Mapped[int] = mapped_column(nullable=False)
    expiration_year: Mapped[int] = mapped_column(nullable=False)
    is_default: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
