"""Модели заказов."""
import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import String, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database import Base

if TYPE_CHECKING:
    from storefront.models.address import Address
    from storefront.models.product import Product
    from storefront.models.user import User


class OrderStatus(str, enum.Enum):
    """Статусы заказа."""

    CREATED = "created"
    PENDING = "pending"
    PROCESSING = "processing"  # Оплата подтверждена шлюзом
    PAID_PENDING_REVIEW = "paid_pending_review"  # Депозит ждет ручной проверки
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(Base):
    """Модель заказа."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    address_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("addresses.id"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # Считается один раз при создании
    status: Mapped[str] = mapped_column(String, nullable=False, default=OrderStatus.PENDING.value)
    deposit_image_url: Mapped[str | None] = mapped_column(String, nullable=True)  # Только для cash/crypto депозитов
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )
    user: Mapped["User"] = relationship("User")
    address: Mapped["Address"] = relationship("Address")


class OrderItem(Base):
    """Модель элемента заказа. Цена фиксируется на момент создания заказа."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # Цена за единицу со скидкой

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")
