"""Модели базы данных."""
from storefront.models.user import User
from storefront.models.address import Address
from storefront.models.product import Product
from storefront.models.cart import CartItem
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.payment import PaymentTransaction, PaymentStatus, PaymentProvider
from storefront.models.payment_method import PaymentMethod

__all__ = [
    "User",
    "Address",
    "Product",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentTransaction",
    "PaymentStatus",
    "PaymentProvider",
    "PaymentMethod",
]
