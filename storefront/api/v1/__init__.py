"""API v1 роутеры."""
from fastapi import APIRouter

from storefront.api.v1 import orders, payments, payment_methods

router = APIRouter()

# Подключаем все роутеры
router.include_router(payments.router, prefix="/payments", tags=["payments"])
router.include_router(payment_methods.router, prefix="/payment-methods", tags=["payment-methods"])
router.include_router(orders.router, prefix="/orders", tags=["orders"])
