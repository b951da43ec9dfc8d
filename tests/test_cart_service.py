"""
Tests for cart totals
"""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from storefront.core.exceptions import BadRequestError
from storefront.models import CartItem
from storefront.services.cart_service import CartService, calculate_final_price


class TestCalculateFinalPrice:

    def test_no_discount(self):
        assert calculate_final_price(Decimal("10.00"), Decimal("0")) == Decimal("10.00")

    def test_none_discount(self):
        assert calculate_final_price(Decimal("7.50"), None) == Decimal("7.50")

    def test_percentage_discount_rounds_half_up(self):
        # 9.99 * 0.85 = 8.4915
        assert calculate_final_price(Decimal("9.99"), Decimal("15")) == Decimal("8.49")
        # 0.05 * 0.9 = 0.045
        assert calculate_final_price(Decimal("0.05"), Decimal("10")) == Decimal("0.05")


class TestCartService:

    @pytest.mark.asyncio
    async def test_get_cart_total(self, db_session, test_user, test_cart):
        cart = await CartService(db_session).get_cart_total(test_user.id)

        assert cart.total == Decimal("42.50")
        assert len(cart.lines) == 2
        prices = sorted(line.price for line in cart.lines)
        assert prices == [Decimal("10.00"), Decimal("22.50")]

    @pytest.mark.asyncio
    async def test_empty_cart_raises(self, db_session, test_user):
        with pytest.raises(BadRequestError) as exc_info:
            await CartService(db_session).get_cart_total(test_user.id)

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_other_users_cart_not_counted(self, db_session, test_cart):
        with pytest.raises(BadRequestError):
            await CartService(db_session).get_cart_total(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_clear_cart(self, db_session, test_user, test_cart):
        await CartService(db_session).clear_cart(test_user.id)

        result = await db_session.execute(select(CartItem).where(CartItem.user_id == test_user.id))
        assert result.scalars().all() == []
