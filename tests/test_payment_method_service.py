"""
Tests for saved payment methods
"""
import uuid

import pytest

from storefront.core.exceptions import NotFoundError
from storefront.services.payment_method_service import PaymentMethodService


def card(**overrides) -> dict:
    data = {
        "gateway_token": f"tok_{uuid.uuid4().hex[:8]}",
        "card_brand": "visa",
        "last4_digits": "4242",
        "expiration_month": 12,
        "expiration_year": 2030,
    }
    data.update(overrides)
    return data


class TestPaymentMethodService:

    @pytest.mark.asyncio
    async def test_only_one_default(self, db_session, test_user):
        service = PaymentMethodService(db_session)

        first = await service.create(test_user.id, **card(is_default=True))
        second = await service.create(test_user.id, **card(last4_digits="1111", is_default=True))

        methods = await service.list_for_user(test_user.id)
        assert [m.id for m in methods if m.is_default] == [second.id]
        assert methods[0].id == second.id
        assert first.id in [m.id for m in methods]

    @pytest.mark.asyncio
    async def test_set_default(self, db_session, test_user):
        service = PaymentMethodService(db_session)
        first = await service.create(test_user.id, **card(is_default=True))
        second = await service.create(test_user.id, **card(last4_digits="1111"))

        await service.set_default(test_user.id, second.id)

        methods = {m.id: m.is_default for m in await service.list_for_user(test_user.id)}
        assert methods == {first.id: False, second.id: True}

    @pytest.mark.asyncio
    async def test_list_only_own(self, db_session, test_user, other_user):
        service = PaymentMethodService(db_session)
        await service.create(test_user.id, **card())
        await service.create(other_user.id, **card())

        assert len(await service.list_for_user(test_user.id)) == 1

    @pytest.mark.asyncio
    async def test_delete(self, db_session, test_user, other_user):
        service = PaymentMethodService(db_session)
        method = await service.create(test_user.id, **card())

        with pytest.raises(NotFoundError):
            await service.delete(other_user.id, method.id)

        await service.delete(test_user.id, method.id)
        assert await service.list_for_user(test_user.id) == []

    @pytest.mark.asyncio
    async def test_set_default_for_foreign_card(self, db_session, test_user, other_user):
        service = PaymentMethodService(db_session)
        method = await service.create(test_user.id, **card())

        with pytest.raises(NotFoundError):
            await service.set_default(other_user.id, method.id)
