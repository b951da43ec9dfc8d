"""
Tests for payment transaction service
"""
import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from storefront.core.exceptions import (
    BadRequestError,
    DuplicateTransactionIdError,
    GatewayError,
    NotFoundError,
)
from storefront.models import CartItem, Order, OrderStatus, PaymentProvider, PaymentStatus, PaymentTransaction
from storefront.services.payment_transaction_service import PaymentTransactionService


async def count(db_session, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model)
    if criteria:
        stmt = stmt.where(*criteria)
    result = await db_session.execute(stmt)
    return result.scalar_one()


async def add_transaction(db_session, user_id, ctid, created_at, status=PaymentStatus.PENDING, order_id=None):
    transaction = PaymentTransaction(
        user_id=user_id,
        client_transaction_id=ctid,
        amount=Decimal("5.00"),
        status=status.value,
        order_id=order_id,
        created_at=created_at,
    )
    db_session.add(transaction)
    await db_session.commit()
    return transaction


class TestCreateTransaction:

    @pytest.mark.asyncio
    async def test_from_cart_without_order(self, db_session, gateways, test_user, test_address, test_cart):
        service = PaymentTransactionService(db_session, gateways)

        result = await service.create_transaction(test_user.id, "ctid-1", address_id=test_address.id)

        transaction = result.transaction
        assert transaction.amount == Decimal("42.50")
        assert transaction.status == PaymentStatus.PENDING.value
        assert transaction.order_id is None
        assert transaction.address_id == test_address.id
        assert transaction.payment_provider == PaymentProvider.REDIRECT_LINK_GATEWAY.value
        assert result.preference_id is None
        # Корзина очищается только при создании заказа
        assert await count(db_session, CartItem, CartItem.user_id == test_user.id) == 2

    @pytest.mark.asyncio
    async def test_address_required(self, db_session, gateways, test_user, test_cart):
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(BadRequestError):
            await service.create_transaction(test_user.id, "ctid-1")

    @pytest.mark.asyncio
    async def test_foreign_address_rejected(self, db_session, gateways, other_user, test_address):
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(NotFoundError):
            await service.create_transaction(other_user.id, "ctid-1", address_id=test_address.id)

    @pytest.mark.asyncio
    async def test_deposit_provider_requires_payment_method(self, db_session, gateways, test_user, test_address, test_cart):
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(BadRequestError):
            await service.create_transaction(
                test_user.id,
                "ctid-1",
                address_id=test_address.id,
                payment_method_id="payphone-default",
                payment_provider=PaymentProvider.CASH_DEPOSIT,
            )

    @pytest.mark.asyncio
    async def test_sentinel_payment_method_is_stored_as_none(self, db_session, gateways, test_user, test_address, test_cart):
        service = PaymentTransactionService(db_session, gateways)

        result = await service.create_transaction(
            test_user.id, "ctid-1", address_id=test_address.id, payment_method_id=""
        )

        assert result.transaction.payment_method_id is None

    @pytest.mark.asyncio
    async def test_duplicate_client_transaction_id(self, db_session, gateways, test_user, test_address, test_cart):
        user_id, address_id = test_user.id, test_address.id
        service = PaymentTransactionService(db_session, gateways)
        await service.create_transaction(user_id, "ctid-dup", address_id=address_id)

        with pytest.raises(DuplicateTransactionIdError):
            await service.create_transaction(user_id, "ctid-dup", address_id=address_id)

        assert await count(
            db_session, PaymentTransaction, PaymentTransaction.client_transaction_id == "ctid-dup"
        ) == 1

    @pytest.mark.asyncio
    async def test_checkout_preference_returns_redirect(
        self, db_session, gateways, preference_gateway, test_user, test_address, test_cart
    ):
        service = PaymentTransactionService(db_session, gateways)

        result = await service.create_transaction(
            test_user.id,
            "ctid-mp",
            address_id=test_address.id,
            payment_provider=PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY,
        )

        assert result.preference_id == "pref-1"
        assert result.init_point == "https://mp.example.test/init/pref-1"
        assert result.transaction.gateway_response_data["preferenceId"] == "pref-1"
        assert preference_gateway.initiated[0][:2] == (Decimal("42.50"), "ctid-mp")

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_transaction(
        self, db_session, gateways, preference_gateway, test_user, test_address, test_cart
    ):
        preference_gateway.error = GatewayError()
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(GatewayError):
            await service.create_transaction(
                test_user.id,
                "ctid-mp",
                address_id=test_address.id,
                payment_provider=PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY,
            )

        transaction = await service.get_by_client_transaction_id("ctid-mp")
        assert transaction.status == PaymentStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_for_existing_order_uses_order_total(self, db_session, gateways, order_service, test_user, test_address, test_cart):
        order = await order_service.create_from_cart(test_user.id, test_address.id)
        service = PaymentTransactionService(db_session, gateways)

        result = await service.create_transaction(test_user.id, "ctid-2", order_id=order.id)

        assert result.transaction.order_id == order.id
        assert result.transaction.amount == order.total
        assert result.transaction.address_id == test_address.id
        assert result.order.id == order.id

    @pytest.mark.asyncio
    async def test_for_foreign_order_rejected(self, db_session, gateways, order_service, test_user, other_user, test_address, test_cart):
        order = await order_service.create_from_cart(test_user.id, test_address.id)
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(NotFoundError):
            await service.create_transaction(other_user.id, "ctid-2", order_id=order.id)


class TestCreateTransactionAndOrder:

    @pytest.mark.asyncio
    async def test_creates_linked_order_and_clears_cart(self, db_session, gateways, test_user, test_address, test_cart):
        service = PaymentTransactionService(db_session, gateways)

        result = await service.create_transaction_and_order(test_user.id, "ctid-1", address_id=test_address.id)

        assert result.order is not None
        assert result.order.status == OrderStatus.PENDING.value
        assert result.order.total == Decimal("42.50")
        assert len(result.order.items) == 2
        assert result.transaction.order_id == result.order.id
        assert result.transaction.amount == result.order.total
        assert await count(db_session, CartItem, CartItem.user_id == test_user.id) == 0

    @pytest.mark.asyncio
    async def test_duplicate_creates_no_order(self, db_session, gateways, test_user, test_address, test_cart):
        user_id, address_id = test_user.id, test_address.id
        service = PaymentTransactionService(db_session, gateways)
        await service.create_transaction(user_id, "ctid-dup", address_id=address_id)

        with pytest.raises(DuplicateTransactionIdError):
            await service.create_transaction_and_order(user_id, "ctid-dup", address_id=address_id)

        assert await count(db_session, Order, Order.user_id == user_id) == 0
        assert await count(db_session, CartItem, CartItem.user_id == user_id) == 2

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_cart(
        self, db_session, gateways, preference_gateway, test_user, test_address, test_cart
    ):
        user_id = test_user.id
        preference_gateway.error = GatewayError()
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(GatewayError):
            await service.create_transaction_and_order(
                user_id,
                "ctid-mp",
                address_id=test_address.id,
                payment_provider=PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY,
            )

        assert await count(db_session, CartItem, CartItem.user_id == user_id) == 2
        transaction = await service.get_by_client_transaction_id("ctid-mp")
        assert transaction.order_id is not None

    @pytest.mark.asyncio
    async def test_with_order_id_delegates(self, db_session, gateways, order_service, test_user, test_address, test_cart):
        order = await order_service.create_from_cart(test_user.id, test_address.id, clear_cart=False)
        service = PaymentTransactionService(db_session, gateways)

        result = await service.create_transaction_and_order(test_user.id, "ctid-3", order_id=order.id)

        assert result.transaction.order_id == order.id
        assert await count(db_session, Order, Order.user_id == test_user.id) == 1
        assert await count(db_session, CartItem, CartItem.user_id == test_user.id) == 2


class TestPendingPayments:

    @pytest.mark.asyncio
    async def test_newest_first_and_only_own_pending(self, db_session, gateways, test_user, other_user):
        await add_transaction(db_session, test_user.id, "old", datetime(2025, 1, 1))
        await add_transaction(db_session, test_user.id, "new", datetime(2025, 1, 3))
        await add_transaction(db_session, test_user.id, "done", datetime(2025, 1, 4), status=PaymentStatus.COMPLETED)
        await add_transaction(db_session, other_user.id, "foreign", datetime(2025, 1, 5))
        service = PaymentTransactionService(db_session, gateways)

        pending = await service.get_user_pending_payments(test_user.id)

        assert [t.client_transaction_id for t in pending] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_delete_own_pending(self, db_session, gateways, test_user):
        transaction = await add_transaction(db_session, test_user.id, "ctid-1", datetime(2025, 1, 1))
        service = PaymentTransactionService(db_session, gateways)

        await service.delete_user_pending_payment(test_user.id, transaction.id)

        assert await count(db_session, PaymentTransaction) == 0

    @pytest.mark.asyncio
    async def test_delete_foreign_or_completed_rejected(self, db_session, gateways, test_user, other_user):
        foreign = await add_transaction(db_session, other_user.id, "foreign", datetime(2025, 1, 1))
        completed = await add_transaction(
            db_session, test_user.id, "done", datetime(2025, 1, 1), status=PaymentStatus.COMPLETED
        )
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(NotFoundError):
            await service.delete_user_pending_payment(test_user.id, foreign.id)
        with pytest.raises(NotFoundError):
            await service.delete_user_pending_payment(test_user.id, completed.id)

        assert await count(db_session, PaymentTransaction) == 2

    @pytest.mark.asyncio
    async def test_verify_multiple_returns_only_own(self, db_session, gateways, test_user, other_user):
        await add_transaction(db_session, test_user.id, "a", datetime(2025, 1, 1))
        await add_transaction(db_session, test_user.id, "b", datetime(2025, 1, 2), status=PaymentStatus.FAILED)
        await add_transaction(db_session, other_user.id, "c", datetime(2025, 1, 3))
        service = PaymentTransactionService(db_session, gateways)

        found = await service.verify_multiple(["a", "b", "c", "missing"], test_user.id)

        assert sorted(t.client_transaction_id for t in found) == ["a", "b"]
        assert await service.verify_multiple([], test_user.id) == []


class TestRegenerate:

    @pytest.mark.asyncio
    async def test_replaces_pending_transactions(self, db_session, gateways, test_user, test_address, test_cart):
        service = PaymentTransactionService(db_session, gateways)
        first = await service.create_transaction_and_order(test_user.id, "ctid-1", address_id=test_address.id)
        order_id = first.order.id

        result = await service.regenerate_for_order(order_id, test_user.id)

        assert result.transaction.client_transaction_id != "ctid-1"
        assert result.transaction.order_id == order_id
        assert result.transaction.amount == Decimal("42.50")
        with pytest.raises(NotFoundError):
            await service.get_by_client_transaction_id("ctid-1")
        assert await count(db_session, PaymentTransaction, PaymentTransaction.order_id == order_id) == 1

    @pytest.mark.asyncio
    async def test_keeps_non_pending_transactions(self, db_session, gateways, test_user, test_address, test_cart):
        service = PaymentTransactionService(db_session, gateways)
        first = await service.create_transaction_and_order(test_user.id, "ctid-1", address_id=test_address.id)
        order_id = first.order.id
        await add_transaction(db_session, test_user.id, "ctid-2", datetime(2025, 1, 2), order_id=order_id)
        await add_transaction(
            db_session, test_user.id, "ctid-f", datetime(2025, 1, 3), status=PaymentStatus.FAILED, order_id=order_id
        )
        await add_transaction(
            db_session, test_user.id, "ctid-c", datetime(2025, 1, 4), status=PaymentStatus.COMPLETED, order_id=order_id
        )

        result = await service.regenerate_for_order(order_id, test_user.id)
        new_ctid = result.transaction.client_transaction_id

        rows = await db_session.execute(
            select(PaymentTransaction.client_transaction_id, PaymentTransaction.status).where(
                PaymentTransaction.order_id == order_id
            )
        )
        assert sorted(rows.all()) == sorted(
            [
                ("ctid-f", PaymentStatus.FAILED.value),
                ("ctid-c", PaymentStatus.COMPLETED.value),
                (new_ctid, PaymentStatus.PENDING.value),
            ]
        )
        assert new_ctid not in ("ctid-1", "ctid-2")

    @pytest.mark.asyncio
    async def test_only_pending_orders(self, db_session, gateways, order_service, test_user, test_address, test_cart):
        order = await order_service.create_from_cart(test_user.id, test_address.id)
        await order_service.update_status(order.id, OrderStatus.PROCESSING)
        service = PaymentTransactionService(db_session, gateways)

        with pytest.raises(NotFoundError):
            await service.regenerate_for_order(order.id, test_user.id)

    @pytest.mark.asyncio
    async def test_delete_pending_for_order_with_nothing_to_delete(self, db_session, gateways, test_user):
        service = PaymentTransactionService(db_session, gateways)

        assert await service.delete_pending_for_order(uuid.uuid4(), test_user.id) == 0


class TestPaymentLink:

    @pytest.mark.asyncio
    async def test_existing_link_returned_without_gateway_call(
        self, db_session, gateways, redirect_gateway, test_user, test_address, test_cart
    ):
        service = PaymentTransactionService(db_session, gateways)
        checkout = await service.create_transaction_and_order(
            test_user.id,
            "ctid-1",
            address_id=test_address.id,
            provider_data={"payWithCard": "https://pay.example.test/existing"},
        )

        link = await service.get_payment_link(checkout.order.id, test_user.id)

        assert link["payment_link"] == "https://pay.example.test/existing"
        assert link["total"] == Decimal("42.50")
        assert redirect_gateway.initiated == []

    @pytest.mark.asyncio
    async def test_missing_link_requested_and_saved(
        self, db_session, gateways, redirect_gateway, test_user, test_address, test_cart
    ):
        service = PaymentTransactionService(db_session, gateways)
        checkout = await service.create_transaction_and_order(test_user.id, "ctid-1", address_id=test_address.id)

        link = await service.get_payment_link(checkout.order.id, test_user.id)

        assert link["payment_link"] == redirect_gateway.link
        assert redirect_gateway.initiated[0][1] == "ctid-1"
        transaction = await service.get_by_client_transaction_id("ctid-1")
        assert transaction.gateway_response_data["payWithCard"] == redirect_gateway.link

    @pytest.mark.asyncio
    async def test_only_for_pending_orders(self, db_session, gateways, order_service, test_user, test_address, test_cart):
        service = PaymentTransactionService(db_session, gateways)
        checkout = await service.create_transaction_and_order(test_user.id, "ctid-1", address_id=test_address.id)
        await order_service.update_status(checkout.order.id, OrderStatus.CANCELLED)

        with pytest.raises(BadRequestError):
            await service.get_payment_link(checkout.order.id, test_user.id)

    @pytest.mark.asyncio
    async def test_foreign_order_hidden_unless_admin(
        self, db_session, gateways, test_user, other_user, test_address, test_cart
    ):
        service = PaymentTransactionService(db_session, gateways)
        checkout = await service.create_transaction_and_order(test_user.id, "ctid-1", address_id=test_address.id)

        with pytest.raises(NotFoundError):
            await service.get_payment_link(checkout.order.id, other_user.id)

        link = await service.get_payment_link(checkout.order.id, other_user.id, is_admin=True)
        assert link["order_id"] == checkout.order.id
