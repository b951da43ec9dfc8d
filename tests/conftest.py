import os
import tempfile

# Настройки читаются при импорте storefront.config, поэтому окружение задается до импортов
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="storefront-uploads-")
os.environ["MERCADOPAGO_WEBHOOK_SECRET"] = ""
os.environ["MAILGUN_API_KEY"] = ""
os.environ["ENVIRONMENT"] = "test"

from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.database import Base
from storefront.models import Address, CartItem, PaymentProvider, Product, User
from storefront.services.gateways.base import GatewayPaymentStatus, PaymentConfirmResult, PaymentInitResult
from storefront.services.gateways.registry import GatewayRegistry
from storefront.services.order_notification_service import OrderNotificationService
from storefront.services.order_service import OrderService
from storefront.services.payment_order_service import PaymentOrderService


class RecordingEmailSender:
    """Отправитель писем, который только запоминает их."""

    def __init__(self):
        self.sent = []

    async def send(self, to_email: str, subject: str, text: str) -> None:
        self.sent.append({"to": to_email, "subject": subject, "text": text})


class FakeRedirectLinkGateway:
    provider = PaymentProvider.REDIRECT_LINK_GATEWAY.value

    def __init__(self):
        self.status = "approved"
        self.link = "https://pay.example.test/checkout/pp-1"
        self.phone_error = None
        self.initiated = []
        self.phone_charges = []

    async def initiate_payment(self, amount, client_transaction_id, metadata=None):
        self.initiated.append((amount, client_transaction_id, metadata))
        return PaymentInitResult(
            payment_id="pp-1",
            redirect_url=self.link,
            payment_data={"paymentId": "pp-1", "payWithCard": self.link},
        )

    async def confirm_payment(self, payment_id, client_transaction_id):
        return PaymentConfirmResult(status_code=3, status="completed", data={"statusCode": 3})

    async def fetch_payment_status(self, payment_id, client_transaction_id=None):
        return GatewayPaymentStatus(status=self.status, external_reference=client_transaction_id)

    async def initiate_phone_charge(self, phone_number, amount, client_transaction_id):
        if self.phone_error:
            raise self.phone_error
        self.phone_charges.append((phone_number, amount, client_transaction_id))
        return {"data": {"transactionId": 9001, "status": "Pending"}}


class FakeCheckoutPreferenceGateway:
    provider = PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY.value

    def __init__(self):
        self.status = "approved"
        self.external_reference = None
        self.error = None
        self.initiated = []
        self.fetched = []

    async def initiate_payment(self, amount, client_transaction_id, metadata=None):
        if self.error:
            raise self.error
        self.initiated.append((amount, client_transaction_id, metadata))
        return PaymentInitResult(
            payment_id="pref-1",
            redirect_url="https://mp.example.test/init/pref-1",
            payment_data={"preferenceId": "pref-1", "initPoint": "https://mp.example.test/init/pref-1"},
        )

    async def confirm_payment(self, payment_id, client_transaction_id):
        return PaymentConfirmResult(status_code=2, status="pending")

    async def fetch_payment_status(self, payment_id, client_transaction_id=None):
        self.fetched.append(payment_id)
        if self.error:
            raise self.error
        return GatewayPaymentStatus(
            status=self.status,
            external_reference=self.external_reference or client_transaction_id,
        )


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    user = User(email="buyer@example.com", first_name="Анна", last_name="Иванова")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(email="other@example.com", first_name="Петр")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def test_address(db_session: AsyncSession, test_user: User) -> Address:
    address = Address(
        user_id=test_user.id,
        street="Av. Corrientes 1234",
        city="Buenos Aires",
        country="AR",
        phone="+5491100000000",
        is_default=True,
    )
    db_session.add(address)
    await db_session.commit()
    return address


@pytest.fixture
async def test_products(db_session: AsyncSession) -> list[Product]:
    products = [
        Product(name="Кофе в зернах", price=Decimal("10.00"), discount=Decimal("0"), stock=50),
        Product(name="Френч-пресс", price=Decimal("25.00"), discount=Decimal("10"), stock=10),
    ]
    db_session.add_all(products)
    await db_session.commit()
    return products


@pytest.fixture
async def test_cart(db_session: AsyncSession, test_user: User, test_products: list[Product]) -> list[CartItem]:
    """Корзина на 2 x 10.00 + 1 x 22.50 = 42.50."""
    items = [
        CartItem(
            user_id=test_user.id,
            product_id=test_products[0].id,
            quantity=2,
            created_at=datetime(2025, 1, 10, 12, 0, 0),
        ),
        CartItem(
            user_id=test_user.id,
            product_id=test_products[1].id,
            quantity=1,
            created_at=datetime(2025, 1, 10, 12, 5, 0),
        ),
    ]
    db_session.add_all(items)
    await db_session.commit()
    return items


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def notifier(email_sender: RecordingEmailSender) -> OrderNotificationService:
    return OrderNotificationService(sender=email_sender, frontend_url="http://shop.test")


@pytest.fixture
def order_service(db_session: AsyncSession, notifier: OrderNotificationService) -> OrderService:
    return OrderService(db_session, notifier)


@pytest.fixture
def payment_order_service(db_session: AsyncSession, order_service: OrderService) -> PaymentOrderService:
    return PaymentOrderService(db_session, order_service)


@pytest.fixture
def redirect_gateway() -> FakeRedirectLinkGateway:
    return FakeRedirectLinkGateway()


@pytest.fixture
def preference_gateway() -> FakeCheckoutPreferenceGateway:
    return FakeCheckoutPreferenceGateway()


@pytest.fixture
def gateways(redirect_gateway, preference_gateway) -> GatewayRegistry:
    return GatewayRegistry(
        {
            PaymentProvider.REDIRECT_LINK_GATEWAY: redirect_gateway,
            PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY: preference_gateway,
        }
    )
