"""Скрипт для ручной сверки платежа со шлюзом (если webhook потерялся)."""
import argparse
import asyncio
import logging

from storefront.database import AsyncSessionLocal
from storefront.models.payment import PaymentProvider
from storefront.services.gateways.registry import get_gateway_registry
from storefront.services.payment_webhook_service import PaymentWebhookService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Сверить платеж со шлюзом и обновить транзакцию")
    parser.add_argument("payment_id", help="ID платежа на стороне шлюза")
    parser.add_argument("client_transaction_id", help="clientTransactionId локальной транзакции")
    parser.add_argument(
        "--provider",
        choices=[PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY.value, PaymentProvider.REDIRECT_LINK_GATEWAY.value],
        default=PaymentProvider.CHECKOUT_PREFERENCE_GATEWAY.value,
    )
    return parser.parse_args(argv)


async def main(argv=None) -> dict:
    """Сверить платеж."""
    args = parse_args(argv)
    async with AsyncSessionLocal() as db:
        service = PaymentWebhookService(db, get_gateway_registry())
        result = await service.verify_and_update(args.payment_id, args.client_transaction_id, args.provider)

    logger.info(f"Результат сверки {args.client_transaction_id}: {result}")
    return result


if __name__ == "__main__":
    outcome = asyncio.run(main())
    if outcome["status"] == "error":
        raise SystemExit(1)
