"""Курс валюты для Checkout-Preference Gateway (USD -> ARS)."""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable

import httpx

from storefront.config import settings
from storefront.core.cache import CacheService, get_cache_key_exchange_rate

logger = logging.getLogger(__name__)

# Последний удачный курс хранится в Redis неделю
REDIS_TTL_SECONDS = 7 * 24 * 60 * 60

# Курс из Redis или fallback считается свежим недолго, потом источник опрашивается снова
DEGRADED_RETRY_SECONDS = 60


@dataclass
class CachedRate:
    rate: Decimal
    fetched_at: float
    source: str  # api / redis / fallback


class ExchangeRateCache:
    """
    Кэш курса с ленивым обновлением.

    Порядок деградации при ошибке источника: последний известный курс в памяти,
    затем в Redis, затем статический fallback.
    """

    def __init__(
        self,
        source_url: str | None = None,
        ttl_seconds: int | None = None,
        fallback_rate: Decimal | None = None,
        clock: Callable[[], float] = time.monotonic,
        retry_seconds: int = DEGRADED_RETRY_SECONDS,
        timeout: float = 10.0,
        cache_service: CacheService | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        base: str = "USD",
        quote: str = "ARS",
    ):
        self.source_url = source_url or settings.exchange_rate_url
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.exchange_rate_ttl_seconds
        self.fallback_rate = Decimal(fallback_rate if fallback_rate is not None else settings.exchange_rate_fallback)
        self.clock = clock
        self.retry_seconds = retry_seconds
        self.timeout = timeout
        self.cache_service = cache_service
        self.transport = transport
        self.redis_key = get_cache_key_exchange_rate(base, quote)
        self._cached: CachedRate | None = None

    @property
    def cached(self) -> CachedRate | None:
        return self._cached

    def _is_fresh(self) -> bool:
        if self._cached is None:
            return False
        lifetime = self.ttl_seconds if self._cached.source == "api" else self.retry_seconds
        return self.clock() - self._cached.fetched_at < lifetime

    async def get(self) -> Decimal:
        """Текущий курс; обновляется, если кэш устарел."""
        if self._is_fresh():
            return self._cached.rate
        return await self.refresh()

    async def _fetch(self) -> Decimal:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(self.source_url)
            response.raise_for_status()
            data = response.json()

        rate = Decimal(str(data.get("venta") or data.get("compra") or 0))
        if rate <= 0:
            raise ValueError(f"Invalid rate received from {self.source_url}: {data}")
        return rate

    async def refresh(self) -> Decimal:
        """Запросить курс у источника, при ошибке деградировать."""
        try:
            rate = await self._fetch()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching exchange rate: {e}")
            return await self._degrade()

        self._cached = CachedRate(rate=rate, fetched_at=self.clock(), source="api")
        logger.info(f"Exchange rate fetched: {rate}")

        if self.cache_service:
            await self.cache_service.set(self.redis_key, str(rate), ttl=REDIS_TTL_SECONDS)

        return rate

    async def _degrade(self) -> Decimal:
        if self._cached is not None:
            logger.warning(f"⚠️ Using expired exchange rate: {self._cached.rate}")
            return self._cached.rate

        if self.cache_service:
            stored = await self.cache_service.get(self.redis_key)
            if stored:
                try:
                    rate = Decimal(str(stored))
                except InvalidOperation:
                    logger.error(f"❌ Invalid exchange rate in Redis: {stored!r}")
                    rate = None
                if rate is not None and rate.is_finite() and rate > 0:
                    logger.warning(f"⚠️ Using last known exchange rate from Redis: {rate}")
                    self._cached = CachedRate(rate=rate, fetched_at=self.clock(), source="redis")
                    return rate

        logger.warning(f"⚠️ Using fallback exchange rate: {self.fallback_rate}")
        self._cached = CachedRate(rate=self.fallback_rate, fetched_at=self.clock(), source="fallback")
        return self.fallback_rate

    async def convert(self, amount: Decimal) -> int:
        """Перевести сумму по курсу и округлить до целого (ARS без копеек)."""
        rate = await self.get()
        converted = Decimal(str(amount)) * rate
        return int(converted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
