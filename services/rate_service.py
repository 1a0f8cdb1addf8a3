# services/rate_service.py
import asyncio
import logging
import time
from decimal import Decimal
from typing import Callable, Optional

import aiohttp

logger = logging.getLogger(__name__)

COINGECKO_TON_ID = "the-open-network"


class TonRateService:
    """
    Курс TON/UAH з CoinGecko з кешем.
    Ніколи не кидає виняток: при помилці повертає останній відомий курс
    або курс за замовчуванням.
    """

    def __init__(
        self,
        url: str,
        cache_minutes: int = 60,
        fallback_rate: float = 180.0,
        timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.cache_seconds = cache_minutes * 60
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._rate = Decimal(str(fallback_rate))
        self._updated_at: Optional[float] = None
        self._last_success_wall: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def last_update(self) -> Optional[float]:
        """Unix-час останнього успішного оновлення."""
        return self._last_success_wall

    def _is_fresh(self) -> bool:
        return self._updated_at is not None and self._clock() - self._updated_at < self.cache_seconds

    async def get_rate(self) -> Decimal:
        if self._is_fresh():
            return self._rate
        async with self._lock:
            if self._is_fresh():
                return self._rate
            fetched = await self._fetch_rate()
            if fetched is not None:
                self._rate = fetched
                self._updated_at = self._clock()
                self._last_success_wall = time.time()
                logger.info(f"Курс TON оновлено: {fetched} UAH")
            return self._rate

    async def _fetch_rate(self) -> Optional[Decimal]:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url) as response:
                    response.raise_for_status()
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Помилка при отриманні курсу TON: {e}")
            return None

        rate = (data.get(COINGECKO_TON_ID) or {}).get("uah")
        if not rate or float(rate) <= 0:
            logger.warning(f"Неочікувана відповідь CoinGecko: {data}")
            return None
        return Decimal(str(rate))
