# services/scheduler_service.py
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "ton-payment-sweep"


def create_scheduler(timezone: str = "Europe/Kiev") -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone=timezone)


class TonTimeoutScheduler:
    """
    Таймери очікування TON-оплати, по одному на замовлення.
    ID задачі - ton-timeout:<order_id>, тому повторний вибір TON замінює старий таймер.
    """

    def __init__(self, scheduler: AsyncIOScheduler, on_timeout: Optional[Callable[[str], Awaitable[None]]] = None):
        self.scheduler = scheduler
        self.on_timeout = on_timeout

    @staticmethod
    def job_id(order_id: str) -> str:
        return f"ton-timeout:{order_id}"

    async def _fire(self, order_id: str) -> None:
        if self.on_timeout is None:
            logger.warning(f"Таймер TON-оплати {order_id} спрацював, але обробник не підключено.")
            return
        try:
            await self.on_timeout(order_id)
        except Exception as e:
            logger.error(f"Помилка обробки таймауту TON-оплати {order_id}: {e}", exc_info=True)

    def schedule(self, order_id: str, run_at: datetime) -> None:
        self.scheduler.add_job(
            self._fire,
            "date",
            run_date=run_at,
            args=[order_id],
            id=self.job_id(order_id),
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.info(f"Таймер TON-оплати для {order_id} встановлено на {run_at.isoformat()}.")

    def cancel(self, order_id: str) -> None:
        try:
            self.scheduler.remove_job(self.job_id(order_id))
            logger.info(f"Таймер TON-оплати для {order_id} скасовано.")
        except JobLookupError:
            pass


def start_scheduler(scheduler: AsyncIOScheduler, sweep: Callable[[], Awaitable[None]], interval_seconds: int = 60) -> None:
    """Запускає планувальник з періодичною перевіркою TON-оплат."""
    scheduler.add_job(
        sweep,
        "interval",
        seconds=interval_seconds,
        id=SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("✅ Планувальник перевірки TON-оплат запущено.")
