# services/container.py
"""Збирає всі сервіси застосунку з налаштувань. Спільне для webhook- і polling-запуску."""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config_reader import Settings
from database.mirror import JsonFileOrderMirror, OrderMirror
from database.order_store import InMemoryOrderStore
from handlers import delivery_handlers, order_handlers, user_commands
from models.exceptions import UpstreamUnavailableError
from services import sheets_service
from services.catalog_service import SheetsCatalog
from services.delivery_service import NovaPoshtaClient
from services.notification_service import TelegramNotifier
from services.order_service import OrderService
from services.payment_service import PaymentVerifier
from services.rate_service import TonRateService
from services.scheduler_service import TonTimeoutScheduler, create_scheduler, start_scheduler
from services.ton_service import TonCenterClient

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    store: InMemoryOrderStore
    order_service: OrderService
    payment_verifier: PaymentVerifier
    rate_service: TonRateService
    catalog: SheetsCatalog
    np_client: NovaPoshtaClient
    scheduler: AsyncIOScheduler
    timeouts: TonTimeoutScheduler


def build_mirror(settings: Settings) -> Optional[OrderMirror]:
    backend = settings.mirror_backend.lower()
    if backend == "none":
        logger.warning("Дзеркало замовлень вимкнено: після перезапуску замовлення буде втрачено.")
        return None
    if backend == "sheets":
        if not settings.spreadsheet_id or not settings.service_account_json:
            logger.error("Для дзеркала в Google Sheets потрібні SPREADSHEET_ID і SERVICE_ACCOUNT_JSON.")
            return None
        try:
            service = sheets_service.build_sheets_service(settings.service_account_json)
        except UpstreamUnavailableError as e:
            logger.error(f"Дзеркало в Google Sheets недоступне: {e}")
            return None
        return sheets_service.SheetsOrderMirror(
            service, settings.spreadsheet_id, settings.mirror_sheet_name, settings.http_timeout_seconds
        )
    return JsonFileOrderMirror(settings.orders_dir)


def build_catalog(settings: Settings) -> SheetsCatalog:
    service = None
    if settings.spreadsheet_id:
        try:
            service = sheets_service.build_sheets_service(settings.service_account_json, settings.google_api_key)
        except UpstreamUnavailableError as e:
            logger.error(f"Каталог недоступний: {e}")
    return SheetsCatalog(settings.spreadsheet_id, settings.sheet_range, service, settings.http_timeout_seconds)


def build_services(bot: Bot, settings: Settings) -> AppServices:
    store = InMemoryOrderStore(build_mirror(settings))
    rate_service = TonRateService(
        settings.coingecko_url,
        cache_minutes=settings.rate_cache_minutes,
        fallback_rate=settings.fallback_ton_rate,
        timeout_seconds=settings.http_timeout_seconds,
    )
    scheduler = create_scheduler(settings.scheduler_timezone)
    timeouts = TonTimeoutScheduler(scheduler)

    order_service = OrderService(
        store,
        TelegramNotifier(bot, settings.telegram_timeout_seconds),
        rate_service,
        timeouts,
        settings.admin_id,
        ton_wallet_address=settings.ton_wallet_address,
        discount_percent=settings.ton_discount_percent,
        ton_timeout=timedelta(minutes=settings.ton_payment_timeout_minutes),
        tolerance_percent=Decimal(str(settings.ton_amount_tolerance_percent)),
        clock_skew=timedelta(seconds=settings.ton_clock_skew_seconds),
        delivery_form_url=settings.delivery_form_url,
    )
    ledger = TonCenterClient(settings.toncenter_api_url, settings.toncenter_api_key, settings.http_timeout_seconds)
    payment_verifier = PaymentVerifier(order_service, ledger, settings.ton_wallet_address)
    timeouts.on_timeout = payment_verifier.on_deadline

    return AppServices(
        store=store,
        order_service=order_service,
        payment_verifier=payment_verifier,
        rate_service=rate_service,
        catalog=build_catalog(settings),
        np_client=NovaPoshtaClient(settings.np_api_key, settings.np_api_url, settings.http_timeout_seconds),
        scheduler=scheduler,
        timeouts=timeouts,
    )


def build_dispatcher(services: AppServices) -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())
    # Доступні в хендлерах як аргументи з такими ж іменами
    dp["order_service"] = services.order_service
    dp["payment_verifier"] = services.payment_verifier
    dp["np_client"] = services.np_client

    # Команди першими, щоб /cancel працював посеред форми
    dp.include_router(user_commands.router)
    dp.include_router(order_handlers.router)
    dp.include_router(delivery_handlers.router)
    logger.info("Роутери Aiogram підключено.")
    return dp


async def start_background_jobs(services: AppServices, settings: Settings) -> None:
    # Таймери живуть лише в пам'яті, тож після перезапуску їх треба відновити з дзеркала
    await services.order_service.restore_pending_ton_payments()
    start_scheduler(services.scheduler, services.payment_verifier.sweep, settings.payment_sweep_seconds)


async def shutdown(services: AppServices) -> None:
    if services.scheduler.running:
        services.scheduler.shutdown(wait=False)
    await services.store.flush()
    logger.info("Фонові задачі зупинено, дзеркало замовлень синхронізовано.")
