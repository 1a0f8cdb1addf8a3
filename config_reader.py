# config_reader.py
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Клас для читання та валідації всіх змінних середовища.
    Автоматично перетворює рядки на потрібні типи (int, bool, etc.).
    """
    # --- Основні налаштування бота ---
    bot_token: str
    admin_id: int
    bot_username: Optional[str] = None

    # --- Webhook ---
    webhook_url: Optional[str] = None
    webhook_path: str = "/webhook"

    # --- Веб-сервер (FastAPI) ---
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    api_admin_token: Optional[str] = None  # Заголовок X-Admin-Token для адмінських ендпоінтів

    # --- Google Sheets (каталог номерів) ---
    google_api_key: Optional[str] = None
    service_account_json: Optional[str] = None
    spreadsheet_id: Optional[str] = None
    sheet_range: str = "work!D2:E"  # Колонки D (номер) та E (ціна)

    # --- Курс TON ---
    coingecko_url: str = "https://api.coingecko.com/api/v3/simple/price?ids=the-open-network&vs_currencies=uah"
    rate_cache_minutes: int = 60
    fallback_ton_rate: float = 180.0

    # --- Оплата в TON ---
    ton_wallet_address: Optional[str] = None
    toncenter_api_url: str = "https://toncenter.com/api/v2"
    toncenter_api_key: Optional[str] = None
    ton_discount_percent: int = 5
    ton_payment_timeout_minutes: int = 10
    ton_amount_tolerance_percent: float = 2.0
    ton_clock_skew_seconds: int = 60
    payment_sweep_seconds: int = 60

    # --- API Нової Пошти (опціонально) ---
    np_api_key: Optional[str] = None
    np_api_url: str = "https://api.novaposhta.ua/v2.0/json/"

    # --- Форма для даних доставки (Mini App) ---
    delivery_form_url: Optional[str] = None

    # --- Дзеркало замовлень ("file", "sheets" або "none") ---
    mirror_backend: str = "file"
    orders_dir: str = "/data/orders"
    mirror_sheet_name: str = "orders"

    # --- Таймаути зовнішніх викликів ---
    http_timeout_seconds: float = 10.0
    telegram_timeout_seconds: float = 10.0
    scheduler_timezone: str = "Europe/Kiev"

    # Конфігурація для Pydantic: вказуємо, що треба читати файл .env
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Створюємо єдиний екземпляр конфігурації, який будемо імпортувати
try:
    config = Settings()
    logger.info("✅ Конфігурацію успішно завантажено.")
except Exception as e:
    logger.error(f"❌ Помилка завантаження конфігурації: {e}")
    raise
