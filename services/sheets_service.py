# services/sheets_service.py
import asyncio
import json
import logging
from typing import Any, List, Optional

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from database.mirror import OrderMirror
from models.exceptions import UpstreamUnavailableError
from models.order import Order

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


# --- Ініціалізація та отримання сервісу ---

def _get_credentials(service_account_json: Optional[str]):
    """Внутрішня функція для отримання облікових даних."""
    if not service_account_json:
        return None
    try:
        creds_json = json.loads(service_account_json)
        return Credentials.from_service_account_info(creds_json, scopes=SHEETS_SCOPES)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.error(f"Помилка парсингу SERVICE_ACCOUNT_JSON: {e}")
        return None


def build_sheets_service(service_account_json: Optional[str] = None, api_key: Optional[str] = None):
    """
    Створює клієнт Google Sheets API.
    Сервісний акаунт потрібен для запису (дзеркало), API-ключа достатньо для читання каталогу.
    """
    credentials = _get_credentials(service_account_json)
    if credentials:
        return build("sheets", "v4", credentials=credentials, cache_discovery=False)
    if api_key:
        return build("sheets", "v4", developerKey=api_key, cache_discovery=False)
    raise UpstreamUnavailableError("Google Sheets не налаштовано: немає ні SERVICE_ACCOUNT_JSON, ні GOOGLE_API_KEY")


async def run_blocking(func, timeout_seconds: float):
    """Виконує блокуючий виклик Google API у потоці з обмеженням часу."""
    return await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout_seconds)


# --- Читання значень ---

async def read_values(service, spreadsheet_id: str, range_: str, timeout_seconds: float = 10.0) -> List[List[Any]]:
    def _read():
        response = service.spreadsheets().values().get(spreadsheetId=spreadsheet_id, range=range_).execute()
        return response.get("values", [])

    try:
        return await run_blocking(_read, timeout_seconds)
    except asyncio.TimeoutError as e:
        raise UpstreamUnavailableError(f"Таймаут читання {range_} з Google Sheets") from e
    except HttpError as e:
        raise UpstreamUnavailableError(f"Помилка Google Sheets API ({range_}): {e}") from e


# --- Дзеркало замовлень у таблиці ---

class SheetsOrderMirror(OrderMirror):
    """
    Один рядок на замовлення на окремому аркуші.
    Колонки: ID, дата, статус, клієнт, номери, сума грн, сума TON, оплата, версія, JSON.
    Останній стовпець містить повний знімок замовлення для відновлення.
    """

    def __init__(self, service, spreadsheet_id: str, sheet_name: str = "orders", timeout_seconds: float = 10.0):
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self.timeout_seconds = timeout_seconds

    def _row(self, order: Order) -> List[Any]:
        return [
            order.order_id,
            order.created_at.isoformat(),
            order.state.value,
            order.customer.label,
            ", ".join(order.phone_numbers),
            order.total_uah,
            str(order.total_ton),
            order.payment_method.value if order.payment_method else "",
            order.version,
            order.model_dump_json(),
        ]

    def _find_row_index(self, order_id: str) -> Optional[int]:
        response = self.service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_name}!A:A"
        ).execute()
        for i, row in enumerate(response.get("values", []), start=1):
            if row and row[0] == order_id:
                return i
        return None

    def _upsert(self, order: Order) -> None:
        values = self.service.spreadsheets().values()
        body = {"values": [self._row(order)]}
        row_index = self._find_row_index(order.order_id)
        if row_index is None:
            values.append(
                spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_name}!A:J",
                valueInputOption="RAW", insertDataOption="INSERT_ROWS", body=body,
            ).execute()
        else:
            values.update(
                spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_name}!A{row_index}:J{row_index}",
                valueInputOption="RAW", body=body,
            ).execute()

    def _load(self, order_id: str) -> Optional[Order]:
        row_index = self._find_row_index(order_id)
        if row_index is None:
            return None
        response = self.service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_name}!J{row_index}"
        ).execute()
        rows = response.get("values", [])
        if not rows or not rows[0]:
            return None
        return Order.model_validate_json(rows[0][0])

    def _load_all(self) -> List[Order]:
        response = self.service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_name}!J:J"
        ).execute()
        orders = []
        for i, row in enumerate(response.get("values", []), start=1):
            if not row or not row[0]:
                continue
            try:
                orders.append(Order.model_validate_json(row[0]))
            except ValueError as e:
                # Заголовок або пошкоджений рядок
                logger.warning(f"Рядок {i} аркуша {self.sheet_name} пропущено: {e}")
        return orders

    async def save(self, order: Order) -> None:
        await run_blocking(lambda: self._upsert(order), self.timeout_seconds)

    async def load(self, order_id: str) -> Optional[Order]:
        return await run_blocking(lambda: self._load(order_id), self.timeout_seconds)

    async def list_all(self) -> List[Order]:
        return await run_blocking(self._load_all, self.timeout_seconds)
