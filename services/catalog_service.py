# services/catalog_service.py
import logging
from typing import Any, List, Optional, Tuple

from models.exceptions import UpstreamUnavailableError
from models.phone import Phone
from services import phone_utils, sheets_service

logger = logging.getLogger(__name__)


def parse_price(raw: Any) -> int:
    """Аналог parseInt: '5000 грн' -> 5000, сміття -> 0."""
    text = str(raw).strip().replace(" ", "")
    digits = ""
    for ch in text:
        if ch.isdigit() or (ch == "-" and not digits):
            digits += ch
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return 0


def build_phones(rows: List[List[Any]]) -> List[Phone]:
    """Перетворює рядки таблиці (номер, ціна) на картки номерів. Порожні рядки пропускаються."""
    phones = []
    for index, row in enumerate(rows):
        if len(row) < 2 or not str(row[0]).strip() or not str(row[1]).strip():
            continue
        raw_number = str(row[0]).strip()
        price = parse_price(row[1])
        phones.append(Phone(
            id=index + 1,
            raw_number=raw_number,
            formatted_number=phone_utils.format_phone_number(raw_number),
            operator=phone_utils.get_operator(raw_number),
            category=phone_utils.get_category(price),
            price=price,
            description=phone_utils.generate_description(raw_number, price),
            features=phone_utils.generate_features(raw_number, price),
        ))
    return phones


class SheetsCatalog:
    """Каталог номерів з Google Sheets. Перечитується при кожному запиті."""

    def __init__(self, spreadsheet_id: Optional[str], range_: str, service=None, timeout_seconds: float = 10.0):
        self.spreadsheet_id = spreadsheet_id
        self.range = range_
        self.service = service
        self.timeout_seconds = timeout_seconds

    async def fetch_rows(self) -> List[Tuple[str, int]]:
        phones = await self.fetch_phones()
        return [(p.raw_number, p.price) for p in phones]

    async def fetch_phones(self) -> List[Phone]:
        if not self.spreadsheet_id or self.service is None:
            raise UpstreamUnavailableError("Каталог не налаштовано (SPREADSHEET_ID)")
        try:
            rows = await sheets_service.read_values(self.service, self.spreadsheet_id, self.range, self.timeout_seconds)
        except UpstreamUnavailableError as e:
            logger.error(f"Помилка при отриманні даних з Google Sheets: {e}")
            raise
        return build_phones(rows)

    async def get_phone(self, phone_id: int) -> Optional[Phone]:
        return next((p for p in await self.fetch_phones() if p.id == phone_id), None)

    async def by_category(self, category: str) -> List[Phone]:
        return [p for p in await self.fetch_phones() if p.category == category]

    async def search(self, query: str) -> List[Phone]:
        query = query.lower()
        return [
            p for p in await self.fetch_phones()
            if query in p.formatted_number.lower() or query in p.raw_number or query in p.operator.lower()
        ]
