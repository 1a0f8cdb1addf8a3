# services/ton_service.py
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import BaseModel

from models.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)

NANOTON = Decimal(10) ** 9


class LedgerTransaction(BaseModel):
    tx_ref: str
    amount: Decimal  # у TON
    timestamp: datetime
    comment: str = ""
    source: str = ""


def parse_transaction(raw: Dict[str, Any]) -> Optional[LedgerTransaction]:
    """Повертає лише вхідні перекази з ненульовою сумою."""
    in_msg = raw.get("in_msg") or {}
    value = int(in_msg.get("value") or 0)
    if not in_msg.get("source") or value <= 0:
        return None
    tx_id = raw.get("transaction_id") or {}
    return LedgerTransaction(
        tx_ref=tx_id.get("hash") or f"lt:{tx_id.get('lt')}",
        amount=Decimal(value) / NANOTON,
        timestamp=datetime.fromtimestamp(int(raw.get("utime", 0)), tz=timezone.utc),
        comment=in_msg.get("message") or "",
        source=in_msg.get("source") or "",
    )


class TonCenterClient:
    """Запити до Toncenter API v2. Підписок немає - тільки опитування за адресою."""

    def __init__(self, api_url: str, api_key: Optional[str] = None, timeout_seconds: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    async def get_incoming_transactions(self, address: str, limit: int = 50) -> List[LedgerTransaction]:
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        params = {"address": address, "limit": str(limit), "archival": "true"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
                async with session.get(f"{self.api_url}/getTransactions", params=params) as response:
                    response.raise_for_status()
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailableError(f"Toncenter недоступний: {e}") from e

        if not data.get("ok"):
            raise UpstreamUnavailableError(f"Помилка Toncenter: {data.get('error')}")
        transactions = []
        for raw in data.get("result", []):
            tx = parse_transaction(raw)
            if tx is not None:
                transactions.append(tx)
        return transactions
