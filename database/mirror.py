# database/mirror.py
import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path

from models.order import Order

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class OrderMirror(ABC):
    """Резервна копія замовлень для відновлення після перезапуску."""

    @abstractmethod
    async def save(self, order: Order) -> None:
        ...

    @abstractmethod
    async def load(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    async def list_all(self) -> list[Order]:
        """Усі збережені замовлення, для відновлення після перезапуску."""
        ...


class JsonFileOrderMirror(OrderMirror):
    """Один JSON-файл на замовлення в каталозі orders_dir."""

    def __init__(self, orders_dir: str | Path):
        self.orders_dir = Path(orders_dir)

    def _filepath(self, order_id: str) -> Path:
        return self.orders_dir / f"order_{order_id}.json"

    def _write(self, order: Order) -> None:
        self.orders_dir.mkdir(parents=True, exist_ok=True)
        filepath = self._filepath(order.order_id)
        tmp_path = filepath.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(order.model_dump_json(indent=4))
        os.replace(tmp_path, filepath)

    def _read(self, order_id: str) -> Order | None:
        filepath = self._filepath(order_id)
        if not filepath.exists():
            return None
        with open(filepath, "r", encoding="utf-8") as f:
            return Order.model_validate(json.load(f))

    async def save(self, order: Order) -> None:
        await asyncio.to_thread(self._write, order)

    async def load(self, order_id: str) -> Order | None:
        if not _SAFE_ID.match(order_id):
            logger.warning(f"Некоректний ID замовлення для дзеркала: {order_id!r}")
            return None
        return await asyncio.to_thread(self._read, order_id)

    def _read_all(self) -> list[Order]:
        if not self.orders_dir.exists():
            return []
        orders = []
        for filepath in sorted(self.orders_dir.glob("order_*.json")):
            try:
                with open(filepath, "r", encoding="utf-8") as f:
                    orders.append(Order.model_validate(json.load(f)))
            except (OSError, ValueError) as e:
                logger.error(f"Пропущено пошкоджений файл замовлення {filepath.name}: {e}")
        return orders

    async def list_all(self) -> list[Order]:
        return await asyncio.to_thread(self._read_all)
