# database/order_store.py
"""
Сховище замовлень.

InMemoryOrderStore тримає замовлення в словнику і після кожного запису
у фоні дублює його в дзеркало (файли або Google Sheets). Помилки дзеркала
лише логуються: основний запис у пам'яті вже відбувся.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from database.mirror import OrderMirror
from models.exceptions import DuplicateOrderError, OrderNotFoundError
from models.order import Order, OrderState

logger = logging.getLogger(__name__)


class OrderStore(ABC):

    @abstractmethod
    async def insert(self, order: Order) -> Order:
        ...

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def update(self, order: Order) -> Order:
        ...

    @abstractmethod
    async def list_by_state(self, state: Optional[OrderState] = None) -> List[Order]:
        ...

    @abstractmethod
    async def restore(self, states: Iterable[OrderState]) -> List[Order]:
        ...


class _MirrorLock:

    def __init__(self):
        self.lock = asyncio.Lock()
        self.writers = 0


class InMemoryOrderStore(OrderStore):

    def __init__(self, mirror: Optional[OrderMirror] = None):
        self._orders: Dict[str, Order] = {}
        self._mirror = mirror
        self._pending_writes: Set[asyncio.Task] = set()
        self._mirror_locks: Dict[str, _MirrorLock] = {}
        self._mirrored_versions: Dict[str, int] = {}

    async def insert(self, order: Order) -> Order:
        if order.order_id in self._orders:
            raise DuplicateOrderError(f"Order {order.order_id} already exists")
        stored = order.model_copy(deep=True)
        stored.version = 1
        self._orders[stored.order_id] = stored
        self._schedule_mirror_write(stored)
        return stored.model_copy(deep=True)

    async def get(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None:
            order = await self._load_from_mirror(order_id)
        return order.model_copy(deep=True) if order else None

    async def update(self, order: Order) -> Order:
        current = self._orders.get(order.order_id)
        if current is None:
            raise OrderNotFoundError(order.order_id)
        stored = order.model_copy(deep=True)
        stored.version = current.version + 1
        self._orders[stored.order_id] = stored
        self._schedule_mirror_write(stored)
        return stored.model_copy(deep=True)

    async def list_by_state(self, state: Optional[OrderState] = None) -> List[Order]:
        orders = [o for o in self._orders.values() if state is None or o.state == state]
        return [o.model_copy(deep=True) for o in sorted(orders, key=lambda o: o.created_at)]

    async def flush(self) -> None:
        """Чекає завершення всіх фонових записів у дзеркало."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def restore(self, states: Iterable[OrderState]) -> List[Order]:
        """
        Завантажує з дзеркала в пам'ять замовлення в заданих станах.
        Потрібно після перезапуску, щоб періодичні задачі бачили незавершені замовлення.
        """
        if self._mirror is None:
            return []
        states = set(states)
        try:
            saved = await self._mirror.list_all()
        except Exception as e:
            logger.error(f"Не вдалося прочитати замовлення з дзеркала: {e}")
            return []
        restored = []
        for order in saved:
            if order.state not in states or order.order_id in self._orders:
                continue
            self._orders[order.order_id] = order
            if not order.is_terminal:
                self._mirrored_versions[order.order_id] = order.version
            restored.append(order.model_copy(deep=True))
        logger.info(f"З дзеркала відновлено {len(restored)} замовлень ({', '.join(s.value for s in states)}).")
        return restored

    # --- Дзеркало ---

    def _schedule_mirror_write(self, order: Order) -> None:
        if self._mirror is None:
            return
        snapshot = order.model_copy(deep=True)
        entry = self._mirror_locks.get(snapshot.order_id)
        if entry is None:
            entry = self._mirror_locks[snapshot.order_id] = _MirrorLock()
        entry.writers += 1
        task = asyncio.get_running_loop().create_task(self._write_mirror(snapshot, entry))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_mirror(self, order: Order, entry: _MirrorLock) -> None:
        try:
            async with entry.lock:
                await self._save_to_mirror(order)
        finally:
            entry.writers -= 1
            if entry.writers == 0:
                self._mirror_locks.pop(order.order_id, None)
                # Завершене замовлення більше не змінюється - версію можна забути
                if order.is_terminal:
                    self._mirrored_versions.pop(order.order_id, None)

    async def _save_to_mirror(self, order: Order) -> None:
        # Пізніша версія вже записана - старий знімок пропускаємо
        if self._mirrored_versions.get(order.order_id, 0) >= order.version:
            return
        try:
            await self._mirror.save(order)
            self._mirrored_versions[order.order_id] = order.version
        except Exception as e:
            logger.error(f"Не вдалося записати замовлення {order.order_id} (v{order.version}) у дзеркало: {e}")

    async def _load_from_mirror(self, order_id: str) -> Optional[Order]:
        if self._mirror is None:
            return None
        try:
            order = await self._mirror.load(order_id)
        except Exception as e:
            logger.error(f"Не вдалося прочитати замовлення {order_id} з дзеркала: {e}")
            return None
        if order is None:
            return None
        # Поки читали, замовлення могло з'явитися в пам'яті
        existing = self._orders.setdefault(order_id, order)
        if not existing.is_terminal:
            self._mirrored_versions.setdefault(order_id, existing.version)
        logger.info(f"Замовлення {order_id} відновлено з дзеркала (стан: {existing.state.value}).")
        return existing
