# services/payment_service.py
"""
Перевірка оплат у TON опитуванням блокчейну.

Опитування відбувається не постійно, а коли клієнт натискає «Перевірити оплату»
або відкриває сторінку статусу, а також під час періодичного прибирання
прострочених оплат.
"""
import logging
from typing import FrozenSet, List, Optional, Protocol, Set

from models.exceptions import UpstreamUnavailableError
from models.order import Order, OrderState
from services.order_service import OrderService
from services.ton_service import LedgerTransaction

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    async def get_incoming_transactions(self, address: str, limit: int = 50) -> List[LedgerTransaction]: ...


class PaymentVerifier:

    def __init__(self, order_service: OrderService, ledger: Ledger, wallet_address: Optional[str]):
        self.order_service = order_service
        self.ledger = ledger
        self.wallet_address = wallet_address

    async def _credited_refs(self) -> Set[str]:
        paid = await self.order_service.list_orders(OrderState.paid)
        return {o.ton_tx_ref for o in paid if o.ton_tx_ref}

    def find_match(
        self,
        order: Order,
        transactions: List[LedgerTransaction],
        credited: Set[str],
        other_order_ids: FrozenSet[str] = frozenset(),
    ) -> Optional[LedgerTransaction]:
        """
        Перша за часом транзакція, що підходить за сумою та часом і ще не зарахована.
        Переказ з ID цього замовлення в коментарі має перевагу. Переказ з ID іншого
        замовлення в коментарі цьому замовленню не зараховується.
        """
        service = self.order_service
        candidates = [
            tx for tx in transactions
            if tx.tx_ref not in credited
            and tx.comment.strip() not in other_order_ids
            and service.is_within_payment_window(order, tx.timestamp)
            and service.is_amount_acceptable(order, tx.amount)
        ]
        tagged = [tx for tx in candidates if tx.comment.strip() == order.order_id]
        pool = tagged or candidates
        return min(pool, key=lambda tx: tx.timestamp) if pool else None

    async def _fetch(self) -> Optional[List[LedgerTransaction]]:
        if not self.wallet_address:
            logger.warning("TON_WALLET_ADDRESS не налаштовано, перевірка оплат неможлива.")
            return None
        try:
            return await self.ledger.get_incoming_transactions(self.wallet_address)
        except UpstreamUnavailableError as e:
            logger.warning(f"Не вдалося перевірити оплати: {e}")
            return None

    async def _try_confirm(
        self,
        order: Order,
        transactions: List[LedgerTransaction],
        credited: Set[str],
        pending_ids: FrozenSet[str],
    ) -> bool:
        tx = self.find_match(order, transactions, credited, pending_ids - {order.order_id})
        if tx is None:
            return False
        confirmed = await self.order_service.confirm_ton_payment(order.order_id, tx.amount, tx.tx_ref, tx.timestamp)
        if confirmed:
            credited.add(tx.tx_ref)
            logger.info(f"Замовлення {order.order_id} оплачено транзакцією {tx.tx_ref} ({tx.amount} TON).")
        return confirmed

    async def _pending(self) -> List[Order]:
        return await self.order_service.list_orders(OrderState.awaiting_ton_payment)

    async def check_order(self, order_id: str) -> bool:
        """Одне опитування для одного замовлення. True - якщо оплату зараховано."""
        order = await self.order_service.get_order(order_id)
        if order is None or order.state != OrderState.awaiting_ton_payment:
            return False
        transactions = await self._fetch()
        if transactions is None:
            return False
        pending_ids = frozenset(o.order_id for o in await self._pending())
        return await self._try_confirm(order, transactions, await self._credited_refs(), pending_ids)

    async def check_all_pending(self) -> List[str]:
        """Одне опитування для всіх замовлень, що очікують оплату."""
        pending = await self._pending()
        if not pending:
            return []
        transactions = await self._fetch()
        if transactions is None:
            return []
        credited = await self._credited_refs()
        pending_ids = frozenset(o.order_id for o in pending)
        confirmed = []
        for order in pending:
            if await self._try_confirm(order, transactions, credited, pending_ids):
                confirmed.append(order.order_id)
        return confirmed

    async def on_deadline(self, order_id: str) -> None:
        """Спрацьовує таймер: остання перевірка, потім повернення до вибору оплати."""
        if not await self.check_order(order_id):
            await self.order_service.expire_ton_payment(order_id)

    async def sweep(self) -> None:
        await self.check_all_pending()
        await self.order_service.sweep_expired_ton_payments()
